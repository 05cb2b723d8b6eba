"""
Doxologos Payments - Security
Validação dos tokens de acesso do Supabase e papéis de usuário
"""
import hmac
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

from .config import settings, get_settings, Settings
from .exceptions import AuthError, ForbiddenError

ALGORITHM = "HS256"

STAFF_ROLES = {"admin", "superadmin", "finance_admin", "finance_supervisor", "finance_team"}
ADMIN_ROLES = {"admin", "superadmin"}

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    """Usuário autenticado extraído do JWT do Supabase"""
    id: str
    email: Optional[str] = None
    role: str = "user"
    claims: dict = field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    role: str = "user",
    expires_delta: Optional[timedelta] = None,
    secret: Optional[str] = None,
) -> str:
    """Cria token no formato do Supabase (útil para desenvolvimento e testes)"""
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=1))
    to_encode = {
        "sub": user_id,
        "email": email,
        "aud": settings.SUPABASE_JWT_AUDIENCE,
        "role": "authenticated",
        "user_metadata": {"role": role},
        "exp": expire,
    }
    return jwt.encode(to_encode, secret or settings.SUPABASE_JWT_SECRET, algorithm=ALGORITHM)


def verify_access_token(token: str, secret: Optional[str] = None) -> Optional[dict]:
    """Verifica JWT token"""
    try:
        return jwt.decode(
            token,
            secret or settings.SUPABASE_JWT_SECRET,
            algorithms=[ALGORITHM],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except JWTError:
        return None


def user_from_claims(claims: dict) -> CurrentUser:
    user_metadata = claims.get("user_metadata") or {}
    app_metadata = claims.get("app_metadata") or {}
    role = user_metadata.get("role") or app_metadata.get("role") or "user"
    return CurrentUser(
        id=claims.get("sub"),
        email=claims.get("email"),
        role=str(role).lower(),
        claims=claims,
    )


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    config: Settings = Depends(get_settings),
) -> Optional[CurrentUser]:
    """Usuário do token, ou None quando não há token válido"""
    if not credentials or not credentials.credentials:
        return None
    claims = verify_access_token(credentials.credentials, config.SUPABASE_JWT_SECRET)
    if not claims or not claims.get("sub"):
        return None
    return user_from_claims(claims)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    config: Settings = Depends(get_settings),
) -> CurrentUser:
    """Dependency para obter usuário autenticado"""
    if not credentials or not credentials.credentials:
        raise AuthError("Authentication required")

    claims = verify_access_token(credentials.credentials, config.SUPABASE_JWT_SECRET)
    if not claims or not claims.get("sub"):
        raise AuthError("Invalid or expired token")

    return user_from_claims(claims)


async def require_staff(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Apenas administradores e equipe financeira"""
    if not user.is_staff:
        raise ForbiddenError("Access denied for this role")
    return user


def function_key_matches(provided: Optional[str], expected: Optional[str]) -> bool:
    """Chave de função (x-function-key) para chamadas servidor-a-servidor"""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.strip(), expected)


async def get_function_key(x_function_key: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_function_key
