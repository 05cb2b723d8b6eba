"""
Doxologos Payments - Configuration
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

# Carrega config/local.env apenas para desenvolvimento local.
# Sem override: variáveis já definidas no ambiente sempre prevalecem.
local_env_file = Path(__file__).parent.parent.parent / "config" / "local.env"
if local_env_file.exists():
    load_dotenv(local_env_file, override=False)


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Doxologos Payments"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    # Banco relacional (Supabase Postgres em produção)
    DATABASE_URL: str = "sqlite+aiosqlite:///./doxologos.db"

    # Supabase
    SUPABASE_URL: Optional[str] = None
    SUPABASE_JWT_SECRET: str = "change-me-in-production"
    SUPABASE_JWT_AUDIENCE: str = "authenticated"

    # Mercado Pago
    MP_ENVIRONMENT: str = "production"
    MP_ACCESS_TOKEN: Optional[str] = None
    MP_ACCESS_TOKEN_TEST: Optional[str] = None
    MP_WEBHOOK_SECRET: Optional[str] = None
    MP_STATEMENT_DESCRIPTOR: str = "DOXOLOGOS"
    MP_PREFERENCE_EXPIRATION_HOURS: int = 24
    # Email do pagador quando o checkout de cartão não informa nenhum
    MP_DEFAULT_PAYER_EMAIL: str = "contato@doxologos.com.br"

    # URLs
    FRONTEND_URL: str = "http://localhost:5173"
    NOTIFICATION_URL: Optional[str] = None

    # Email (SendGrid tem prioridade sobre SMTP)
    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_FROM_EMAIL: Optional[str] = None
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM_EMAIL: str = "noreply@doxologos.com.br"
    SMTP_FROM_NAME: str = "Doxologos"
    SMTP_TLS: bool = True
    SMTP_SSL: bool = False

    # Twilio (WhatsApp)
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_WHATSAPP_FROM: Optional[str] = None

    # Zoom
    ZOOM_BEARER_TOKEN: Optional[str] = None
    ZOOM_ACCOUNT_ID: Optional[str] = None
    ZOOM_CLIENT_ID: Optional[str] = None
    ZOOM_CLIENT_SECRET: Optional[str] = None
    ZOOM_USER_ID: str = "me"
    ZOOM_TIMEZONE: str = "America/Sao_Paulo"

    # Créditos financeiros
    FINANCIAL_CREDITS_FUNCTION_KEY: Optional[str] = None
    CREDIT_MIN_HOURS_NOTICE: int = 24
    CLINIC_TIMEZONE: str = "America/Sao_Paulo"

    # Reembolso manual
    MANUAL_REFUND_NOTIFY_KEY: Optional[str] = None
    MANUAL_REFUND_NOTIFY_MAX_ATTEMPTS: int = 5
    MANUAL_REFUND_PROOF_MAX_BYTES: int = 20 * 1024 * 1024
    PROOF_STORAGE_DIR: str = "uploads/finance-refunds"

    # Lembretes diários de pagamento pendente
    PAYMENT_REMINDER_FUNCTION_KEY: Optional[str] = None

    # Notificação de erros críticos
    ERROR_NOTIFICATION_ENABLED: bool = False
    ERROR_NOTIFICATION_EMAIL: str = "suporte@doxologos.com.br"

    # Rate limiting (endpoints públicos do checkout)
    RATE_LIMIT_ENABLED: bool = True
    CHECKOUT_RATE_LIMIT: str = "30/minute"

    # CORS
    CORS_ORIGINS: list = ["*"]

    @property
    def mp_access_token(self) -> Optional[str]:
        """Token do Mercado Pago conforme o ambiente (test ou production)"""
        if self.MP_ENVIRONMENT == "test":
            return self.MP_ACCESS_TOKEN_TEST
        return self.MP_ACCESS_TOKEN

    @property
    def webhook_url(self) -> str:
        """URL pública do webhook informada ao Mercado Pago"""
        if self.NOTIFICATION_URL:
            return self.NOTIFICATION_URL
        if self.SUPABASE_URL:
            return f"{self.SUPABASE_URL}/functions/v1/mp-webhook"
        return f"http://localhost:{self.PORT}/api/mp-webhook"

    class Config:
        extra = "ignore"
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
