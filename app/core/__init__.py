from .config import settings, get_settings
from .security import (
    CurrentUser,
    create_access_token,
    verify_access_token,
    get_current_user,
    get_optional_user,
    require_staff,
    function_key_matches,
)

__all__ = [
    "settings",
    "get_settings",
    "CurrentUser",
    "create_access_token",
    "verify_access_token",
    "get_current_user",
    "get_optional_user",
    "require_staff",
    "function_key_matches",
]
