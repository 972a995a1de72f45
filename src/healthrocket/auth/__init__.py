from healthrocket.auth.service import (
    AuthResult,
    ensure_user_profile,
    get_current_user,
    reset_password,
    sign_in,
    sign_out,
    sign_up,
)
from healthrocket.auth.session import AuthSession

__all__ = [
    "AuthResult",
    "AuthSession",
    "ensure_user_profile",
    "get_current_user",
    "reset_password",
    "sign_in",
    "sign_out",
    "sign_up",
]
