"""
Authentication flows over the hosted backend.

Sign-up validates and redeems launch codes and creates the public profile row.
The flow functions return ``AuthResult`` instead of raising, carrying the
backend's message verbatim for display.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from healthrocket.backend.errors import BackendError
from healthrocket.config import get_settings
from healthrocket.db.models import DEFAULT_NOTIFICATION_PREFERENCES

if TYPE_CHECKING:
    from healthrocket.backend.auth_api import AuthUser
    from healthrocket.backend.client import BackendClient

logger = structlog.get_logger()

INVALID_LAUNCH_CODE_MESSAGE = "Invalid launch code. Please check your code and try again."


@dataclass
class AuthResult:
    success: bool
    error: str | None = None
    data: Any = None

    @property
    def user_id(self) -> str | None:
        user = None
        if isinstance(self.data, dict):
            user = self.data.get("user")
        if user is None:
            return None
        return getattr(user, "id", None)


def default_profile(user_id: str, email: str, user_name: str) -> dict[str, Any]:
    """The ``users`` row created for a brand-new account."""
    return {
        "id": user_id,
        "email": email,
        "user_name": user_name,
        "fuel_points": 0,
        "level": 1,
        "burn_streak_days": 0,
        "longest_burn_streak": 0,
        "lifetime_fp_earned": 0,
        "health_score": 7.8,
        "healthspan_years": 0.0,
        "expected_lifespan": 85,
        "plan_name": "Preview Access",
        "plan_status": "Trial",
        "contest_credits": 2,
        "biometric_enabled": False,
        "timezone": "UTC",
        "notification_preferences": dict(DEFAULT_NOTIFICATION_PREFERENCES),
        "onboarding_completed": False,
        "onboarding_step": "welcome",
        "is_admin": False,
        "is_active": True,
        "last_active_at": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Sign up / sign in / sign out
# ---------------------------------------------------------------------------


async def sign_up(
    client: BackendClient,
    email: str,
    password: str,
    user_name: str,
    launch_code: str | None = None,
) -> AuthResult:
    """Register a user, create their profile and redeem the launch code if given."""
    try:
        if launch_code:
            check = await client.rpc("validate_launch_code", {"p_code": launch_code})
            if not (isinstance(check, dict) and check.get("valid")):
                logger.info("signup_rejected_launch_code", email=email)
                return AuthResult(success=False, error=INVALID_LAUNCH_CODE_MESSAGE)

        user, session = await client.auth.sign_up(
            email,
            password,
            data={"user_name": user_name, "launch_code": launch_code},
        )
    except BackendError as e:
        return AuthResult(success=False, error=e.message)

    if user is not None:
        try:
            await client.table("users").upsert(
                default_profile(user.id, user.email or email, user_name)
            ).execute()
        except BackendError as e:
            logger.warning("profile_creation_failed", user_id=user.id, error=e.message)
            return AuthResult(
                success=False,
                error=(
                    f"Profile creation failed: {e.message}. "
                    "Please ensure you have proper permissions or contact support."
                ),
            )

    if user is not None and launch_code:
        try:
            await client.rpc("use_launch_code", {"p_user_id": user.id, "p_code": launch_code})
        except BackendError as e:
            logger.warning("launch_code_redeem_failed", user_id=user.id, error=e.message)

    logger.info("user_signed_up", user_id=user.id if user else None, with_code=bool(launch_code))
    return AuthResult(success=True, data={"user": user, "session": session})


async def sign_in(client: BackendClient, email: str, password: str) -> AuthResult:
    try:
        session = await client.auth.sign_in_with_password(email, password)
    except BackendError as e:
        return AuthResult(success=False, error=e.message)
    return AuthResult(success=True, data={"user": session.user, "session": session})


async def sign_out(client: BackendClient) -> AuthResult:
    try:
        await client.auth.sign_out()
    except BackendError as e:
        return AuthResult(success=False, error=e.message)
    return AuthResult(success=True)


async def reset_password(client: BackendClient, email: str) -> AuthResult:
    try:
        await client.auth.reset_password_for_email(
            email, redirect_to=get_settings().password_reset_redirect
        )
    except BackendError as e:
        return AuthResult(success=False, error=e.message)
    return AuthResult(success=True)


async def get_current_user(client: BackendClient) -> tuple[AuthUser | None, BackendError | None]:
    """Return ``(user, error)`` for the current session."""
    try:
        return await client.auth.get_user(), None
    except BackendError as e:
        return None, e


# ---------------------------------------------------------------------------
# Profile bootstrap
# ---------------------------------------------------------------------------


async def ensure_user_profile(client: BackendClient, user: AuthUser) -> bool:
    """Create the ``users`` row for a signed-in user if it is missing.

    Returns True if a row was created.
    """
    existing = await client.table("users").select("id").eq("id", user.id).maybe_single().execute()
    if existing.data:
        return False

    user_name = (
        user.user_metadata.get("user_name")
        or (user.email.split("@")[0] if user.email else None)
        or "User"
    )
    await client.table("users").insert(default_profile(user.id, user.email or "", user_name)).execute()
    logger.info("user_profile_created", user_id=user.id)
    return True