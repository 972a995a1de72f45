"""User profile reads and profile-setup updates."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from healthrocket.db.models import User

if TYPE_CHECKING:
    from healthrocket.backend.client import BackendClient

logger = structlog.get_logger()

# Columns a user may change from the client; balances and levels are server-owned
EDITABLE_FIELDS = frozenset(
    {
        "user_name",
        "timezone",
        "notification_preferences",
        "onboarding_step",
        "onboarding_completed",
        "biometric_enabled",
        "device_token",
    }
)


async def get_profile(client: BackendClient, user_id: str) -> User:
    result = await client.table("users").select("*").eq("id", user_id).single().execute()
    return User.model_validate(result.data)


async def update_profile(client: BackendClient, user_id: str, **changes: Any) -> User:
    """Apply profile-setup changes. Raises ValueError for non-editable fields."""
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        msg = f"Fields cannot be updated from the client: {', '.join(sorted(unknown))}"
        raise ValueError(msg)
    if "user_name" in changes:
        name = str(changes["user_name"]).strip()
        if not name:
            msg = "Please enter your name to continue."
            raise ValueError(msg)
        changes["user_name"] = name

    result = await client.table("users").update(changes).eq("id", user_id).select().single().execute()
    logger.info("profile_updated", user_id=user_id, fields=sorted(changes))
    return User.model_validate(result.data)
