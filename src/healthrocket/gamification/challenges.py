"""Challenge library and per-user challenge participation."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

import structlog

from healthrocket.db.models import Challenge, ParticipationStatus, UserChallenge

if TYPE_CHECKING:
    from healthrocket.backend.client import BackendClient

logger = structlog.get_logger()

CHALLENGE_JOIN = "*, challenge_library (title, description, daily_fp_reward)"


async def list_active_challenges(client: BackendClient, limit: int = 50) -> list[Challenge]:
    result = await client.table("challenge_library").select("*").eq("is_active", True).limit(limit).execute()
    return [Challenge.model_validate(row) for row in result.data or []]


async def list_user_challenges(
    client: BackendClient,
    user_id: str,
    with_details: bool = False,
    status: ParticipationStatus | None = None,
) -> list[UserChallenge]:
    query = client.table("user_challenges").select(CHALLENGE_JOIN if with_details else "*").eq("user_id", user_id)
    if status is not None:
        query = query.eq("status", status.value)
    result = await query.execute()
    return [UserChallenge.model_validate(row) for row in result.data or []]


async def enroll_in_challenge(
    client: BackendClient,
    user_id: str,
    challenge: Challenge,
    today: date | None = None,
) -> UserChallenge:
    """Start a challenge. One verification is required per day of its duration."""
    today = today or date.today()
    result = await (
        client.table("user_challenges")
        .insert(
            {
                "user_id": user_id,
                "challenge_id": challenge.id,
                "status": ParticipationStatus.ACTIVE.value,
                "start_date": today.isoformat(),
                "required_verifications": challenge.duration_days,
            }
        )
        .select()
        .single()
        .execute()
    )
    logger.info("challenge_enrolled", user_id=user_id, challenge_id=challenge.id)
    return UserChallenge.model_validate(result.data)
