"""Contests and contest entries."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from healthrocket.db.models import ActiveContest, Contest, ContestStatus

if TYPE_CHECKING:
    from healthrocket.backend.client import BackendClient

logger = structlog.get_logger()


async def list_contests(
    client: BackendClient,
    status: ContestStatus | None = None,
    limit: int = 50,
) -> list[Contest]:
    query = client.table("contests").select("*")
    if status is not None:
        query = query.eq("status", status.value)
    result = await query.order("start_date").limit(limit).execute()
    return [Contest.model_validate(row) for row in result.data or []]


async def enter_contest(client: BackendClient, user_id: str, user_name: str, contest: Contest) -> ActiveContest:
    """Register the user in a contest. Entry cost and capacity are enforced server-side."""
    result = await (
        client.table("active_contests")
        .insert({"user_id": user_id, "contest_id": contest.id, "user_name": user_name})
        .select()
        .single()
        .execute()
    )
    logger.info("contest_entered", user_id=user_id, contest_id=contest.id)
    return ActiveContest.model_validate(result.data)


async def list_contest_entries(client: BackendClient, user_id: str) -> list[ActiveContest]:
    result = await client.table("active_contests").select("*").eq("user_id", user_id).execute()
    return [ActiveContest.model_validate(row) for row in result.data or []]
