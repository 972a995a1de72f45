"""Quest library and per-user quests."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

import structlog

from healthrocket.db.models import ParticipationStatus, Quest, UserQuest

if TYPE_CHECKING:
    from healthrocket.backend.client import BackendClient

logger = structlog.get_logger()


async def list_active_quests(client: BackendClient, limit: int = 50) -> list[Quest]:
    result = await client.table("quest_library").select("*").eq("is_active", True).limit(limit).execute()
    return [Quest.model_validate(row) for row in result.data or []]


async def start_quest(client: BackendClient, user_id: str, quest: Quest, today: date | None = None) -> UserQuest:
    today = today or date.today()
    result = await (
        client.table("user_quests")
        .insert(
            {
                "user_id": user_id,
                "quest_id": quest.id,
                "status": ParticipationStatus.ACTIVE.value,
                "start_date": today.isoformat(),
            }
        )
        .select()
        .single()
        .execute()
    )
    logger.info("quest_started", user_id=user_id, quest_id=quest.id)
    return UserQuest.model_validate(result.data)


async def list_user_quests(client: BackendClient, user_id: str) -> list[UserQuest]:
    result = await client.table("user_quests").select("*").eq("user_id", user_id).execute()
    return [UserQuest.model_validate(row) for row in result.data or []]
