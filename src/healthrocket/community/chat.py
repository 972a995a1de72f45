"""Community chat messages."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from healthrocket.db.models import ChatMessage, MessageType

if TYPE_CHECKING:
    from healthrocket.backend.client import BackendClient

logger = structlog.get_logger()

GENERAL_CHAT_ID = "general-discussion"
MAX_MESSAGE_LENGTH = 2000


async def list_messages(client: BackendClient, chat_id: str = GENERAL_CHAT_ID, limit: int = 50) -> list[ChatMessage]:
    """Newest messages first, excluding deleted and hidden ones."""
    result = await (
        client.table("chat_messages")
        .select("*")
        .eq("chat_id", chat_id)
        .eq("is_deleted", False)
        .eq("is_hidden", False)
        .order("created_at", ascending=False)
        .limit(limit)
        .execute()
    )
    return [ChatMessage.model_validate(row) for row in result.data or []]


async def post_message(
    client: BackendClient,
    user_id: str,
    user_name: str,
    message: str,
    chat_id: str = GENERAL_CHAT_ID,
    message_type: MessageType = MessageType.TEXT,
    parent_message_id: str | None = None,
) -> ChatMessage:
    """Post a message. Raises ValueError for an empty or oversized message."""
    text = message.strip()
    if not text:
        msg = "Message cannot be empty"
        raise ValueError(msg)
    if len(text) > MAX_MESSAGE_LENGTH:
        msg = f"Message exceeds {MAX_MESSAGE_LENGTH} characters"
        raise ValueError(msg)

    row = {
        "chat_id": chat_id,
        "user_id": user_id,
        "user_name": user_name,
        "message": text,
        "message_type": message_type.value,
    }
    if parent_message_id is not None:
        row["parent_message_id"] = parent_message_id

    result = await client.table("chat_messages").insert(row).select().single().execute()
    logger.info("chat_message_posted", user_id=user_id, chat_id=chat_id)
    return ChatMessage.model_validate(result.data)
