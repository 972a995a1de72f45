"""Fuel Point earning and dashboard snapshots.

Point amounts, levels and burn streaks are computed by the backend's
``earn_fuel_points`` procedure; ``source_id`` is its idempotency key.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from healthrocket.db.models import DailyBoostResult, EarnFuelPointsResult, FPEarning, FPSource

if TYPE_CHECKING:
    from healthrocket.backend.client import BackendClient

logger = structlog.get_logger()


async def earn_fuel_points(
    client: BackendClient,
    user_id: str,
    source: FPSource | str,
    amount: int,
    source_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> EarnFuelPointsResult:
    """Record an FP earning through the backend. Returns the new totals."""
    params: dict[str, Any] = {
        "p_user_id": user_id,
        "p_source": source.value if isinstance(source, FPSource) else source,
        "p_amount": amount,
    }
    if source_id is not None:
        params["p_source_id"] = source_id
    if metadata is not None:
        params["p_metadata"] = metadata

    data = await client.rpc("earn_fuel_points", params)
    result = EarnFuelPointsResult.model_validate(data or {})
    logger.info(
        "fuel_points_earned",
        user_id=user_id,
        source=params["p_source"],
        amount=amount,
        new_total=result.new_total,
        level_up=result.level_up,
    )
    return result


async def get_user_dashboard(client: BackendClient, user_id: str) -> dict[str, Any]:
    """Aggregated dashboard snapshot, as assembled by the backend."""
    data = await client.rpc("get_user_dashboard", {"p_user_id": user_id})
    return data or {}


async def complete_daily_boost(
    client: BackendClient,
    user_id: str,
    boost_id: str,
    verification_data: dict[str, Any] | None = None,
) -> DailyBoostResult:
    params: dict[str, Any] = {"p_user_id": user_id, "p_boost_id": boost_id}
    if verification_data is not None:
        params["p_verification_data"] = verification_data
    data = await client.rpc("complete_daily_boost", params)
    result = DailyBoostResult.model_validate(data or {})
    logger.info("daily_boost_completed", user_id=user_id, boost_id=boost_id, fp_earned=result.fp_earned)
    return result


async def list_fp_earnings(client: BackendClient, user_id: str, limit: int = 50) -> list[FPEarning]:
    """Most recent ledger entries first."""
    result = await (
        client.table("fp_earnings")
        .select("*")
        .eq("user_id", user_id)
        .order("created_at", ascending=False)
        .limit(limit)
        .execute()
    )
    return [FPEarning.model_validate(row) for row in result.data or []]


async def list_boost_library(client: BackendClient, limit: int = 50) -> list[dict[str, Any]]:
    result = await client.table("boost_library").select("*").eq("is_active", True).limit(limit).execute()
    return result.data or []


async def list_boost_codes(client: BackendClient, limit: int = 50) -> list[dict[str, Any]]:
    result = await client.table("boost_codes").select("*").eq("is_active", True).limit(limit).execute()
    return result.data or []
