"""Health assessment submission and history."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from healthrocket.db.models import HealthAssessment

if TYPE_CHECKING:
    from healthrocket.backend.client import BackendClient

logger = structlog.get_logger()

SCORE_MIN = 1
SCORE_MAX = 10
SCORE_FIELDS = (
    "mindset_score",
    "sleep_score",
    "exercise_score",
    "nutrition_score",
    "biohacking_score",
    "overall_health_score",
)


def out_of_range_scores(row: dict[str, Any]) -> list[str]:
    """Names of score fields outside 1-10. Missing scores are not reported."""
    bad = []
    for name in SCORE_FIELDS:
        value = row.get(name)
        if value is not None and not SCORE_MIN <= value <= SCORE_MAX:
            bad.append(name)
    return bad


async def submit_assessment(
    client: BackendClient,
    user_id: str,
    scores: dict[str, float],
    *,
    healthspan_years: float = 0.0,
    expected_lifespan: int = 85,
    responses: dict[str, Any] | None = None,
    fp_earned: int = 0,
    assessment_version: str = "1.0",
) -> HealthAssessment:
    """Store an assessment. Raises ValueError when a score is missing or outside 1-10."""
    missing = [name for name in SCORE_FIELDS if name not in scores]
    if missing:
        msg = f"Missing scores: {', '.join(missing)}"
        raise ValueError(msg)
    bad = out_of_range_scores(scores)
    if bad:
        msg = f"Scores must be between {SCORE_MIN} and {SCORE_MAX}: {', '.join(bad)}"
        raise ValueError(msg)

    row = {
        "user_id": user_id,
        **{name: scores[name] for name in SCORE_FIELDS},
        "healthspan_years": healthspan_years,
        "expected_lifespan": expected_lifespan,
        "assessment_version": assessment_version,
        "responses": responses or {},
        "fp_earned": fp_earned,
    }
    result = await client.table("health_assessments").insert(row).select().single().execute()
    logger.info("health_assessment_submitted", user_id=user_id, overall=scores["overall_health_score"])
    return HealthAssessment.model_validate(result.data)


async def list_assessments(client: BackendClient, user_id: str) -> list[HealthAssessment]:
    """Newest first."""
    result = await (
        client.table("health_assessments")
        .select("*")
        .eq("user_id", user_id)
        .order("completed_at", ascending=False)
        .execute()
    )
    return [HealthAssessment.model_validate(row) for row in result.data or []]
