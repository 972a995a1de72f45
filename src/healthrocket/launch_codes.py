"""Launch code validation and redemption.

Codes are 3-20 character alphanumeric (A-Z, 0-9), compared case-insensitively.
Validity, community assignment and usage caps are decided by the
``validate_launch_code`` / ``use_launch_code`` stored procedures.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from healthrocket.backend.errors import NETWORK_ERROR_CODE, BackendError
from healthrocket.db.models import LaunchCodeCheck, LaunchCodeUse

if TYPE_CHECKING:
    from healthrocket.backend.client import BackendClient

logger = structlog.get_logger()

LAUNCH_CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,20}$")


@dataclass
class LaunchCodeValidation:
    valid: bool
    community_name: str | None = None
    plan_name: str | None = None
    error: str | None = None
    has_auto_enroll: bool | None = None
    usage_count: int | None = None
    usage_limit: int | None = None


@dataclass(frozen=True)
class SpecialCodeInfo:
    description: str
    benefits: list[str] = field(default_factory=list)
    rarity: str = "common"


SPECIAL_CODES: dict[str, SpecialCodeInfo] = {
    "FOUNDERS": SpecialCodeInfo(
        "Founding Member Access",
        [
            "Lifetime premium features",
            "Exclusive founder community",
            "1000 bonus Fuel Points",
            "Priority support",
            "Beta feature access",
        ],
        "legendary",
    ),
    "LAUNCH100": SpecialCodeInfo(
        "Launch Week Special",
        [
            "Premium access for 6 months",
            "500 bonus Fuel Points",
            "Launch community access",
            "Special launch badge",
        ],
        "epic",
    ),
    "BETA2024": SpecialCodeInfo(
        "Beta Tester Access",
        [
            "Beta community access",
            "250 bonus Fuel Points",
            "Early feature previews",
            "Beta tester badge",
        ],
        "rare",
    ),
    "HEALTH100": SpecialCodeInfo(
        "Health Enthusiast",
        [
            "Health community access",
            "100 bonus Fuel Points",
            "Health tracking features",
        ],
        "common",
    ),
}

DEFAULT_CODE_INFO = SpecialCodeInfo("Community Access", ["Community access", "Standard features"], "common")


def format_launch_code(code: str) -> str:
    """Uppercase a code and drop all whitespace."""
    return re.sub(r"\s", "", code.upper())


def is_valid_launch_code_format(code: str) -> bool:
    return bool(LAUNCH_CODE_PATTERN.match(code.upper()))


def get_special_code_info(code: str) -> SpecialCodeInfo:
    return SPECIAL_CODES.get(code.upper(), DEFAULT_CODE_INFO)


async def validate_launch_code(client: BackendClient, code: str) -> LaunchCodeValidation:
    """Ask the backend whether a code is valid. Never raises for backend failures."""
    if not code or not code.strip():
        return LaunchCodeValidation(valid=False, error="Launch code is required")

    try:
        data = await client.rpc("validate_launch_code", {"p_code": code.strip().upper()})
    except BackendError as e:
        if e.code == NETWORK_ERROR_CODE:
            return LaunchCodeValidation(valid=False, error="Network error - please try again")
        logger.info("launch_code_validation_failed", error=e.message)
        return LaunchCodeValidation(valid=False, error="Unable to validate launch code")

    if not data or not isinstance(data, dict):
        return LaunchCodeValidation(valid=False, error="Invalid launch code")

    try:
        check = LaunchCodeCheck.model_validate(data)
    except ValidationError:
        logger.warning("launch_code_result_malformed", exc_info=True)
        return LaunchCodeValidation(valid=False, error="Invalid launch code")
    return LaunchCodeValidation(
        valid=bool(check.valid),
        community_name=check.community_name,
        plan_name=check.default_plan,
        has_auto_enroll=bool(check.has_community),
        error=check.error,
    )


async def use_launch_code(client: BackendClient, user_id: str, code: str) -> LaunchCodeUse:
    """Redeem a code for a user. Raises ``BackendError`` on failure."""
    data = await client.rpc("use_launch_code", {"p_user_id": user_id, "p_code": code})
    result = LaunchCodeUse.model_validate(data or {})
    logger.info(
        "launch_code_used",
        user_id=user_id,
        success=result.success,
        community_enrolled=result.community_enrolled,
    )
    return result
