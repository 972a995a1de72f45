"""Pydantic row shapes for the hosted database and its stored procedures.

The backend owns these tables; the client enforces none of their invariants.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Row(BaseModel):
    model_config = ConfigDict(extra="allow")


# --- Enums ---


class FPSource(str, Enum):
    DAILY_BOOST = "daily_boost"
    CHALLENGE_DAILY = "challenge_daily"
    CHALLENGE_COMPLETION = "challenge_completion"
    QUEST_WEEKLY = "quest_weekly"
    QUEST_COMPLETION = "quest_completion"
    HEALTH_ASSESSMENT = "health_assessment"
    CONTEST_VERIFICATION = "contest_verification"
    BOOST_CODE = "boost_code"
    STREAK_BONUS = "streak_bonus"
    LEVEL_BONUS = "level_bonus"


class ParticipationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


class ContestStatus(str, Enum):
    UPCOMING = "upcoming"
    REGISTRATION_OPEN = "registration_open"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VERIFICATION = "verification"
    SYSTEM = "system"


# --- Users ---


DEFAULT_NOTIFICATION_PREFERENCES: dict[str, bool] = {
    "sms": False,
    "push": True,
    "email": False,
    "contests": True,
    "marketing": False,
    "challenges": True,
    "achievements": True,
}


class User(Row):
    id: str
    email: str
    user_name: str
    fuel_points: int = 0
    level: int = 1
    burn_streak_days: int = 0
    longest_burn_streak: int = 0
    lifetime_fp_earned: int = 0
    health_score: float = 7.8
    healthspan_years: float = 0.0
    expected_lifespan: int = 85
    plan_name: str = "Preview Access"
    plan_status: str = "Trial"
    contest_credits: int = 2
    device_token: str | None = None
    biometric_enabled: bool = False
    timezone: str = "UTC"
    notification_preferences: dict[str, Any] = Field(
        default_factory=lambda: dict(DEFAULT_NOTIFICATION_PREFERENCES)
    )
    onboarding_completed: bool = False
    onboarding_step: str = "welcome"
    is_admin: bool = False
    is_active: bool = True
    vital_user_id: str | None = None
    last_active_at: dt.datetime | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


# --- Points ledger ---


class FPEarning(Row):
    id: str | None = None
    user_id: str
    source: str
    source_id: str | None = None
    amount: int
    description: str | None = None
    metadata: dict[str, Any] | None = None
    date: dt.date | None = None
    user_name: str | None = None
    created_at: dt.datetime | None = None


# --- Challenges ---


class Challenge(Row):
    id: str
    title: str
    description: str = ""
    instructions: str | None = None
    duration_days: int = 0
    daily_fp_reward: int = 0
    completion_fp_bonus: int = 0
    tier: int = 0
    difficulty: str | None = None
    requires_verification: bool = False
    requires_photo: bool = False
    requires_device_data: bool = False
    category: str | None = None
    tags: list[str] | None = None
    is_active: bool = True
    is_daily: bool = False
    min_level: int = 1
    max_level: int | None = None


class UserChallenge(Row):
    user_id: str
    challenge_id: str
    status: ParticipationStatus = ParticipationStatus.ACTIVE
    start_date: dt.date | None = None
    completion_date: dt.date | None = None
    verification_count: int = 0
    required_verifications: int = 0
    daily_actions_completed: int = 0
    challenge_library: dict[str, Any] | None = None


# --- Contests ---


class Contest(Row):
    id: str
    title: str
    description: str | None = None
    start_date: dt.datetime | None = None
    end_date: dt.datetime | None = None
    registration_deadline: dt.datetime | None = None
    entry_cost: int = 0
    prize_pool: float = 0
    max_participants: int | None = None
    verifications_required: int = 0
    status: ContestStatus = ContestStatus.UPCOMING
    participant_count: int = 0
    winner_percentage: float = 0


class ActiveContest(Row):
    user_id: str
    contest_id: str
    user_name: str | None = None
    verification_count: int = 0
    is_winner: bool = False


# --- Quests ---


class Quest(Row):
    id: str
    title: str
    description: str | None = None
    is_active: bool = True


class UserQuest(Row):
    user_id: str
    quest_id: str
    status: ParticipationStatus = ParticipationStatus.ACTIVE
    start_date: dt.date | None = None


# --- Community ---


class ChatMessage(Row):
    id: str | None = None
    chat_id: str
    user_id: str
    user_name: str
    message: str
    message_type: MessageType = MessageType.TEXT
    parent_message_id: str | None = None
    reply_count: int = 0
    is_verification: bool = False
    is_system_message: bool = False
    is_pinned: bool = False
    media_url: str | None = None
    media_type: str | None = None
    is_deleted: bool = False
    is_hidden: bool = False
    reported_count: int = 0
    created_at: dt.datetime | None = None


# --- Health ---


class HealthAssessment(Row):
    id: str | None = None
    user_id: str
    mindset_score: float
    sleep_score: float
    exercise_score: float
    nutrition_score: float
    biohacking_score: float
    overall_health_score: float
    healthspan_years: float = 0.0
    expected_lifespan: int = 85
    assessment_version: str = "1.0"
    responses: dict[str, Any] = Field(default_factory=dict)
    fp_earned: int = 0
    completed_at: dt.datetime | None = None


# --- Stored procedure results ---


class LaunchCodeCheck(Row):
    """``validate_launch_code`` result."""

    valid: bool | None = False
    community_id: str | None = None
    community_name: str | None = None
    has_community: bool | None = False
    default_plan: str | None = None
    error: str | None = None


class LaunchCodeUse(Row):
    """``use_launch_code`` result."""

    success: bool = False
    community_enrolled: bool = False
    community_name: str | None = None


class EarnFuelPointsResult(Row):
    success: bool = False
    new_total: int = 0
    amount_earned: int = 0
    new_level: int = 1
    level_up: bool = False
    burn_streak: int = 0


class DailyBoostResult(Row):
    success: bool = False
    boost_title: str | None = None
    fp_earned: int = 0
    next_available: dt.datetime | None = None
