"""Scripted new-user journey from registration to first achievement."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

import structlog

from healthrocket.auth.service import sign_in, sign_up
from healthrocket.backend.errors import BackendError
from healthrocket.community.chat import post_message
from healthrocket.db.models import ContestStatus, FPSource
from healthrocket.gamification.challenges import enroll_in_challenge, list_active_challenges
from healthrocket.gamification.contests import enter_contest, list_contests
from healthrocket.gamification.points import earn_fuel_points
from healthrocket.gamification.quests import list_active_quests, start_quest
from healthrocket.health.assessments import submit_assessment

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from healthrocket.backend.client import BackendClient

logger = structlog.get_logger()

StepStatus = Literal["pending", "success", "error"]

FALLBACK_LAUNCH_CODE = "BETA2024"
JOURNEY_PASSWORD = "JourneyTest123!"
JOURNEY_USER_NAME = "Journey Test User"
ACHIEVEMENT_FP = 100

STEPS = (
    ("registration", "User Registration", "Create new account with launch code"),
    ("first-login", "First Login", "Authenticate and load user profile"),
    ("health-assessment", "Health Assessment", "Complete initial health assessment"),
    ("first-boost", "First Daily Boost", "Complete first daily boost activity"),
    ("challenge-enrollment", "Challenge Enrollment", "Join first challenge"),
    ("contest-entry", "Contest Entry", "Enter first contest"),
    ("quest-start", "Quest Participation", "Start first quest"),
    ("community-interaction", "Community Interaction", "Send first chat message"),
    ("achievement-unlock", "Achievement Unlock", "Unlock first achievement"),
)


class JourneyStepError(Exception):
    """A journey step did not succeed; the message is shown as the step result."""


@dataclass
class JourneyStep:
    id: str
    name: str
    description: str
    status: StepStatus = "pending"
    result: str | None = None


@dataclass
class JourneyReport:
    email: str
    user_id: str | None = None
    steps: list[JourneyStep] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for s in self.steps if s.status == "success")

    @property
    def error_count(self) -> int:
        return sum(1 for s in self.steps if s.status == "error")

    @property
    def passed(self) -> bool:
        return all(s.status == "success" for s in self.steps)


class UserJourney:
    """Registers a throwaway user and walks them through the core features.

    A failed registration or login stops the journey; every later step runs
    regardless of the ones before it.
    """

    def __init__(self, client: BackendClient, email: str | None = None) -> None:
        self.client = client
        self.email = email or f"journey-test-{secrets.token_hex(3)}@example.com"
        self.report = JourneyReport(email=self.email, steps=[JourneyStep(*step) for step in STEPS])

    def _step(self, step_id: str) -> JourneyStep:
        return next(s for s in self.report.steps if s.id == step_id)

    async def _run_step(self, step_id: str, action: Callable[[], Awaitable[str]]) -> bool:
        step = self._step(step_id)
        try:
            step.result = await action()
            step.status = "success"
        except (BackendError, JourneyStepError, ValueError) as e:
            step.status = "error"
            step.result = e.message if isinstance(e, BackendError) else str(e)
        logger.info("journey_step", step=step_id, status=step.status, result=step.result)
        return step.status == "success"

    async def run(self) -> JourneyReport:
        if not await self._run_step("registration", self.register):
            return self.report
        if not await self._run_step("first-login", self.first_login):
            return self.report

        await self._run_step("health-assessment", self.health_assessment)
        await self._run_step("first-boost", self.first_boost)
        await self._run_step("challenge-enrollment", self.challenge_enrollment)
        await self._run_step("contest-entry", self.contest_entry)
        await self._run_step("quest-start", self.quest_start)
        await self._run_step("community-interaction", self.community_interaction)
        await self._run_step("achievement-unlock", self.achievement_unlock)
        return self.report

    @property
    def user_id(self) -> str:
        if self.report.user_id is None:
            msg = "No user ID returned"
            raise JourneyStepError(msg)
        return self.report.user_id

    # --- Steps ---

    async def register(self) -> str:
        result = await sign_up(self.client, self.email, JOURNEY_PASSWORD, JOURNEY_USER_NAME)
        if not result.success:
            result = await sign_up(
                self.client, self.email, JOURNEY_PASSWORD, JOURNEY_USER_NAME, FALLBACK_LAUNCH_CODE
            )
            if not result.success:
                raise JourneyStepError(result.error or "Registration failed")
        if not result.user_id:
            raise JourneyStepError("No user ID returned")
        self.report.user_id = result.user_id
        return f"User created: {self.email}"

    async def first_login(self) -> str:
        result = await sign_in(self.client, self.email, JOURNEY_PASSWORD)
        if not result.success:
            raise JourneyStepError(result.error or "Login failed")
        return "Successfully authenticated"

    async def health_assessment(self) -> str:
        await submit_assessment(
            self.client,
            self.user_id,
            {
                "mindset_score": 8.0,
                "sleep_score": 7.5,
                "exercise_score": 8.5,
                "nutrition_score": 7.0,
                "biohacking_score": 6.5,
                "overall_health_score": 7.5,
            },
            healthspan_years=75.5,
            responses={"journey_test": True},
            fp_earned=100,
        )
        return "Assessment completed, earned 100 FP"

    async def first_boost(self) -> str:
        await earn_fuel_points(
            self.client, self.user_id, FPSource.DAILY_BOOST, 10, "morning-walk", {"journey_test": True}
        )
        return "Earned 10 FP from daily boost"

    async def challenge_enrollment(self) -> str:
        try:
            challenges = await list_active_challenges(self.client, limit=1)
        except BackendError:
            challenges = []
        if not challenges:
            raise JourneyStepError("No active challenges found")
        await enroll_in_challenge(self.client, self.user_id, challenges[0])
        return f"Enrolled in: {challenges[0].title}"

    async def contest_entry(self) -> str:
        try:
            contests = await list_contests(self.client, ContestStatus.ACTIVE, limit=1)
        except BackendError:
            contests = []
        if not contests:
            raise JourneyStepError("No active contests found")
        await enter_contest(self.client, self.user_id, JOURNEY_USER_NAME, contests[0])
        return f"Entered contest: {contests[0].title}"

    async def quest_start(self) -> str:
        try:
            quests = await list_active_quests(self.client, limit=1)
        except BackendError:
            quests = []
        if not quests:
            raise JourneyStepError("No active quests found")
        await start_quest(self.client, self.user_id, quests[0])
        return f"Started quest: {quests[0].title}"

    async def community_interaction(self) -> str:
        await post_message(self.client, self.user_id, JOURNEY_USER_NAME, "Hello from the journey test! 👋")
        return "First message sent to community"

    async def achievement_unlock(self) -> str:
        result = await self.client.table("users").select("fuel_points").eq("id", self.user_id).single().execute()
        fp = result.data.get("fuel_points") or 0
        if fp < ACHIEVEMENT_FP:
            raise JourneyStepError(f"Insufficient FP for achievement ({fp}/{ACHIEVEMENT_FP})")
        return f"First Steps achievement unlocked ({fp} FP)"
