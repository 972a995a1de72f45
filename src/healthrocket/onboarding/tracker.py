"""Onboarding progress tracking with local persistence.

The flow is a fixed linear walk::

    welcome -> signup -> profile_setup -> health_assessment -> welcome_dashboard -> completed

``signin`` is an alternative entry for returning users and is not part of
the walk. Only ``profile_setup`` and ``health_assessment`` may be skipped.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field, ValidationError

if TYPE_CHECKING:
    from healthrocket.storage import KeyValueStore

logger = structlog.get_logger()

ONBOARDING_STORAGE_KEY = "@health_rocket_onboarding"


class OnboardingStep(str, Enum):
    WELCOME = "welcome"
    SIGNUP = "signup"
    SIGNIN = "signin"
    PROFILE_SETUP = "profile_setup"
    HEALTH_ASSESSMENT = "health_assessment"
    WELCOME_DASHBOARD = "welcome_dashboard"
    COMPLETED = "completed"


STEP_ORDER: tuple[OnboardingStep, ...] = (
    OnboardingStep.WELCOME,
    OnboardingStep.SIGNUP,
    OnboardingStep.PROFILE_SETUP,
    OnboardingStep.HEALTH_ASSESSMENT,
    OnboardingStep.WELCOME_DASHBOARD,
    OnboardingStep.COMPLETED,
)
TOTAL_STEPS = len(STEP_ORDER)
SKIPPABLE_STEPS = frozenset({OnboardingStep.PROFILE_SETUP, OnboardingStep.HEALTH_ASSESSMENT})


class OnboardingState(BaseModel):
    current_step: OnboardingStep = OnboardingStep.WELCOME
    completed_steps: list[OnboardingStep] = Field(default_factory=list)
    skipped_steps: list[OnboardingStep] = Field(default_factory=list)
    is_complete: bool = False


class OnboardingProgress(BaseModel):
    current: int
    total: int
    percentage: int


class OnboardingTracker:
    """Step bookkeeping for one device. Every mutation is persisted."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self.state = OnboardingState()
        self.loading = True

    async def load(self) -> OnboardingState:
        """Read persisted state; fall back to defaults if absent or unreadable."""
        try:
            raw = await self._store.get_item(ONBOARDING_STORAGE_KEY)
            if raw:
                self.state = OnboardingState.model_validate(json.loads(raw))
        except (OSError, ValueError, ValidationError):
            logger.error("onboarding_state_load_failed", exc_info=True)
            self.state = OnboardingState()
        finally:
            self.loading = False
        return self.state

    async def _save(self) -> None:
        try:
            await self._store.set_item(ONBOARDING_STORAGE_KEY, self.state.model_dump_json())
        except (OSError, ValueError):
            logger.error("onboarding_state_save_failed", exc_info=True)

    # --- Actions ---

    async def set_current_step(self, step: OnboardingStep) -> None:
        self.state.current_step = step
        await self._save()

    async def complete_step(self, step: OnboardingStep) -> None:
        self.state.completed_steps = [s for s in self.state.completed_steps if s != step] + [step]
        self.state.skipped_steps = [s for s in self.state.skipped_steps if s != step]
        await self._save()

    async def skip_step(self, step: OnboardingStep) -> None:
        self.state.skipped_steps = [s for s in self.state.skipped_steps if s != step] + [step]
        self.state.completed_steps = [s for s in self.state.completed_steps if s != step]
        await self._save()

    async def complete_onboarding(self) -> None:
        self.state.current_step = OnboardingStep.COMPLETED
        self.state.is_complete = True
        await self._save()

    async def reset(self) -> None:
        self.state = OnboardingState()
        try:
            await self._store.remove_item(ONBOARDING_STORAGE_KEY)
        except (OSError, ValueError):
            logger.error("onboarding_state_remove_failed", exc_info=True)

    # --- Queries ---

    @property
    def current_step(self) -> OnboardingStep:
        return self.state.current_step

    @property
    def is_complete(self) -> bool:
        return self.state.is_complete

    def is_step_completed(self, step: OnboardingStep) -> bool:
        return step in self.state.completed_steps

    def is_step_skipped(self, step: OnboardingStep) -> bool:
        return step in self.state.skipped_steps

    def get_progress(self) -> OnboardingProgress:
        completed = len(self.state.completed_steps)
        return OnboardingProgress(
            current=completed,
            total=TOTAL_STEPS,
            percentage=round(completed / TOTAL_STEPS * 100),
        )

    def get_next_step(self) -> OnboardingStep | None:
        """The step after the current one, or None once at the end.

        A current step outside the walk (signin) leads to the first step.
        """
        if self.state.current_step not in STEP_ORDER:
            return STEP_ORDER[0]
        index = STEP_ORDER.index(self.state.current_step)
        if index < TOTAL_STEPS - 1:
            return STEP_ORDER[index + 1]
        return None

    @staticmethod
    def can_skip_step(step: OnboardingStep) -> bool:
        return step in SKIPPABLE_STEPS
