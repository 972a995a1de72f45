"""Signed-in state mirror for long-running callers (CLI sessions, dashboards)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from healthrocket.auth.service import ensure_user_profile
from healthrocket.backend.auth_api import SIGNED_IN
from healthrocket.backend.errors import BackendError

if TYPE_CHECKING:
    from healthrocket.backend.auth_api import AuthSubscription, AuthUser, Session
    from healthrocket.backend.client import BackendClient

logger = structlog.get_logger()


class AuthSession:
    """Tracks the current user and session of a ``BackendClient``.

    On ``SIGNED_IN`` the user's profile row is created if it does not exist.
    """

    def __init__(self, client: BackendClient) -> None:
        self.client = client
        self.user: AuthUser | None = None
        self.session: Session | None = None
        self.loading = True
        self._subscription: AuthSubscription | None = None

    async def start(self) -> AuthSession:
        self.session = await self.client.auth.get_session()
        self.user = self.session.user if self.session else None
        self.loading = False
        self._subscription = self.client.auth.on_auth_state_change(self._on_change)
        return self

    async def _on_change(self, event: str, session: Session | None) -> None:
        self.session = session
        self.user = session.user if session else None
        self.loading = False
        logger.debug("auth_state_changed", auth_event=event, user_id=self.user.id if self.user else None)

        if event == SIGNED_IN and self.user is not None:
            try:
                await ensure_user_profile(self.client, self.user)
            except BackendError as e:
                logger.warning("ensure_profile_failed", user_id=self.user.id, error=e.message)

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def __aenter__(self) -> AuthSession:
        return await self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
