"""GoTrue auth endpoints and session bookkeeping.

The session lives on the ``AuthAPI`` instance and, when a store is given, is
persisted so a later process can pick it up. Listeners registered with
``on_auth_state_change`` are called after every session change.
"""

from __future__ import annotations

import inspect
import json
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, Field

from healthrocket.backend.errors import BackendError

if TYPE_CHECKING:
    from healthrocket.backend.client import BackendClient
    from healthrocket.storage import KeyValueStore

logger = structlog.get_logger()

SESSION_STORAGE_KEY = "@health_rocket_auth_session"

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
USER_UPDATED = "USER_UPDATED"

# Refresh a little before the token actually expires
EXPIRY_MARGIN_SECONDS = 30


class AuthUser(BaseModel):
    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None


class Session(BaseModel):
    access_token: str
    refresh_token: str = ""
    token_type: str = "bearer"
    expires_in: int = 3600
    expires_at: int | None = None
    user: AuthUser

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at - EXPIRY_MARGIN_SECONDS


AuthListener = Callable[[str, Session | None], Awaitable[None] | None]


class AuthSubscription:
    """Handle returned by ``on_auth_state_change``."""

    def __init__(self, api: AuthAPI, callback: AuthListener) -> None:
        self._api = api
        self.callback = callback

    def unsubscribe(self) -> None:
        self._api._listeners = [cb for cb in self._api._listeners if cb is not self.callback]


def _session_from_payload(payload: dict[str, Any]) -> Session | None:
    if not payload.get("access_token"):
        return None
    if payload.get("expires_at") is None and payload.get("expires_in"):
        payload = {**payload, "expires_at": int(time.time()) + int(payload["expires_in"])}
    return Session.model_validate(payload)


class AuthAPI:
    """Sign-up, sign-in and session management against ``/auth/v1``."""

    def __init__(self, client: BackendClient, store: KeyValueStore | None = None) -> None:
        self._client = client
        self._store = store
        self._session: Session | None = None
        self._listeners: list[AuthListener] = []

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def access_token(self) -> str | None:
        return self._session.access_token if self._session else None

    # --- Listeners ---

    def on_auth_state_change(self, callback: AuthListener) -> AuthSubscription:
        self._listeners.append(callback)
        return AuthSubscription(self, callback)

    async def _emit(self, event: str) -> None:
        for callback in list(self._listeners):
            result = callback(event, self._session)
            if inspect.isawaitable(result):
                await result

    async def _set_session(self, session: Session | None, event: str) -> None:
        self._session = session
        if self._store is not None:
            try:
                if session is None:
                    await self._store.remove_item(SESSION_STORAGE_KEY)
                else:
                    await self._store.set_item(SESSION_STORAGE_KEY, session.model_dump_json())
            except (OSError, ValueError):
                logger.error("session_persist_failed", auth_event=event, exc_info=True)
        await self._emit(event)

    async def restore_session(self) -> Session | None:
        """Load a persisted session, refreshing it if it has expired."""
        if self._store is None:
            return None
        try:
            raw = await self._store.get_item(SESSION_STORAGE_KEY)
            if not raw:
                return None
            self._session = Session.model_validate(json.loads(raw))
        except (OSError, ValueError):
            # pydantic's ValidationError is a ValueError
            logger.warning("stored_session_unreadable", exc_info=True)
            await self._discard_stored_session()
            return None
        return await self.get_session()

    async def _discard_stored_session(self) -> None:
        try:
            await self._store.remove_item(SESSION_STORAGE_KEY)
        except (OSError, ValueError):
            logger.error("stored_session_discard_failed", exc_info=True)

    # --- Endpoints ---

    async def sign_up(
        self,
        email: str,
        password: str,
        data: dict[str, Any] | None = None,
    ) -> tuple[AuthUser | None, Session | None]:
        """Create an auth user. Returns ``(user, session)``; session is None until confirmed."""
        response = await self._client.request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": data or {}},
            authenticated=False,
        )
        payload = response.json()
        session = _session_from_payload(payload)
        if session is not None:
            await self._set_session(session, SIGNED_IN)
            return session.user, session
        user = AuthUser.model_validate(payload["user"] if "user" in payload else payload)
        logger.info("auth_user_created", user_id=user.id, confirmed=False)
        return user, None

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        response = await self._client.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            authenticated=False,
        )
        session = _session_from_payload(response.json())
        if session is None:
            raise BackendError("No session returned from sign in", status=response.status_code)
        await self._set_session(session, SIGNED_IN)
        logger.info("auth_signed_in", user_id=session.user.id)
        return session

    async def refresh_session(self) -> Session:
        if self._session is None or not self._session.refresh_token:
            raise BackendError("Auth session missing!", code="session_missing")
        response = await self._client.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": self._session.refresh_token},
            authenticated=False,
        )
        session = _session_from_payload(response.json())
        if session is None:
            raise BackendError("No session returned from token refresh", status=response.status_code)
        await self._set_session(session, TOKEN_REFRESHED)
        return session

    async def get_session(self) -> Session | None:
        """Current session, refreshed first when it is about to expire."""
        if self._session is not None and self._session.is_expired():
            try:
                return await self.refresh_session()
            except BackendError:
                logger.warning("session_refresh_failed", exc_info=True)
                await self._set_session(None, SIGNED_OUT)
                return None
        return self._session

    async def sign_out(self) -> None:
        if self._session is not None:
            try:
                await self._client.request("POST", "/auth/v1/logout")
            finally:
                await self._set_session(None, SIGNED_OUT)
            return
        await self._set_session(None, SIGNED_OUT)

    async def reset_password_for_email(self, email: str, redirect_to: str | None = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        await self._client.request(
            "POST",
            "/auth/v1/recover",
            params=params,
            json={"email": email},
            authenticated=False,
        )

    async def get_user(self) -> AuthUser | None:
        """Fetch the user for the current access token, or None when signed out."""
        session = await self.get_session()
        if session is None:
            return None
        response = await self._client.request("GET", "/auth/v1/user")
        user = AuthUser.model_validate(response.json())
        if user != session.user:
            self._session = session.model_copy(update={"user": user})
            await self._emit(USER_UPDATED)
        return user
