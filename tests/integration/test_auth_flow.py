"""Integration tests for sign-up, sign-in and session handling against the fake backend."""

from __future__ import annotations

import json
import time

import pytest

from healthrocket.auth.service import (
    INVALID_LAUNCH_CODE_MESSAGE,
    get_current_user,
    reset_password,
    sign_in,
    sign_out,
    sign_up,
)
from healthrocket.auth.session import AuthSession
from healthrocket.backend.auth_api import SESSION_STORAGE_KEY, SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED
from healthrocket.backend.client import BackendClient
from healthrocket.storage import FileKeyValueStore


class TestSignUp:
    """Account creation with and without launch codes."""

    @pytest.mark.asyncio
    async def test_valid_launch_code_returns_user_id(self, client, backend):
        result = await sign_up(client, "new@healthrocket.app", "Secret123!", "New User", "BETA2024")

        assert result.success is True
        assert result.error is None
        assert result.user_id
        assert result.user_id == backend.auth_users["new@healthrocket.app"]["id"]
        assert backend.redeemed == [(result.user_id, "BETA2024")]

    @pytest.mark.asyncio
    async def test_profile_row_created_with_defaults(self, client, backend):
        result = await sign_up(client, "new@healthrocket.app", "Secret123!", "New User", "BETA2024")

        [profile] = backend.rows("users", id=result.user_id)
        assert profile["user_name"] == "New User"
        assert profile["fuel_points"] == 0
        assert profile["level"] == 1
        assert profile["health_score"] == 7.8
        assert profile["plan_name"] == "Preview Access"
        assert profile["plan_status"] == "Trial"
        assert profile["contest_credits"] == 2
        assert profile["onboarding_step"] == "welcome"

    @pytest.mark.asyncio
    async def test_metadata_carries_name_and_code(self, client, backend):
        await sign_up(client, "new@healthrocket.app", "Secret123!", "New User", "BETA2024")
        metadata = backend.auth_users["new@healthrocket.app"]["user_metadata"]
        assert metadata == {"user_name": "New User", "launch_code": "BETA2024"}

    @pytest.mark.asyncio
    async def test_invalid_launch_code_rejected(self, client, backend):
        result = await sign_up(client, "new@healthrocket.app", "Secret123!", "New User", "NOTACODE")

        assert result.success is False
        assert result.error == INVALID_LAUNCH_CODE_MESSAGE
        assert backend.auth_users == {}
        assert "POST /auth/v1/signup" not in backend.paths()

    @pytest.mark.asyncio
    async def test_list_validation_result_rejected(self, client, backend):
        backend.rpc_handlers["validate_launch_code"] = lambda params, caller: [{"valid": True}]

        result = await sign_up(client, "new@healthrocket.app", "Secret123!", "New User", "BETA2024")

        assert result.success is False
        assert result.error == INVALID_LAUNCH_CODE_MESSAGE
        assert backend.auth_users == {}

    @pytest.mark.asyncio
    async def test_launch_code_sent_as_entered(self, client, backend):
        seen = []
        validate = backend.rpc_handlers["validate_launch_code"]

        def recording_validate(params, caller):
            seen.append(params["p_code"])
            return validate({"p_code": params["p_code"].strip().upper()}, caller)

        backend.rpc_handlers["validate_launch_code"] = recording_validate

        result = await sign_up(client, "new@healthrocket.app", "Secret123!", "New User", " beta2024 ")

        assert result.success is True
        assert seen == [" beta2024 "]
        assert backend.redeemed == [(result.data["user"].id, " beta2024 ")]

    @pytest.mark.asyncio
    async def test_without_launch_code(self, client, backend):
        result = await sign_up(client, "plain@healthrocket.app", "Secret123!", "Plain")

        assert result.success is True
        assert "POST /rest/v1/rpc/validate_launch_code" not in backend.paths()
        assert "POST /rest/v1/rpc/use_launch_code" not in backend.paths()
        assert backend.rows("users", id=result.user_id)

    @pytest.mark.asyncio
    async def test_duplicate_email_returns_backend_message(self, client, backend):
        backend.add_user("taken@healthrocket.app")
        result = await sign_up(client, "taken@healthrocket.app", "Secret123!", "Taken")

        assert result.success is False
        assert result.error == "User already registered"

    @pytest.mark.asyncio
    async def test_profile_failure_message(self, client, backend):
        backend.fail("/rest/v1/users", method="POST", status=403, message="new row violates row-level security policy")
        result = await sign_up(client, "new@healthrocket.app", "Secret123!", "New User")

        assert result.success is False
        assert result.error == (
            "Profile creation failed: new row violates row-level security policy. "
            "Please ensure you have proper permissions or contact support."
        )

    @pytest.mark.asyncio
    async def test_redeem_failure_does_not_fail_signup(self, client, backend):
        backend.fail("/rest/v1/rpc/use_launch_code", status=500, message="boom")
        result = await sign_up(client, "new@healthrocket.app", "Secret123!", "New User", "BETA2024")
        assert result.success is True

    @pytest.mark.asyncio
    async def test_unconfirmed_signup_has_no_session(self, client, backend):
        backend.confirm_email = True
        result = await sign_up(client, "new@healthrocket.app", "Secret123!", "New User")

        assert result.success is True
        assert result.user_id
        assert result.data["session"] is None
        assert client.auth.session is None


class TestSignIn:
    @pytest.mark.asyncio
    async def test_sign_in_sets_session(self, client, backend):
        user_id = backend.add_user("test1@healthrocket.app", "TestUser123!")
        result = await sign_in(client, "test1@healthrocket.app", "TestUser123!")

        assert result.success is True
        assert result.user_id == user_id
        assert client.auth.access_token in backend.tokens

    @pytest.mark.asyncio
    async def test_wrong_password(self, client, backend):
        backend.add_user("test1@healthrocket.app", "TestUser123!")
        result = await sign_in(client, "test1@healthrocket.app", "wrong")

        assert result.success is False
        assert result.error == "Invalid login credentials"
        assert client.auth.session is None

    @pytest.mark.asyncio
    async def test_network_failure_is_reported(self, client, backend):
        backend.network_down = True
        result = await sign_in(client, "test1@healthrocket.app", "TestUser123!")

        assert result.success is False
        assert result.error.startswith("Network request failed")

    @pytest.mark.asyncio
    async def test_sign_out_clears_session(self, client, backend, store):
        backend.add_user("test1@healthrocket.app", "TestUser123!")
        await sign_in(client, "test1@healthrocket.app", "TestUser123!")
        token = client.auth.access_token

        result = await sign_out(client)

        assert result.success is True
        assert client.auth.session is None
        assert token not in backend.tokens
        assert await store.get_item(SESSION_STORAGE_KEY) is None

    @pytest.mark.asyncio
    async def test_current_user(self, client, backend):
        user_id = backend.add_user("test1@healthrocket.app", "TestUser123!")
        user, error = await get_current_user(client)
        assert (user, error) == (None, None)

        await sign_in(client, "test1@healthrocket.app", "TestUser123!")
        user, error = await get_current_user(client)
        assert error is None
        assert user.id == user_id

    @pytest.mark.asyncio
    async def test_reset_password_sends_redirect(self, client, backend):
        result = await reset_password(client, "test1@healthrocket.app")

        assert result.success is True
        recover = backend.requests[-1]
        assert recover.url.path == "/auth/v1/recover"
        assert recover.url.params["redirect_to"] == "healthrocket://reset-password"
        assert json.loads(recover.content) == {"email": "test1@healthrocket.app"}


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_session_restored_from_store(self, client, backend, settings, store):
        user_id = backend.add_user("test1@healthrocket.app", "TestUser123!")
        await sign_in(client, "test1@healthrocket.app", "TestUser123!")

        async with BackendClient.from_settings(settings, store=store, transport=backend.transport) as other:
            session = await other.auth.restore_session()
            assert session is not None
            assert session.user.id == user_id
            assert other.auth.access_token == client.auth.access_token

    @pytest.mark.asyncio
    async def test_expired_session_is_refreshed(self, client, backend, store):
        backend.add_user("test1@healthrocket.app", "TestUser123!")
        await sign_in(client, "test1@healthrocket.app", "TestUser123!")
        stale = json.loads(await store.get_item(SESSION_STORAGE_KEY))
        stale["expires_at"] = int(time.time()) - 10
        await store.set_item(SESSION_STORAGE_KEY, json.dumps(stale))

        events = []
        client.auth.on_auth_state_change(lambda event, session: events.append(event))
        session = await client.auth.restore_session()

        assert session is not None
        assert session.access_token != stale["access_token"]
        assert events == [TOKEN_REFRESHED]

    @pytest.mark.asyncio
    async def test_failed_refresh_signs_out(self, client, backend, store):
        backend.add_user("test1@healthrocket.app", "TestUser123!")
        await sign_in(client, "test1@healthrocket.app", "TestUser123!")
        stale = json.loads(await store.get_item(SESSION_STORAGE_KEY))
        stale["expires_at"] = int(time.time()) - 10
        stale["refresh_token"] = "refresh-unknown"
        await store.set_item(SESSION_STORAGE_KEY, json.dumps(stale))

        events = []
        client.auth.on_auth_state_change(lambda event, session: events.append(event))

        assert await client.auth.restore_session() is None
        assert events == [SIGNED_OUT]
        assert await store.get_item(SESSION_STORAGE_KEY) is None


class TestAuthSession:
    @pytest.mark.asyncio
    async def test_signed_in_creates_missing_profile(self, client, backend):
        user_id = backend.add_user("fresh@healthrocket.app", "Secret123!", profile=False, user_name="Fresh Face")

        async with AuthSession(client) as auth_session:
            assert auth_session.is_authenticated is False
            assert auth_session.loading is False
            await sign_in(client, "fresh@healthrocket.app", "Secret123!")
            assert auth_session.is_authenticated is True
            assert auth_session.user.id == user_id

        [profile] = backend.rows("users", id=user_id)
        assert profile["user_name"] == "Fresh Face"
        assert profile["fuel_points"] == 0

    @pytest.mark.asyncio
    async def test_existing_profile_untouched(self, client, backend):
        user_id = backend.add_user("test1@healthrocket.app", "TestUser123!", fuel_points=420)

        async with AuthSession(client):
            await sign_in(client, "test1@healthrocket.app", "TestUser123!")

        assert backend.rows("users", id=user_id)[0]["fuel_points"] == 420
        assert len(backend.rows("users", id=user_id)) == 1

    @pytest.mark.asyncio
    async def test_close_unsubscribes(self, client, backend):
        backend.add_user("test1@healthrocket.app", "TestUser123!")
        auth_session = await AuthSession(client).start()
        auth_session.close()

        await sign_in(client, "test1@healthrocket.app", "TestUser123!")
        assert auth_session.user is None

    @pytest.mark.asyncio
    async def test_events_reach_listener(self, client, backend):
        backend.add_user("test1@healthrocket.app", "TestUser123!")
        events = []
        subscription = client.auth.on_auth_state_change(lambda event, session: events.append(event))

        await sign_in(client, "test1@healthrocket.app", "TestUser123!")
        await sign_out(client)
        subscription.unsubscribe()
        await sign_in(client, "test1@healthrocket.app", "TestUser123!")

        assert events == [SIGNED_IN, SIGNED_OUT]


class TestCorruptSessionStorage:
    @pytest.mark.asyncio
    async def test_restore_from_corrupt_file_returns_none(self, settings, backend, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text("{not json", encoding="utf-8")

        async with BackendClient.from_settings(
            settings, store=FileKeyValueStore(path), transport=backend.transport
        ) as client:
            assert await client.auth.restore_session() is None
            assert client.auth.session is None

    @pytest.mark.asyncio
    async def test_sign_in_and_out_with_corrupt_file(self, settings, backend, tmp_path):
        backend.add_user("test1@healthrocket.app", "TestUser123!")
        path = tmp_path / "storage.json"
        path.write_text("{not json", encoding="utf-8")

        async with BackendClient.from_settings(
            settings, store=FileKeyValueStore(path), transport=backend.transport
        ) as client:
            result = await sign_in(client, "test1@healthrocket.app", "TestUser123!")
            assert result.success is True
            assert client.auth.session is not None

            assert (await sign_out(client)).success is True
            assert client.auth.session is None
