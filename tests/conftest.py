"""Shared test fixtures.

``FakeBackend`` is an in-memory stand-in for the hosted backend (PostgREST
tables, RPC procedures and GoTrue auth) served through
``httpx.MockTransport``. No test touches the network.
"""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from collections.abc import AsyncGenerator, Callable
from datetime import date, datetime, timezone
from typing import Any

import httpx
import pytest
import pytest_asyncio

from healthrocket.backend.client import BackendClient
from healthrocket.config import Settings
from healthrocket.storage import MemoryKeyValueStore

ANON_KEY = "test-anon-key"
BACKEND_URL = "https://test-project.supabase.co"

# Embedded resource -> foreign key column on the parent row
EMBEDS = {"challenge_library": "challenge_id", "quest_library": "quest_id", "contests": "contest_id"}


def _fmt(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _split_top_level(text: str) -> list[str]:
    parts, depth, current = [], 0, ""
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += ch
    if current.strip():
        parts.append(current.strip())
    return parts


def _compare(row_value: Any, op: str, raw: str) -> bool:
    if op == "eq":
        return _fmt(row_value) == raw
    if op == "neq":
        return _fmt(row_value) != raw
    if op == "is":
        return _fmt(row_value) == raw
    if op == "in":
        return _fmt(row_value) in raw.strip("()").split(",")
    if row_value is None:
        return False
    try:
        left, right = float(row_value), float(raw)
    except (TypeError, ValueError):
        left, right = str(row_value), raw
    return {"gt": left > right, "gte": left >= right, "lt": left < right, "lte": left <= right}[op]


class FakeBackend:
    """Minimal PostgREST + GoTrue emulation over in-memory tables."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.auth_users: dict[str, dict[str, Any]] = {}
        self.tokens: dict[str, str] = {}
        self.launch_codes: dict[str, dict[str, Any]] = {
            "BETA2024": {
                "valid": True,
                "community_id": "community-beta",
                "community_name": "Beta Testers",
                "has_community": True,
                "default_plan": "Beta Access",
            },
        }
        self.redeemed: list[tuple[str, str]] = []
        self.rpc_handlers: dict[str, Callable[[dict[str, Any], str | None], Any]] = {
            "validate_launch_code": self._rpc_validate_launch_code,
            "use_launch_code": self._rpc_use_launch_code,
            "earn_fuel_points": self._rpc_earn_fuel_points,
            "get_user_dashboard": self._rpc_get_user_dashboard,
            "complete_daily_boost": self._rpc_complete_daily_boost,
        }
        self.failures: dict[tuple[str, str], tuple[int, dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []
        self.confirm_email = False
        self.network_down = False
        # Tables whose reads are limited to the caller's own rows
        self.rls: set[str] = set()
        self.transport = httpx.MockTransport(self.handle)

    # --- Test helpers ---

    def fail(self, path: str, method: str = "*", status: int = 400, message: str = "Request failed", code: str | None = None) -> None:
        """Make every request to ``path`` (e.g. ``/rest/v1/users``) fail."""
        self.failures[(method, path)] = (status, {"message": message, "code": code or str(status), "details": None, "hint": None})

    def add_user(self, email: str, password: str = "Secret123!", *, profile: bool = True, **fields: Any) -> str:
        user_id = str(uuid.uuid4())
        self.auth_users[email] = {
            "id": user_id,
            "email": email,
            "password": password,
            "user_metadata": {"user_name": fields.get("user_name", email.split("@")[0])},
            "created_at": "2024-01-01T00:00:00Z",
        }
        if profile:
            row = {
                "id": user_id,
                "email": email,
                "user_name": email.split("@")[0],
                "fuel_points": 0,
                "level": 1,
                "burn_streak_days": 0,
                "longest_burn_streak": 0,
                "lifetime_fp_earned": 0,
                "is_admin": False,
            }
            row.update(fields)
            self.tables["users"].append(row)
        return user_id

    def rows(self, table: str, **match: Any) -> list[dict[str, Any]]:
        return [r for r in self.tables[table] if all(r.get(k) == v for k, v in match.items())]

    def paths(self) -> list[str]:
        return [f"{r.method} {r.url.path}" for r in self.requests]

    # --- Dispatch ---

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.network_down:
            raise httpx.ConnectError("Connection refused", request=request)

        path = request.url.path
        for key in ((request.method, path), ("*", path)):
            if key in self.failures:
                status, body = self.failures[key]
                return httpx.Response(status, json=body)

        body = json.loads(request.content) if request.content else None
        if path.startswith("/auth/v1/"):
            return self._auth(request, path.removeprefix("/auth/v1/"), body)
        if path.startswith("/rest/v1/rpc/"):
            return self._rpc(request, path.removeprefix("/rest/v1/rpc/"), body or {})
        if path.startswith("/rest/v1/"):
            return self._table(request, path.removeprefix("/rest/v1/"), body)
        return httpx.Response(404, json={"message": f"Unknown path {path}"})

    def _caller(self, request: httpx.Request) -> str | None:
        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        return self.tokens.get(token)

    # --- Auth ---

    def _session_payload(self, user: dict[str, Any]) -> dict[str, Any]:
        token = f"access-{uuid.uuid4().hex}"
        self.tokens[token] = user["id"]
        return {
            "access_token": token,
            "refresh_token": f"refresh-{user['id']}",
            "token_type": "bearer",
            "expires_in": 3600,
            "user": self._public_user(user),
        }

    @staticmethod
    def _public_user(user: dict[str, Any]) -> dict[str, Any]:
        return {k: user[k] for k in ("id", "email", "user_metadata", "created_at")}

    def _auth(self, request: httpx.Request, endpoint: str, body: dict[str, Any] | None) -> httpx.Response:
        body = body or {}
        if endpoint == "signup":
            if body["email"] in self.auth_users:
                return httpx.Response(422, json={"code": 422, "error_code": "user_already_exists", "msg": "User already registered"})
            user = {
                "id": str(uuid.uuid4()),
                "email": body["email"],
                "password": body["password"],
                "user_metadata": body.get("data") or {},
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
            self.auth_users[user["email"]] = user
            if self.confirm_email:
                return httpx.Response(200, json=self._public_user(user))
            return httpx.Response(200, json=self._session_payload(user))

        if endpoint == "token":
            grant = request.url.params.get("grant_type")
            if grant == "password":
                user = self.auth_users.get(body.get("email"))
                if user is None or user["password"] != body.get("password"):
                    return httpx.Response(
                        400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"}
                    )
                return httpx.Response(200, json=self._session_payload(user))
            if grant == "refresh_token":
                user_id = str(body.get("refresh_token", "")).removeprefix("refresh-")
                user = next((u for u in self.auth_users.values() if u["id"] == user_id), None)
                if user is None:
                    return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid Refresh Token"})
                return httpx.Response(200, json=self._session_payload(user))

        if endpoint == "logout":
            token = request.headers.get("authorization", "").removeprefix("Bearer ")
            self.tokens.pop(token, None)
            return httpx.Response(204)

        if endpoint == "recover":
            return httpx.Response(200, json={})

        if endpoint == "user":
            user_id = self._caller(request)
            user = next((u for u in self.auth_users.values() if u["id"] == user_id), None)
            if user is None:
                return httpx.Response(401, json={"msg": "Invalid JWT"})
            return httpx.Response(200, json=self._public_user(user))

        return httpx.Response(404, json={"msg": f"Unknown auth endpoint {endpoint}"})

    # --- RPC ---

    def _rpc(self, request: httpx.Request, name: str, params: dict[str, Any]) -> httpx.Response:
        handler = self.rpc_handlers.get(name)
        if handler is None:
            return httpx.Response(404, json={"message": f"Could not find the function public.{name}", "code": "PGRST202"})
        return httpx.Response(200, json=handler(params, self._caller(request)))

    def _rpc_validate_launch_code(self, params: dict[str, Any], caller: str | None) -> dict[str, Any]:
        return self.launch_codes.get(params["p_code"], {"valid": False, "error": "Invalid launch code"})

    def _rpc_use_launch_code(self, params: dict[str, Any], caller: str | None) -> dict[str, Any]:
        code = self.launch_codes.get(params["p_code"].upper())
        self.redeemed.append((params["p_user_id"], params["p_code"]))
        return {
            "success": code is not None,
            "community_enrolled": bool(code and code.get("has_community")),
            "community_name": code.get("community_name") if code else None,
        }

    def _rpc_earn_fuel_points(self, params: dict[str, Any], caller: str | None) -> dict[str, Any]:
        user_id, amount = params["p_user_id"], params["p_amount"]
        now = datetime.now(timezone.utc)
        self.tables["fp_earnings"].append(
            {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "source": params["p_source"],
                "source_id": params.get("p_source_id"),
                "amount": amount,
                "metadata": params.get("p_metadata"),
                "date": date.today().isoformat(),
                "created_at": now.isoformat(),
            }
        )
        users = self.rows("users", id=user_id)
        new_total = amount
        if users:
            users[0]["fuel_points"] = users[0].get("fuel_points", 0) + amount
            users[0]["lifetime_fp_earned"] = users[0].get("lifetime_fp_earned", 0) + amount
            new_total = users[0]["fuel_points"]
        return {
            "success": True,
            "new_total": new_total,
            "amount_earned": amount,
            "new_level": 1,
            "level_up": False,
            "burn_streak": 0,
        }

    def _rpc_get_user_dashboard(self, params: dict[str, Any], caller: str | None) -> dict[str, Any]:
        users = self.rows("users", id=params["p_user_id"])
        return {"user": users[0] if users else None, "active_challenges": [], "recent_earnings": []}

    def _rpc_complete_daily_boost(self, params: dict[str, Any], caller: str | None) -> dict[str, Any]:
        return {"success": True, "boost_title": "Morning Walk", "fp_earned": 10, "next_available": None}

    # --- Tables ---

    def _matching(self, table: str, filters: list[tuple[str, str]]) -> list[dict[str, Any]]:
        rows = self.tables[table]
        for column, expr in filters:
            op, _, raw = expr.partition(".")
            rows = [r for r in rows if _compare(r.get(column), op, raw)]
        return rows

    def _project(self, table: str, row: dict[str, Any], select: str) -> dict[str, Any]:
        parts = _split_top_level(select)
        out: dict[str, Any] = {}
        for part in parts:
            if "(" in part:
                name = part.split("(", 1)[0].strip()
                columns = [c.strip() for c in part.split("(", 1)[1].rstrip(")").split(",")]
                fk = EMBEDS.get(name)
                target = next((r for r in self.tables[name] if fk and r.get("id") == row.get(fk)), None)
                out[name] = {c: target.get(c) for c in columns} if target else None
            elif part == "*":
                out.update(row)
            else:
                out[part] = row.get(part)
        return out

    def _table(self, request: httpx.Request, table: str, body: Any) -> httpx.Response:
        params = request.url.params
        reserved = {"select", "order", "limit", "on_conflict", "offset"}
        filters = [(k, v) for k, v in params.multi_items() if k not in reserved]
        select = params.get("select", "*")
        prefer = request.headers.get("prefer", "")
        returning = "return=representation" in prefer

        if request.method == "GET":
            rows = list(self._matching(table, filters))
            if table in self.rls:
                owner = "id" if table == "users" else "user_id"
                rows = [r for r in rows if r.get(owner) == self._caller(request)]
            for term in reversed(params.get("order", "").split(",") if params.get("order") else []):
                column, _, direction = term.partition(".")
                rows.sort(key=lambda r, c=column: (r.get(c) is None, _fmt(r.get(c))), reverse=direction == "desc")
            total = len(rows)
            if params.get("limit"):
                rows = rows[: int(params["limit"])]
            data = [self._project(table, r, select) for r in rows]
            headers = {"content-range": f"0-{max(len(data) - 1, 0)}/{total}"} if "count=" in prefer else {}
            return httpx.Response(200, json=data, headers=headers)

        if request.method == "POST":
            incoming = body if isinstance(body, list) else [body]
            written = []
            for row in incoming:
                row = dict(row)
                row.setdefault("id", str(uuid.uuid4()))
                row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
                existing = self.rows(table, id=row["id"])
                if existing and "merge-duplicates" in prefer:
                    existing[0].update(row)
                    written.append(existing[0])
                elif existing:
                    return httpx.Response(
                        409, json={"message": "duplicate key value violates unique constraint", "code": "23505"}
                    )
                else:
                    self.tables[table].append(row)
                    written.append(row)
            if returning:
                return httpx.Response(201, json=[self._project(table, r, select) for r in written])
            return httpx.Response(201)

        if request.method == "PATCH":
            rows = self._matching(table, filters)
            for row in rows:
                row.update(body or {})
            if returning:
                return httpx.Response(200, json=[self._project(table, r, select) for r in rows])
            return httpx.Response(204)

        if request.method == "DELETE":
            doomed = self._matching(table, filters)
            self.tables[table] = [r for r in self.tables[table] if r not in doomed]
            return httpx.Response(204)

        return httpx.Response(405, json={"message": "Method not allowed"})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        supabase_url=BACKEND_URL,
        supabase_anon_key=ANON_KEY,
        persist_session=False,
        storage_path=str(tmp_path / "storage.json"),
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest_asyncio.fixture
async def client(backend: FakeBackend, settings: Settings, store: MemoryKeyValueStore) -> AsyncGenerator[BackendClient, None]:
    """A backend client wired to the fake backend."""
    async with BackendClient.from_settings(settings, store=store, transport=backend.transport) as c:
        yield c


@pytest.fixture
def client_factory(backend: FakeBackend, settings: Settings) -> Callable[[], BackendClient]:
    """Fresh client per call, for per-identity runs."""

    def factory() -> BackendClient:
        return BackendClient.from_settings(settings, store=MemoryKeyValueStore(), transport=backend.transport)

    return factory
