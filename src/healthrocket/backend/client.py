"""Hosted backend client and process-wide instance management."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx
import structlog

from healthrocket.backend.auth_api import AuthAPI
from healthrocket.backend.errors import BackendError
from healthrocket.backend.query import TableQuery
from healthrocket.config import Settings
from healthrocket.storage import FileKeyValueStore, KeyValueStore

logger = structlog.get_logger()

_backend: BackendClient | None = None


class BackendClient:
    """REST, RPC and auth access to one backend project.

    Owns one ``httpx.AsyncClient`` and one auth session. Use a separate
    instance per signed-in identity.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: float = 15.0,
        store: KeyValueStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url or not anon_key:
            msg = "Missing Supabase environment variables"
            raise RuntimeError(msg)
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self._http = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout,
            transport=transport,
            headers={"apikey": anon_key, "Content-Type": "application/json"},
        )
        self.auth = AuthAPI(self, store)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: KeyValueStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> BackendClient:
        if store is None and settings.persist_session:
            store = FileKeyValueStore(Path(settings.storage_path))
        return cls(
            settings.supabase_url,
            settings.supabase_anon_key,
            timeout=settings.request_timeout_seconds,
            store=store,
            transport=transport,
        )

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        """Send one request. Non-2xx responses and transport failures raise ``BackendError``."""
        token = self.auth.access_token if authenticated else None
        merged = {"Authorization": f"Bearer {token or self.anon_key}"}
        if headers:
            merged.update(headers)

        try:
            response = await self._http.request(method, path, params=params, json=json, headers=merged)
        except httpx.TransportError as e:
            logger.warning("backend_transport_error", method=method, path=path, error=str(e))
            raise BackendError.from_transport(e) from e

        if response.is_error:
            error = BackendError.from_response(response)
            logger.info(
                "backend_request_failed",
                method=method,
                path=path,
                status=response.status_code,
                code=error.code,
                error=error.message,
            )
            raise error
        return response

    def table(self, name: str) -> TableQuery:
        """Start a query against a table (``client.table("users").select("*")``)."""
        return TableQuery(self, name)

    from_ = table

    async def rpc(self, name: str, params: dict[str, Any] | None = None) -> Any:
        """Call a stored procedure and return its decoded result."""
        response = await self.request("POST", f"/rest/v1/rpc/{name}", json=params or {})
        if not response.content:
            return None
        return response.json()


async def init_backend(settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> BackendClient:
    """Initialize the process-wide backend client and restore any saved session."""
    global _backend  # noqa: PLW0603
    _backend = BackendClient.from_settings(settings, transport=transport)
    await _backend.auth.restore_session()
    return _backend


async def close_backend() -> None:
    """Close the process-wide backend client."""
    global _backend  # noqa: PLW0603
    if _backend:
        await _backend.aclose()
        _backend = None


def get_backend() -> BackendClient:
    """Get the process-wide backend client."""
    if _backend is None:
        msg = "Backend not initialized. Call init_backend() first."
        raise RuntimeError(msg)
    return _backend
