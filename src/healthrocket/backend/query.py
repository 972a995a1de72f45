"""PostgREST table query builder.

Builds ``/rest/v1/<table>`` requests with PostgREST filter syntax
(``id=eq.<uuid>``, ``order=created_at.desc``, ``limit=10``) and returns a
``QueryResult``. Failures raise ``BackendError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from healthrocket.backend.errors import NO_ROWS_CODE, BackendError

if TYPE_CHECKING:
    from healthrocket.backend.client import BackendClient


@dataclass
class QueryResult:
    data: Any
    count: int | None = None
    status: int = 200


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_count(content_range: str | None) -> int | None:
    """Extract the total from a ``Content-Range: 0-9/22`` header."""
    if not content_range or "/" not in content_range:
        return None
    total = content_range.rsplit("/", 1)[-1]
    if total == "*":
        return None
    try:
        return int(total)
    except ValueError:
        return None


class TableQuery:
    """Chainable query against one table. Call ``execute()`` to send it."""

    def __init__(self, client: BackendClient, table: str) -> None:
        self._client = client
        self.table = table
        self._method = "GET"
        self._columns = "*"
        self._filters: list[tuple[str, str]] = []
        self._order: list[str] = []
        self._limit: int | None = None
        self._body: Any = None
        self._prefer: list[str] = []
        self._on_conflict: str | None = None
        self._count: str | None = None
        self._returning = False
        self._single = False
        self._maybe_single = False

    # --- Verbs ---

    def select(self, columns: str = "*", count: str | None = None) -> TableQuery:
        """Select columns. After a write, asks for the written rows back."""
        self._columns = " ".join(columns.split())
        if self._method == "GET":
            self._count = count
        else:
            self._returning = True
        return self

    def insert(self, rows: dict[str, Any] | list[dict[str, Any]]) -> TableQuery:
        self._method = "POST"
        self._body = rows
        return self

    def upsert(
        self,
        rows: dict[str, Any] | list[dict[str, Any]],
        on_conflict: str | None = None,
    ) -> TableQuery:
        self._method = "POST"
        self._body = rows
        self._prefer.append("resolution=merge-duplicates")
        self._on_conflict = on_conflict
        return self

    def update(self, values: dict[str, Any]) -> TableQuery:
        self._method = "PATCH"
        self._body = values
        return self

    def delete(self) -> TableQuery:
        self._method = "DELETE"
        return self

    # --- Filters ---

    def _filter(self, column: str, op: str, value: str) -> TableQuery:
        self._filters.append((column, f"{op}.{value}"))
        return self

    def eq(self, column: str, value: Any) -> TableQuery:
        return self._filter(column, "eq", _format_value(value))

    def neq(self, column: str, value: Any) -> TableQuery:
        return self._filter(column, "neq", _format_value(value))

    def gt(self, column: str, value: Any) -> TableQuery:
        return self._filter(column, "gt", _format_value(value))

    def gte(self, column: str, value: Any) -> TableQuery:
        return self._filter(column, "gte", _format_value(value))

    def lt(self, column: str, value: Any) -> TableQuery:
        return self._filter(column, "lt", _format_value(value))

    def lte(self, column: str, value: Any) -> TableQuery:
        return self._filter(column, "lte", _format_value(value))

    def in_(self, column: str, values: list[Any]) -> TableQuery:
        joined = ",".join(_format_value(v) for v in values)
        return self._filter(column, "in", f"({joined})")

    def is_(self, column: str, value: bool | None) -> TableQuery:
        return self._filter(column, "is", _format_value(value))

    # --- Modifiers ---

    def order(self, column: str, ascending: bool = True) -> TableQuery:
        self._order.append(f"{column}.{'asc' if ascending else 'desc'}")
        return self

    def limit(self, count: int) -> TableQuery:
        self._limit = count
        return self

    def single(self) -> TableQuery:
        """Expect exactly one row; ``data`` becomes that row."""
        self._single = True
        return self

    def maybe_single(self) -> TableQuery:
        """Expect zero or one row; ``data`` becomes the row or ``None``."""
        self._maybe_single = True
        return self

    # --- Execution ---

    def build_params(self) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        if self._method == "GET" or self._returning:
            params.append(("select", self._columns))
        params.extend(self._filters)
        if self._order:
            params.append(("order", ",".join(self._order)))
        if self._limit is not None:
            params.append(("limit", str(self._limit)))
        if self._on_conflict:
            params.append(("on_conflict", self._on_conflict))
        return params

    def build_headers(self) -> dict[str, str]:
        prefer = list(self._prefer)
        if self._method != "GET":
            prefer.append("return=representation" if self._returning else "return=minimal")
        if self._count:
            prefer.append(f"count={self._count}")
        return {"Prefer": ",".join(prefer)} if prefer else {}

    async def execute(self) -> QueryResult:
        response = await self._client.request(
            self._method,
            f"/rest/v1/{self.table}",
            params=self.build_params(),
            json=self._body,
            headers=self.build_headers(),
        )

        data: Any = response.json() if response.content else None
        count = _parse_count(response.headers.get("content-range"))

        if self._single or self._maybe_single:
            rows = data if isinstance(data, list) else ([] if data is None else [data])
            if len(rows) == 1:
                data = rows[0]
            elif self._maybe_single and not rows:
                data = None
            else:
                raise BackendError(
                    "JSON object requested, multiple (or no) rows returned",
                    code=NO_ROWS_CODE,
                    status=406,
                    details=f"The result contains {len(rows)} rows",
                )

        return QueryResult(data=data, count=count, status=response.status_code)
