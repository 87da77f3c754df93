"""
Hosted Backend Client

Async client for the PostgREST-compatible REST API of the hosted
backend-as-a-service. All product, category, cart, wishlist, recent-view and
order data lives behind it; this module owns no business logic.

One client is created at application startup (see main.lifespan) and passed
explicitly to every data-access function. It wraps a single httpx.AsyncClient,
so it must be closed on shutdown.

Usage:
    from .backend_client import Query, create_backend_client

    client = create_backend_client(settings)
    rows = await client.fetch(
        Query("products").eq("status", "forsale").order("sales", descending=True).limit(8)
    )
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Optional, Sequence

import httpx

from .core.config import Settings

logger = logging.getLogger(__name__)

# Characters with meaning inside PostgREST filter values
_RESERVED_CHARS = set(',.:()"')


class BackendError(Exception):
    """Raised when the hosted backend cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)

    @classmethod
    def from_response(cls, response: httpx.Response) -> "BackendError":
        code = None
        message = response.text or response.reason_phrase
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = body.get("code")
            message = body.get("message") or message
        return cls(
            f"{response.request.method} {response.request.url.path} -> HTTP {response.status_code}: {message}",
            status_code=response.status_code,
            code=code,
        )


# ────────────────────────────────────────────────────────────────
# Query Builder
# ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Filter:
    """One column filter. op is a PostgREST operator: eq, neq, in, gte, lte, ilike, is, not.is."""

    column: str
    op: str
    value: Any


def _format_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote(value: str) -> str:
    if any(ch in _RESERVED_CHARS for ch in value):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return value


def _encode_filter(f: Filter) -> str:
    if f.op == "in":
        return "in.(" + ",".join(_quote(_format_scalar(v)) for v in f.value) + ")"
    return f"{f.op}.{_quote(_format_scalar(f.value))}"


@dataclass(frozen=True)
class Query:
    """
    Immutable query description for one collection.

    Every builder method returns a new Query, so a base query can be shared
    and refined:

        base = Query("products").eq("status", "forsale")
        popular = base.order("sales", descending=True).limit(8)
    """

    table: str
    columns: str = "*"
    filters: tuple[Filter, ...] = ()
    or_groups: tuple[tuple[Filter, ...], ...] = ()
    ordering: tuple[tuple[str, bool], ...] = ()
    row_limit: Optional[int] = None

    def select(self, columns: str) -> "Query":
        return replace(self, columns=columns)

    def _where(self, f: Filter) -> "Query":
        return replace(self, filters=self.filters + (f,))

    def eq(self, column: str, value: Any) -> "Query":
        return self._where(Filter(column, "eq", value))

    def neq(self, column: str, value: Any) -> "Query":
        return self._where(Filter(column, "neq", value))

    def in_(self, column: str, values: Sequence[Any]) -> "Query":
        return self._where(Filter(column, "in", tuple(values)))

    def gte(self, column: str, value: Any) -> "Query":
        return self._where(Filter(column, "gte", value))

    def lte(self, column: str, value: Any) -> "Query":
        return self._where(Filter(column, "lte", value))

    def ilike(self, column: str, pattern: str) -> "Query":
        return self._where(Filter(column, "ilike", pattern))

    def is_null(self, column: str) -> "Query":
        return self._where(Filter(column, "is", None))

    def not_null(self, column: str) -> "Query":
        return self._where(Filter(column, "not.is", None))

    def or_ilike(self, columns: Sequence[str], term: str) -> "Query":
        """Match rows where ANY of columns contains term (case-insensitive)."""
        group = tuple(Filter(column, "ilike", f"%{term}%") for column in columns)
        return replace(self, or_groups=self.or_groups + (group,))

    def order(self, column: str, descending: bool = False) -> "Query":
        return replace(self, ordering=self.ordering + ((column, descending),))

    def limit(self, n: int) -> "Query":
        return replace(self, row_limit=n)

    def filter_params(self) -> list[tuple[str, str]]:
        params = [(f.column, _encode_filter(f)) for f in self.filters]
        for group in self.or_groups:
            inner = ",".join(f"{f.column}.{_encode_filter(f)}" for f in group)
            params.append(("or", f"({inner})"))
        return params

    def to_params(self) -> list[tuple[str, str]]:
        """Render as PostgREST query-string parameters."""
        params = [("select", self.columns)]
        params.extend(self.filter_params())
        if self.ordering:
            params.append((
                "order",
                ",".join(f"{column}.{'desc' if descending else 'asc'}" for column, descending in self.ordering),
            ))
        if self.row_limit is not None:
            params.append(("limit", str(self.row_limit)))
        return params


def user_scoped(table: str, user_id: str) -> Query:
    """
    Query pre-filtered by owner. Every query on a per-user collection starts here.

        query = user_scoped("wishlists", ctx.user_id).eq("product_id", 7)
    """
    if not user_id:
        raise ValueError(f"user_id is required for {table} queries")
    return Query(table).eq("user_id", user_id)


# ────────────────────────────────────────────────────────────────
# Client
# ────────────────────────────────────────────────────────────────

class BackendClient:
    """
    REST client for the hosted backend.

    All methods raise BackendError on transport or HTTP failure. Callers in
    the data-access layer decide whether that degrades to an empty result
    (reads) or a reported failure (writes).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[list[tuple[str, str]]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> httpx.Response:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        url = f"{self.base_url}/{path}"

        try:
            response = await self._http.request(method, url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise BackendError(f"{method} /{path} failed: {e}") from e

        if response.is_error:
            raise BackendError.from_response(response)

        logger.debug(f"{method} /{path} -> HTTP {response.status_code}")
        return response

    @staticmethod
    def _rows(response: httpx.Response) -> list[dict]:
        if not response.content:
            return []
        data = response.json()
        if isinstance(data, dict):
            return [data]
        return data or []

    # Reads

    async def fetch(self, query: Query) -> list[dict]:
        response = await self._request("GET", query.table, params=query.to_params())
        return self._rows(response)

    async def fetch_one(self, query: Query) -> Optional[dict]:
        rows = await self.fetch(query.limit(1))
        return rows[0] if rows else None

    async def count(self, query: Query) -> int:
        params = [("select", query.columns)] + query.filter_params() + [("limit", "0")]
        response = await self._request("GET", query.table, params=params, prefer="count=exact")
        content_range = response.headers.get("Content-Range", "")
        total = content_range.rpartition("/")[2]
        return int(total) if total.isdigit() else 0

    # Writes

    async def insert(self, table: str, rows: Sequence[dict]) -> list[dict]:
        response = await self._request("POST", table, json=list(rows), prefer="return=representation")
        return self._rows(response)

    async def upsert(self, table: str, rows: Sequence[dict], on_conflict: Sequence[str]) -> list[dict]:
        """Insert rows, merging into existing rows that collide on on_conflict columns."""
        response = await self._request(
            "POST",
            table,
            params=[("on_conflict", ",".join(on_conflict))],
            json=list(rows),
            prefer="resolution=merge-duplicates,return=representation",
        )
        return self._rows(response)

    async def update(self, query: Query, values: dict) -> list[dict]:
        response = await self._request(
            "PATCH", query.table, params=query.filter_params(), json=values, prefer="return=representation"
        )
        return self._rows(response)

    async def delete(self, query: Query) -> list[dict]:
        response = await self._request(
            "DELETE", query.table, params=query.filter_params(), prefer="return=representation"
        )
        return self._rows(response)

    async def rpc(self, function: str, params: Optional[dict] = None) -> Any:
        response = await self._request("POST", f"rpc/{function}", json=params or {})
        if not response.content:
            return None
        return response.json()


def create_backend_client(settings: Settings) -> BackendClient:
    """Build the process-wide client from settings. Called once at startup."""
    if not settings.supabase_anon_key:
        logger.warning("SUPABASE_ANON_KEY is not set; backend requests will be anonymous")
    return BackendClient(
        settings.rest_url,
        settings.supabase_anon_key,
        timeout=settings.backend_timeout_seconds,
    )
