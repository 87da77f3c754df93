"""
Pytest configuration and fixtures.

Tests never reach a real hosted backend. FakeBackend keeps tables as lists of
dicts and evaluates the same Query objects the service builds, so data-access
functions run unchanged against it. Failures are injected per method and
table with FakeBackend.fail().
"""
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import jwt
import pytest
from fastapi import Depends
from httpx import ASGITransport, AsyncClient

from storefront.backend_client import BackendError, Filter, Query
from storefront.categories import TraversalResolver
from storefront.core.config import Settings, get_settings
from storefront.core.request_context import RequestContext, get_optional_request_context
from storefront.guest_storage import GuestStorage, GuestStorageError, MemoryGuestStorage

JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"
GUEST_ID = "guest-abc"
MEMBER_ID = "user-1"


# ────────────────────────────────────────────────────────────────
# Fake hosted backend
# ────────────────────────────────────────────────────────────────

def _like(value: Any, pattern: str) -> bool:
    if value is None:
        return False
    regex = ".*".join(re.escape(part) for part in pattern.split("%"))
    return re.fullmatch(regex, str(value), re.IGNORECASE | re.DOTALL) is not None


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


def _matches(f: Filter, row: dict) -> bool:
    value = row.get(f.column)
    if f.op == "eq":
        return value == f.value
    if f.op == "neq":
        return value != f.value
    if f.op == "in":
        return value in f.value
    if f.op == "gte":
        return value is not None and _comparable(value) >= _comparable(f.value)
    if f.op == "lte":
        return value is not None and _comparable(value) <= _comparable(f.value)
    if f.op == "ilike":
        return _like(value, f.value)
    if f.op == "is":
        return value is None
    if f.op == "not.is":
        return value is not None
    raise AssertionError(f"unsupported filter op {f.op}")


def _sort_key(value: Any):
    return (value is None, _comparable(value) if value is not None else 0)


class FakeBackend:
    """In-memory stand-in for BackendClient."""

    def __init__(
        self,
        tables: Optional[dict[str, list[dict]]] = None,
        rpc_functions: Optional[dict[str, Callable[["FakeBackend", dict], Any]]] = None,
    ):
        self.tables: dict[str, list[dict]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.rpc_functions = dict(rpc_functions or {})
        self.calls: list[tuple[str, str]] = []
        self._failures: set[tuple[str, str]] = set()
        self._next_id = 1000

    def fail(self, method: str, table: str = "*") -> None:
        self._failures.add((method, table))

    def heal(self) -> None:
        self._failures.clear()

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    def _call(self, method: str, table: str) -> None:
        self.calls.append((method, table))
        if (method, table) in self._failures or (method, "*") in self._failures:
            raise BackendError(f"injected {method} failure on {table}", status_code=503)

    def _select(self, query: Query) -> list[dict]:
        rows = [
            row for row in self.rows(query.table)
            if all(_matches(f, row) for f in query.filters)
            and all(any(_matches(f, row) for f in group) for group in query.or_groups)
        ]
        for column, descending in reversed(query.ordering):
            rows.sort(key=lambda r: _sort_key(r.get(column)), reverse=descending)
        return rows

    @staticmethod
    def _project(row: dict, columns: str) -> dict:
        if columns == "*":
            return dict(row)
        return {c: row.get(c) for c in columns.split(",")}

    def _new_row(self, row: dict) -> dict:
        stored = dict(row)
        if "id" not in stored:
            self._next_id += 1
            stored["id"] = self._next_id
        stored.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        return stored

    async def fetch(self, query: Query) -> list[dict]:
        self._call("fetch", query.table)
        rows = self._select(query)
        if query.row_limit is not None:
            rows = rows[:query.row_limit]
        return [self._project(row, query.columns) for row in rows]

    async def fetch_one(self, query: Query) -> Optional[dict]:
        rows = await self.fetch(query.limit(1))
        return rows[0] if rows else None

    async def count(self, query: Query) -> int:
        self._call("count", query.table)
        return len(self._select(query))

    async def insert(self, table: str, rows: list[dict]) -> list[dict]:
        self._call("insert", table)
        stored = [self._new_row(row) for row in rows]
        self.rows(table).extend(stored)
        return [dict(row) for row in stored]

    async def upsert(self, table: str, rows: list[dict], on_conflict) -> list[dict]:
        self._call("upsert", table)
        result = []
        for row in rows:
            existing = next(
                (r for r in self.rows(table) if all(r.get(c) == row.get(c) for c in on_conflict)),
                None,
            )
            if existing is None:
                existing = self._new_row(row)
                self.rows(table).append(existing)
            else:
                existing.update(row)
            result.append(dict(existing))
        return result

    async def update(self, query: Query, values: dict) -> list[dict]:
        self._call("update", query.table)
        matched = self._select(query)
        for row in matched:
            row.update(values)
        return [dict(row) for row in matched]

    async def delete(self, query: Query) -> list[dict]:
        self._call("delete", query.table)
        matched = self._select(query)
        ids = {id(row) for row in matched}
        self.tables[query.table] = [row for row in self.rows(query.table) if id(row) not in ids]
        return [dict(row) for row in matched]

    async def rpc(self, function: str, params: Optional[dict] = None) -> Any:
        self._call("rpc", function)
        if function not in self.rpc_functions:
            raise BackendError(f"function {function} not found", status_code=404, code="PGRST202")
        return self.rpc_functions[function](self, params or {})

    async def aclose(self) -> None:
        pass


# ────────────────────────────────────────────────────────────────
# Seed data
# ────────────────────────────────────────────────────────────────

def product_row(id: int, **overrides) -> dict:
    row = {
        "id": id,
        "name": f"상품 {id}",
        "description": f"설명 {id}",
        "price": 10000 * id,
        "brand": "브랜드A",
        "image_urls": [f"https://img.example.com/{id}.jpg"],
        "category_id": 111,
        "status": "forsale",
        "sales": id,
        "stock": 10,
        "created_at": f"2025-01-{id:02d}T00:00:00+00:00",
    }
    row.update(overrides)
    return row


def category_rows() -> list[dict]:
    """
    1 여성 패션
      11 아우터        -> 111 코트, 112 자켓
      12 원피스        -> 121 미니 원피스
    2 남성 패션
    """
    return [
        {"id": 1, "name": "여성 패션", "level": 1, "parent_id": None},
        {"id": 2, "name": "남성 패션", "level": 1, "parent_id": None},
        {"id": 11, "name": "아우터", "level": 2, "parent_id": 1},
        {"id": 12, "name": "원피스", "level": 2, "parent_id": 1},
        {"id": 111, "name": "코트", "level": 3, "parent_id": 11},
        {"id": 112, "name": "자켓", "level": 3, "parent_id": 11},
        {"id": 121, "name": "미니 원피스", "level": 3, "parent_id": 12},
    ]


def seed_products() -> list[dict]:
    return [
        product_row(1, name="울 코트", category_id=111, brand="브랜드A", sales=50),
        product_row(2, name="트렌치 코트", category_id=111, brand="브랜드B", sales=80),
        product_row(3, name="데님 자켓", category_id=112, brand="브랜드A", sales=10),
        product_row(4, name="플라워 원피스", category_id=121, brand="브랜드C", sales=30),
        product_row(5, name="품절 코트", category_id=111, status="soldout", sales=99),
        product_row(6, name="이미지 없는 셔츠", category_id=2, image_urls=None, brand=None, sales=5),
    ]


def subcategory_rpc(backend: FakeBackend, params: dict) -> list[dict]:
    """Server-side recursive closure, as the installed SQL function answers."""
    result = []
    frontier = [params["parent_id"]]
    while frontier:
        children = [r["id"] for r in backend.rows("categories") if r.get("parent_id") in frontier]
        result.extend({"id": child} for child in children)
        frontier = children
    return result


# ────────────────────────────────────────────────────────────────
# Fixtures
# ────────────────────────────────────────────────────────────────

@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend({
        "products": seed_products(),
        "categories": category_rows(),
        "user_carts": [],
        "wishlists": [],
        "recent_views": [],
        "orders": [],
    })


class FlakyGuestStorage(MemoryGuestStorage):
    """MemoryGuestStorage whose reads or removals can be made to fail."""

    def __init__(self, data=None):
        super().__init__(data)
        self.fail_reads = False
        self.fail_removes = False

    async def get(self, key: str) -> Optional[str]:
        if self.fail_reads:
            raise GuestStorageError("guest storage unavailable")
        return await super().get(key)

    async def remove(self, key: str) -> None:
        if self.fail_removes:
            raise GuestStorageError("guest storage unavailable")
        await super().remove(key)


@pytest.fixture
def guest_storage() -> MemoryGuestStorage:
    return MemoryGuestStorage()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        SUPABASE_URL="http://backend.test",
        SUPABASE_ANON_KEY="anon-key",
        SUPABASE_JWT_SECRET=JWT_SECRET,
    )


def make_token(
    user_id: str = MEMBER_ID,
    role: str = "customer",
    brand: Optional[str] = None,
    secret: str = JWT_SECRET,
    expires_in: timedelta = timedelta(hours=1),
    audience: str = "authenticated",
) -> str:
    app_metadata = {"role": role}
    if brand:
        app_metadata["brand"] = brand
    claims = {
        "sub": user_id,
        "aud": audience,
        "email": f"{user_id}@example.com",
        "app_metadata": app_metadata,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(user_id: str = MEMBER_ID, **kwargs) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, **kwargs)}"}


@pytest.fixture
def guest_sessions() -> dict[str, MemoryGuestStorage]:
    """guest id -> storage, shared by every request of one test."""
    return {}


@pytest.fixture
async def client(backend, test_settings, guest_sessions):
    """
    AsyncClient for the FastAPI app with the backend, resolver, guest
    storage and settings replaced by in-memory fakes.
    """
    from storefront.main import app
    from storefront.routes_storefront import get_backend, get_guest_storage, get_resolver

    def override_guest_storage(
        ctx: RequestContext = Depends(get_optional_request_context),
    ) -> Optional[GuestStorage]:
        if not ctx.guest_session_id:
            return None
        return guest_sessions.setdefault(ctx.guest_session_id, MemoryGuestStorage())

    app.dependency_overrides[get_backend] = lambda: backend
    app.dependency_overrides[get_resolver] = lambda: TraversalResolver(backend)
    app.dependency_overrides[get_guest_storage] = override_guest_storage
    app.dependency_overrides[get_settings] = lambda: test_settings

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
