"""
Tests for the wishlist and recently viewed products.

Run with: pytest tests/test_wishlist_recent.py -v
"""

import pytest

from conftest import MEMBER_ID
from storefront.recent_views import (
    RECENT_VIEW_LIMIT,
    RecentViewStore,
    add_recent_view,
    get_user_recent_views,
)
from storefront.wishlist import (
    MSG_ADD_FAILED,
    MSG_ADDED,
    MSG_LOGIN_REQUIRED,
    WishlistStore,
    get_user_wishlist,
    get_wishlist_count,
    is_in_wishlist,
)


def _wishlist_row(product_id: int, created_at: str, user_id: str = MEMBER_ID) -> dict:
    return {"user_id": user_id, "product_id": product_id, "created_at": created_at}


class TestWishlistDataAccess:
    @pytest.mark.asyncio
    async def test_newest_first(self, backend):
        backend.rows("wishlists").extend([
            _wishlist_row(1, "2025-01-01T00:00:00+00:00"),
            _wishlist_row(3, "2025-01-03T00:00:00+00:00"),
            _wishlist_row(2, "2025-01-02T00:00:00+00:00"),
        ])
        products = await get_user_wishlist(backend, MEMBER_ID)
        assert [p.id for p in products] == [3, 2, 1]

    @pytest.mark.asyncio
    async def test_deleted_products_dropped(self, backend):
        backend.rows("wishlists").append(_wishlist_row(999, "2025-01-01T00:00:00+00:00"))
        assert await get_user_wishlist(backend, MEMBER_ID) == []

    @pytest.mark.asyncio
    async def test_scoped_to_user(self, backend):
        backend.rows("wishlists").append(_wishlist_row(1, "2025-01-01T00:00:00+00:00", user_id="user-2"))
        assert await get_user_wishlist(backend, MEMBER_ID) == []
        assert not await is_in_wishlist(backend, MEMBER_ID, 1)
        assert await get_wishlist_count(backend, "user-2") == 1

    @pytest.mark.asyncio
    async def test_read_failure_degrades(self, backend):
        backend.fail("fetch", "wishlists")
        assert await get_user_wishlist(backend, MEMBER_ID) == []


class TestWishlistStore:
    @pytest.mark.asyncio
    async def test_guest_gets_login_message(self, backend):
        store = WishlistStore(backend)
        result = await store.add(1)
        assert not result.ok
        assert result.message == MSG_LOGIN_REQUIRED
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_add_refreshes(self, backend):
        store = WishlistStore(backend, MEMBER_ID)

        result = await store.add(2)

        assert result.ok
        assert result.message == MSG_ADDED
        assert store.contains(2)
        assert store.count == 1

    @pytest.mark.asyncio
    async def test_add_failure(self, backend):
        backend.fail("insert", "wishlists")
        result = await WishlistStore(backend, MEMBER_ID).add(2)
        assert not result.ok
        assert result.message == MSG_ADD_FAILED

    @pytest.mark.asyncio
    async def test_remove_and_clear(self, backend):
        store = WishlistStore(backend, MEMBER_ID)
        await store.add(1)
        await store.add(2)

        assert (await store.remove(1)).ok
        assert not store.contains(1)

        assert (await store.clear()).ok
        assert store.items == []
        assert backend.rows("wishlists") == []


class TestRecentViews:
    @pytest.mark.asyncio
    async def test_view_again_moves_to_front(self, backend):
        backend.rows("recent_views").extend([
            {"id": 1, "user_id": MEMBER_ID, "product_id": 1, "viewed_at": "2025-01-01T00:00:00+00:00"},
            {"id": 2, "user_id": MEMBER_ID, "product_id": 2, "viewed_at": "2025-01-02T00:00:00+00:00"},
        ])

        assert await add_recent_view(backend, MEMBER_ID, 1)

        assert len(backend.rows("recent_views")) == 2
        products = await get_user_recent_views(backend, MEMBER_ID)
        assert [p.id for p in products] == [1, 2]

    @pytest.mark.asyncio
    async def test_new_view_inserted(self, backend):
        assert await add_recent_view(backend, MEMBER_ID, 3)
        assert backend.rows("recent_views")[0]["product_id"] == 3

    @pytest.mark.asyncio
    async def test_limit(self, backend):
        backend.rows("recent_views").extend(
            {"user_id": MEMBER_ID, "product_id": 1, "viewed_at": f"2025-01-{day:02d}T00:00:00+00:00"}
            for day in range(1, 31)
        )
        products = await get_user_recent_views(backend, MEMBER_ID)
        assert len(products) == RECENT_VIEW_LIMIT

    @pytest.mark.asyncio
    async def test_guest_store_is_noop(self, backend):
        store = RecentViewStore(backend)
        assert not await store.record(1)
        await store.refresh()
        assert store.items == []
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_member_store(self, backend):
        store = RecentViewStore(backend, MEMBER_ID)
        assert await store.record(4)
        assert [p.id for p in store.items] == [4]

        assert await store.remove(4)
        assert store.items == []

    @pytest.mark.asyncio
    async def test_write_failure_reported(self, backend):
        backend.fail("insert", "recent_views")
        assert not await RecentViewStore(backend, MEMBER_ID).record(4)
