"""
Recently viewed products.

Members get a server-side history of at most RECENT_VIEW_LIMIT products,
newest first. Viewing a product again moves it to the front instead of adding
a duplicate. Guests have no history; RecentViewStore ignores them.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from .backend_client import BackendClient, BackendError, user_scoped
from .records import Product
from .wishlist import products_in_order

logger = logging.getLogger(__name__)

RECENT_VIEWS = "recent_views"
RECENT_VIEW_LIMIT = 20


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def get_user_recent_views(backend: BackendClient, user_id: str, limit: int = RECENT_VIEW_LIMIT) -> list[Product]:
    try:
        rows = await backend.fetch(
            user_scoped(RECENT_VIEWS, user_id)
            .select("product_id,viewed_at")
            .order("viewed_at", descending=True)
            .limit(limit)
        )
        return await products_in_order(backend, [row["product_id"] for row in rows])
    except BackendError as e:
        logger.error(f"Error fetching recent views for user {user_id}: {e}")
        return []


async def add_recent_view(backend: BackendClient, user_id: str, product_id: int) -> bool:
    """Bump viewed_at of an existing row, or insert a new one."""
    try:
        existing = await backend.fetch_one(
            user_scoped(RECENT_VIEWS, user_id).select("id").eq("product_id", product_id)
        )
        if existing:
            await backend.update(
                user_scoped(RECENT_VIEWS, user_id).eq("id", existing["id"]),
                {"viewed_at": _now_iso()},
            )
        else:
            await backend.insert(
                RECENT_VIEWS,
                [{"user_id": user_id, "product_id": product_id, "viewed_at": _now_iso()}],
            )
    except BackendError as e:
        logger.error(f"Error recording view of product {product_id} for user {user_id}: {e}")
        return False
    return True


async def remove_recent_view(backend: BackendClient, user_id: str, product_id: int) -> bool:
    try:
        await backend.delete(user_scoped(RECENT_VIEWS, user_id).eq("product_id", product_id))
    except BackendError as e:
        logger.error(f"Error removing recent view {product_id} for user {user_id}: {e}")
        return False
    return True


async def clear_user_recent_views(backend: BackendClient, user_id: str) -> bool:
    try:
        await backend.delete(user_scoped(RECENT_VIEWS, user_id))
    except BackendError as e:
        logger.error(f"Error clearing recent views for user {user_id}: {e}")
        return False
    return True


class RecentViewStore:
    """Per-request recent-view history. Every method is a no-op for guests."""

    def __init__(self, backend: BackendClient, user_id: Optional[str] = None):
        self.backend = backend
        self.user_id = user_id or None
        self.items: list[Product] = []

    async def refresh(self) -> None:
        if self.user_id is None:
            self.items = []
            return
        self.items = await get_user_recent_views(self.backend, self.user_id)

    async def record(self, product_id: int) -> bool:
        if self.user_id is None:
            return False
        if not await add_recent_view(self.backend, self.user_id, product_id):
            return False
        await self.refresh()
        return True

    async def remove(self, product_id: int) -> bool:
        if self.user_id is None:
            return False
        if not await remove_recent_view(self.backend, self.user_id, product_id):
            return False
        self.items = [p for p in self.items if p.id != product_id]
        return True

    async def clear(self) -> bool:
        if self.user_id is None:
            return False
        if not await clear_user_recent_views(self.backend, self.user_id):
            return False
        self.items = []
        return True
