"""
Wishlist

Data access for the wishlists collection plus WishlistStore, the per-request
view of one member's wishlist. Guests cannot keep a wishlist; every store
operation for a guest answers with a "login required" message instead.

Every store write is followed by a refresh from the remote store, and every
operation returns a StoreMessage the front end shows as a toast.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .backend_client import BackendClient, BackendError, Query, user_scoped
from .catalog import PRODUCTS, products_from_rows
from .records import Product

logger = logging.getLogger(__name__)

WISHLISTS = "wishlists"

MSG_LOGIN_REQUIRED = "로그인이 필요한 서비스입니다."
MSG_ADDED = "찜 목록에 추가되었습니다."
MSG_ADD_FAILED = "찜 목록 추가에 실패했습니다."
MSG_REMOVED = "찜 목록에서 제거되었습니다."
MSG_REMOVE_FAILED = "찜 목록 제거에 실패했습니다."
MSG_CLEARED = "찜 목록이 초기화되었습니다."
MSG_CLEAR_FAILED = "찜 목록 초기화에 실패했습니다."


@dataclass
class StoreMessage:
    ok: bool
    message: str


async def products_in_order(backend: BackendClient, product_ids: list[int]) -> list[Product]:
    """
    Fetch products by id and return them in product_ids order.

    Ids whose product no longer exists are dropped. Raises BackendError.
    """
    if not product_ids:
        return []
    rows = await backend.fetch(Query(PRODUCTS).in_("id", product_ids))
    by_id = {p.id: p for p in products_from_rows(rows)}
    return [by_id[pid] for pid in product_ids if pid in by_id]


# ────────────────────────────────────────────────────────────────
# Data access
# ────────────────────────────────────────────────────────────────

async def get_user_wishlist(backend: BackendClient, user_id: str) -> list[Product]:
    """Wishlisted products, most recently added first."""
    try:
        rows = await backend.fetch(
            user_scoped(WISHLISTS, user_id).select("product_id,created_at").order("created_at", descending=True)
        )
        return await products_in_order(backend, [row["product_id"] for row in rows])
    except BackendError as e:
        logger.error(f"Error fetching wishlist for user {user_id}: {e}")
        return []


async def add_to_wishlist(backend: BackendClient, user_id: str, product_id: int) -> bool:
    try:
        await backend.insert(WISHLISTS, [{"user_id": user_id, "product_id": product_id}])
    except BackendError as e:
        logger.error(f"Error adding product {product_id} to wishlist of {user_id}: {e}")
        return False
    return True


async def remove_from_wishlist(backend: BackendClient, user_id: str, product_id: int) -> bool:
    try:
        await backend.delete(user_scoped(WISHLISTS, user_id).eq("product_id", product_id))
    except BackendError as e:
        logger.error(f"Error removing product {product_id} from wishlist of {user_id}: {e}")
        return False
    return True


async def is_in_wishlist(backend: BackendClient, user_id: str, product_id: int) -> bool:
    try:
        row = await backend.fetch_one(user_scoped(WISHLISTS, user_id).select("id").eq("product_id", product_id))
    except BackendError as e:
        logger.error(f"Error checking wishlist of {user_id}: {e}")
        return False
    return row is not None


async def get_wishlist_count(backend: BackendClient, user_id: str) -> int:
    try:
        return await backend.count(user_scoped(WISHLISTS, user_id).select("id"))
    except BackendError as e:
        logger.error(f"Error counting wishlist of {user_id}: {e}")
        return 0


async def clear_wishlist(backend: BackendClient, user_id: str) -> bool:
    try:
        await backend.delete(user_scoped(WISHLISTS, user_id))
    except BackendError as e:
        logger.error(f"Error clearing wishlist of {user_id}: {e}")
        return False
    return True


# ────────────────────────────────────────────────────────────────
# Store
# ────────────────────────────────────────────────────────────────

class WishlistStore:
    def __init__(self, backend: BackendClient, user_id: Optional[str] = None):
        self.backend = backend
        self.user_id = user_id or None
        self.items: list[Product] = []

    async def refresh(self) -> None:
        if self.user_id is None:
            self.items = []
            return
        self.items = await get_user_wishlist(self.backend, self.user_id)

    def contains(self, product_id: int) -> bool:
        return any(product.id == product_id for product in self.items)

    @property
    def count(self) -> int:
        return len(self.items)

    async def add(self, product_id: int) -> StoreMessage:
        if self.user_id is None:
            return StoreMessage(False, MSG_LOGIN_REQUIRED)
        if not await add_to_wishlist(self.backend, self.user_id, product_id):
            return StoreMessage(False, MSG_ADD_FAILED)
        await self.refresh()
        return StoreMessage(True, MSG_ADDED)

    async def remove(self, product_id: int) -> StoreMessage:
        if self.user_id is None:
            return StoreMessage(False, MSG_LOGIN_REQUIRED)
        if not await remove_from_wishlist(self.backend, self.user_id, product_id):
            return StoreMessage(False, MSG_REMOVE_FAILED)
        await self.refresh()
        return StoreMessage(True, MSG_REMOVED)

    async def clear(self) -> StoreMessage:
        if self.user_id is None:
            return StoreMessage(False, MSG_LOGIN_REQUIRED)
        if not await clear_wishlist(self.backend, self.user_id):
            return StoreMessage(False, MSG_CLEAR_FAILED)
        await self.refresh()
        return StoreMessage(True, MSG_CLEARED)
