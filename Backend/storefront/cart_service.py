"""
Member cart data access.

Every query on user_carts goes through user_scoped(), so no function here can
touch another user's rows. Rows are addressed by their natural key
(user_id, product_id, size, color) built from the item's own fields; the
composite item id is never parsed back apart.

Reads degrade to an empty cart on backend failure. Writes return False.

Usage:
    cart = await get_user_cart(backend, user_id)
    ok = await update_cart_item_quantity(backend, user_id, item, 3)
"""

import logging
from dataclasses import dataclass, field
from typing import Sequence

from .backend_client import BackendClient, BackendError, Query, user_scoped
from .core.config import get_settings
from .records import CartItem, CartRow, NO_COLOR, NO_SIZE, cart_item_from_row

logger = logging.getLogger(__name__)

USER_CARTS = "user_carts"
CART_KEY_COLUMNS = ("user_id", "product_id", "size", "color")


@dataclass
class MemberCart:
    items: list[CartItem] = field(default_factory=list)
    selected_ids: list[str] = field(default_factory=list)


def item_query(user_id: str, item: CartItem) -> Query:
    """The one user_carts row holding item."""
    return (
        user_scoped(USER_CARTS, user_id)
        .eq("product_id", item.product_id)
        .eq("size", item.size or NO_SIZE)
        .eq("color", item.color or NO_COLOR)
    )


# ────────────────────────────────────────────────────────────────
# Reads
# ────────────────────────────────────────────────────────────────

async def fetch_user_cart_rows(backend: BackendClient, user_id: str) -> list[CartRow]:
    """Raw rows, oldest first. Raises BackendError; used where a failed read must stop the caller."""
    return await backend.fetch(user_scoped(USER_CARTS, user_id).order("created_at"))


def member_cart_from_rows(rows: Sequence[CartRow]) -> MemberCart:
    cart = MemberCart()
    placeholder = get_settings().placeholder_image
    for row in rows:
        item = cart_item_from_row(row, placeholder)
        cart.items.append(item)
        if row.get("is_selected"):
            cart.selected_ids.append(item.id)
    return cart


async def get_user_cart(backend: BackendClient, user_id: str) -> MemberCart:
    try:
        rows = await fetch_user_cart_rows(backend, user_id)
    except BackendError as e:
        logger.error(f"Error loading cart for user {user_id}: {e}")
        return MemberCart()
    return member_cart_from_rows(rows)


# ────────────────────────────────────────────────────────────────
# Writes
# ────────────────────────────────────────────────────────────────

async def upsert_user_cart_rows(backend: BackendClient, user_id: str, rows: Sequence[CartRow]) -> bool:
    """One request for the whole batch; rows colliding on the cart key are replaced."""
    if not rows:
        return True
    try:
        await backend.upsert(USER_CARTS, rows, on_conflict=CART_KEY_COLUMNS)
    except BackendError as e:
        logger.error(f"Error upserting {len(rows)} cart rows for user {user_id}: {e}")
        return False
    return True


async def add_item_to_user_cart(backend: BackendClient, user_id: str, row: CartRow) -> bool:
    return await upsert_user_cart_rows(backend, user_id, [row])


async def update_cart_item_quantity(backend: BackendClient, user_id: str, item: CartItem, quantity: int) -> bool:
    try:
        await backend.update(item_query(user_id, item), {"quantity": quantity})
    except BackendError as e:
        logger.error(f"Error updating quantity of {item.id} for user {user_id}: {e}")
        return False
    return True


async def remove_cart_item(backend: BackendClient, user_id: str, item: CartItem) -> bool:
    try:
        await backend.delete(item_query(user_id, item))
    except BackendError as e:
        logger.error(f"Error removing {item.id} for user {user_id}: {e}")
        return False
    return True


async def remove_cart_items(backend: BackendClient, user_id: str, items: Sequence[CartItem]) -> bool:
    """Delete items one row at a time. Stops at the first failure; earlier deletes stand."""
    for item in items:
        if not await remove_cart_item(backend, user_id, item):
            return False
    return True


async def update_item_selection(backend: BackendClient, user_id: str, item: CartItem, is_selected: bool) -> bool:
    try:
        await backend.update(item_query(user_id, item), {"is_selected": is_selected})
    except BackendError as e:
        logger.error(f"Error updating selection of {item.id} for user {user_id}: {e}")
        return False
    return True


async def update_all_items_selection(backend: BackendClient, user_id: str, is_selected: bool) -> bool:
    try:
        await backend.update(user_scoped(USER_CARTS, user_id), {"is_selected": is_selected})
    except BackendError as e:
        logger.error(f"Error updating selection of all items for user {user_id}: {e}")
        return False
    return True


async def clear_user_cart(backend: BackendClient, user_id: str) -> bool:
    try:
        await backend.delete(user_scoped(USER_CARTS, user_id))
    except BackendError as e:
        logger.error(f"Error clearing cart for user {user_id}: {e}")
        return False
    return True
