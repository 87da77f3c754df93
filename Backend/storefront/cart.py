"""
Cart Store

One shopper's cart for the length of a request, in one of two modes:

    guest   items live in GuestStorage under GUEST_CART_KEY / GUEST_SELECTION_KEY
    member  items live in the remote user_carts collection

Member mutations are write-through: the remote write is awaited first and
memory changes only when it succeeded, so a failed write leaves the store
exactly as it was and the method returns False. Guest mutations change memory
first and then persist both guest keys.

Login reconciliation (sync_on_login):
    1. Read the guest cart. Empty -> just load the member cart.
    2. Add guest quantities onto the member's rows with the same
       (product, size, color) key, or insert new rows. One batch upsert.
    3. Batch succeeded -> delete the guest keys.
       Batch failed    -> guest storage is left exactly as it was.
    4. Reload the member cart from the remote store.

Logout is a pure in-memory reset; every member change is already remote.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .backend_client import BackendClient, BackendError
from .cart_service import (
    add_item_to_user_cart,
    clear_user_cart,
    fetch_user_cart_rows,
    get_user_cart,
    remove_cart_item,
    remove_cart_items,
    update_all_items_selection,
    update_cart_item_quantity,
    update_item_selection,
    upsert_user_cart_rows,
)
from .guest_storage import GuestStorage, GuestStorageError
from .records import (
    CartItem,
    CartRow,
    Product,
    cart_item_from_product,
    cart_item_from_row,
    cart_item_to_row,
    make_cart_item_id,
)

logger = logging.getLogger(__name__)

GUEST_CART_KEY = "shopping_cart_guest"
GUEST_SELECTION_KEY = "cart_selected_items_guest"
# Written by older front ends; removed together with the current keys
LEGACY_CART_KEY = "shopping_cart"
LEGACY_SELECTION_KEY = "cart_selected_items"

_cart_items_adapter = TypeAdapter(list[CartItem])
_selection_adapter = TypeAdapter(list[str])

# Server-managed columns never sent back in an upsert
_SERVER_COLUMNS = ("id", "created_at", "updated_at")


@dataclass
class CartMergeResult:
    merged: int  # guest lines folded into the member cart
    item_count: int  # total quantity in the member cart afterwards
    ok: bool = True
    guest_cleared: bool = True  # False when merged guest keys could not be removed


class CartView(BaseModel):
    items: list[CartItem] = Field(default_factory=list)
    selected_ids: list[str] = Field(default_factory=list)
    is_all_selected: bool = False
    total_price: int = 0
    selected_total_price: int = 0
    item_count: int = 0


def collapse_duplicates(items: list[CartItem]) -> list[CartItem]:
    """Sum quantities of lines sharing an id, keeping first-seen order."""
    by_id: dict[str, CartItem] = {}
    for item in items:
        existing = by_id.get(item.id)
        if existing is None:
            by_id[item.id] = item
        else:
            by_id[item.id] = existing.model_copy(update={"quantity": existing.quantity + item.quantity})
    return list(by_id.values())


def build_merge_rows(user_id: str, guest_items: list[CartItem], member_rows: list[CartRow]) -> list[CartRow]:
    """
    Rows to upsert so the member cart gains every guest line.

    A guest line whose key the member already holds becomes the member's row
    with the quantities added together; the member's snapshot and selection
    are kept. Other guest lines become new selected rows.
    """
    existing: dict[str, CartRow] = {}
    for row in member_rows:
        existing[cart_item_from_row(row).id] = row

    rows = []
    for item in collapse_duplicates(guest_items):
        member_row = existing.get(item.id)
        if member_row is None:
            rows.append(cart_item_to_row(item, user_id, is_selected=True))
            continue
        merged = {k: v for k, v in member_row.items() if k not in _SERVER_COLUMNS}
        merged["quantity"] = (member_row.get("quantity") or 0) + item.quantity
        rows.append(CartRow(**merged))
    return rows


class CartStore:
    def __init__(
        self,
        backend: BackendClient,
        guest_storage: Optional[GuestStorage] = None,
        user_id: Optional[str] = None,
    ):
        self.backend = backend
        self.guest_storage = guest_storage
        self.user_id = user_id or None
        self.items: list[CartItem] = []
        self.selected_ids: list[str] = []
        # Set when guest storage could not be read; the stored cart is then never overwritten
        self.guest_unreadable = False

    @property
    def is_member(self) -> bool:
        return self.user_id is not None

    # ────────────────────────────────────────────────────────────────
    # Loading and guest persistence
    # ────────────────────────────────────────────────────────────────

    async def load(self) -> None:
        if self.is_member:
            cart = await get_user_cart(self.backend, self.user_id)
            self.items = cart.items
            self.selected_ids = cart.selected_ids
        else:
            try:
                self.items, self.selected_ids = await self._read_guest_cart()
                self.guest_unreadable = False
            except GuestStorageError as e:
                logger.error(f"Guest cart unreadable, changes will not be saved: {e}")
                self.items, self.selected_ids = [], []
                self.guest_unreadable = True

    async def _read_guest_cart(self) -> tuple[list[CartItem], list[str]]:
        """Raises GuestStorageError when storage cannot be read; corrupt JSON reads as empty."""
        if self.guest_storage is None:
            return [], []

        items: list[CartItem] = []
        raw_items = await self.guest_storage.get(GUEST_CART_KEY)
        if raw_items:
            try:
                items = collapse_duplicates(_cart_items_adapter.validate_json(raw_items))
            except ValidationError as e:
                logger.warning(f"Discarding unreadable guest cart: {e.error_count()} errors")
                items = []

        selected: list[str] = []
        raw_selected = await self.guest_storage.get(GUEST_SELECTION_KEY)
        if raw_selected:
            try:
                selected = _selection_adapter.validate_json(raw_selected)
            except ValidationError as e:
                logger.warning(f"Discarding unreadable guest selection: {e.error_count()} errors")
                selected = []

        item_ids = {item.id for item in items}
        selected = [item_id for item_id in dict.fromkeys(selected) if item_id in item_ids]
        return items, selected

    async def _persist_guest(self) -> bool:
        if self.guest_storage is None:
            logger.warning("Guest cart change without a guest session; not persisted")
            return False
        if self.guest_unreadable:
            logger.error("Refusing to save a guest cart that was never read")
            return False
        try:
            await self.guest_storage.set(GUEST_CART_KEY, _cart_items_adapter.dump_json(self.items).decode())
            await self.guest_storage.set(GUEST_SELECTION_KEY, _selection_adapter.dump_json(self.selected_ids).decode())
        except GuestStorageError as e:
            logger.error(f"Failed to persist guest cart: {e}")
            return False
        return True

    async def _clear_guest_keys(self) -> bool:
        if self.guest_storage is None:
            return True
        try:
            for key in (GUEST_CART_KEY, GUEST_SELECTION_KEY, LEGACY_CART_KEY, LEGACY_SELECTION_KEY):
                await self.guest_storage.remove(key)
        except GuestStorageError as e:
            logger.error(f"Failed to clear guest cart keys: {e}")
            return False
        return True

    def find_item(self, item_id: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.id == item_id), None)

    # ────────────────────────────────────────────────────────────────
    # Mutations
    # ────────────────────────────────────────────────────────────────

    async def add_to_cart(
        self,
        product: Product,
        quantity: int = 1,
        size: Optional[str] = None,
        color: Optional[str] = None,
    ) -> bool:
        """Add a product variant. An existing line grows; a new line is selected."""
        if quantity < 1:
            raise ValueError("quantity must be at least 1")

        existing = self.find_item(make_cart_item_id(product.id, size, color))
        if existing is not None:
            return await self.update_quantity(existing.id, existing.quantity + quantity)

        item = cart_item_from_product(product, quantity, size, color)
        if self.is_member:
            row = cart_item_to_row(item, self.user_id, is_selected=True)
            if not await add_item_to_user_cart(self.backend, self.user_id, row):
                return False

        self.items.append(item)
        self.selected_ids.append(item.id)
        return True if self.is_member else await self._persist_guest()

    async def update_quantity(self, item_id: str, quantity: int) -> bool:
        """Set a line's quantity. Zero or less removes the line."""
        if quantity <= 0:
            return await self.remove_item(item_id)

        item = self.find_item(item_id)
        if item is None:
            logger.warning(f"update_quantity: no cart line {item_id}")
            return False

        if self.is_member and not await update_cart_item_quantity(self.backend, self.user_id, item, quantity):
            return False

        updated = item.model_copy(update={"quantity": quantity})
        self.items = [updated if i.id == item_id else i for i in self.items]
        return True if self.is_member else await self._persist_guest()

    async def remove_item(self, item_id: str) -> bool:
        item = self.find_item(item_id)
        if item is None:
            logger.warning(f"remove_item: no cart line {item_id}")
            return False

        if self.is_member and not await remove_cart_item(self.backend, self.user_id, item):
            return False

        self.items = [i for i in self.items if i.id != item_id]
        self.selected_ids = [i for i in self.selected_ids if i != item_id]
        return True if self.is_member else await self._persist_guest()

    async def remove_selected_items(self) -> bool:
        if not self.selected_ids:
            return True

        selected = set(self.selected_ids)
        targets = [item for item in self.items if item.id in selected]

        if self.is_member and not await remove_cart_items(self.backend, self.user_id, targets):
            # Some rows may already be gone; take the remote state as it is now
            await self.load()
            return False

        self.items = [item for item in self.items if item.id not in selected]
        self.selected_ids = []
        return True if self.is_member else await self._persist_guest()

    async def toggle_item_selection(self, item_id: str) -> bool:
        item = self.find_item(item_id)
        if item is None:
            logger.warning(f"toggle_item_selection: no cart line {item_id}")
            return False

        select = item_id not in self.selected_ids
        if self.is_member and not await update_item_selection(self.backend, self.user_id, item, select):
            return False

        if select:
            self.selected_ids.append(item_id)
        else:
            self.selected_ids = [i for i in self.selected_ids if i != item_id]
        return True if self.is_member else await self._persist_guest()

    async def toggle_all_selection(self) -> bool:
        select = not self.is_all_selected
        if self.is_member and not await update_all_items_selection(self.backend, self.user_id, select):
            return False

        self.selected_ids = [item.id for item in self.items] if select else []
        return True if self.is_member else await self._persist_guest()

    async def clear_cart(self) -> bool:
        if self.is_member:
            if not await clear_user_cart(self.backend, self.user_id):
                return False
            self.items, self.selected_ids = [], []
            return True

        if self.guest_unreadable:
            logger.error("Refusing to clear a guest cart that was never read")
            return False
        self.items, self.selected_ids = [], []
        return await self._clear_guest_keys()

    # ────────────────────────────────────────────────────────────────
    # Login / logout
    # ────────────────────────────────────────────────────────────────

    async def sync_on_login(self, user_id: str) -> CartMergeResult:
        """
        Fold the guest cart into user_id's cart, then switch to member mode.

        Calling it again for the user already signed in does nothing.
        """
        if self.user_id == user_id:
            return CartMergeResult(merged=0, item_count=self.item_count())

        try:
            guest_items, _ = await self._read_guest_cart()
        except GuestStorageError as e:
            logger.error(f"Cannot read guest cart for user {user_id}; nothing merged: {e}")
            self.user_id = user_id
            await self.load()
            return CartMergeResult(merged=0, item_count=self.item_count(), ok=False)

        merged = 0
        ok = True
        guest_cleared = True

        if guest_items:
            logger.info(f"Merging {len(guest_items)} guest cart lines into user {user_id}")
            ok = await self._merge_into_member_cart(user_id, guest_items)
            if ok:
                merged = len(guest_items)
                guest_cleared = await self._clear_guest_keys()
                if not guest_cleared:
                    logger.warning(f"Guest cart merged for user {user_id} but its keys were not removed")
            else:
                logger.error(f"Guest cart merge failed for user {user_id}; guest cart kept for retry")

        self.user_id = user_id
        await self.load()
        return CartMergeResult(merged=merged, item_count=self.item_count(), ok=ok, guest_cleared=guest_cleared)

    async def _merge_into_member_cart(self, user_id: str, guest_items: list[CartItem]) -> bool:
        try:
            member_rows = await fetch_user_cart_rows(self.backend, user_id)
        except BackendError as e:
            logger.error(f"Cannot read cart of user {user_id} before merge: {e}")
            return False
        rows = build_merge_rows(user_id, guest_items, member_rows)
        return await upsert_user_cart_rows(self.backend, user_id, rows)

    def sync_on_logout(self) -> None:
        self.user_id = None
        self.items = []
        self.selected_ids = []

    # ────────────────────────────────────────────────────────────────
    # Derived values
    # ────────────────────────────────────────────────────────────────

    @property
    def is_all_selected(self) -> bool:
        return len(self.items) > 0 and len(self.selected_ids) == len(self.items)

    def total_price(self) -> int:
        return sum(item.price * item.quantity for item in self.items)

    def selected_total_price(self) -> int:
        selected = set(self.selected_ids)
        return sum(item.price * item.quantity for item in self.items if item.id in selected)

    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_view(self) -> CartView:
        return CartView(
            items=list(self.items),
            selected_ids=list(self.selected_ids),
            is_all_selected=self.is_all_selected,
            total_price=self.total_price(),
            selected_total_price=self.selected_total_price(),
            item_count=self.item_count(),
        )
