"""
Order data access.

Orders are written at checkout, read for the customer order history and the
admin dashboards, and moved through their statuses by admins.

Stock follows the order lifecycle: placing an order takes each item's quantity
out of stock and adds it to sales; an approved cancellation puts it back.
A product whose stock reaches zero is marked sold out.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from .backend_client import BackendClient, BackendError, Query, user_scoped
from .catalog import PRODUCTS
from .records import Order, OrderItem, OrderStatus, ProductStatus, order_from_row

logger = logging.getLogger(__name__)

ORDERS = "orders"

DELIVERY_DAYS = 3


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def get_user_orders(backend: BackendClient, user_id: str) -> list[Order]:
    """A customer's orders, newest first."""
    try:
        rows = await backend.fetch(user_scoped(ORDERS, user_id).order("created_at", descending=True))
    except BackendError as e:
        logger.error(f"Error fetching orders for user {user_id}: {e}")
        return []
    return [order_from_row(row) for row in rows]


async def get_order_by_id(
    backend: BackendClient,
    order_id: str,
    user_id: Optional[str] = None,
) -> Optional[Order]:
    """One order. With user_id, an order belonging to someone else is None."""
    query = user_scoped(ORDERS, user_id) if user_id else Query(ORDERS)
    try:
        row = await backend.fetch_one(query.eq("id", order_id))
    except BackendError as e:
        logger.error(f"Error fetching order {order_id}: {e}")
        return None
    return order_from_row(row) if row else None


async def list_orders_between(backend: BackendClient, start: datetime, end: datetime) -> list[Order]:
    """All orders created in [start, end], oldest first."""
    try:
        rows = await backend.fetch(
            Query(ORDERS)  # noqa: user-scoping
            .gte("created_at", start.isoformat())
            .lte("created_at", end.isoformat())
            .order("created_at")
        )
    except BackendError as e:
        logger.error(f"Error listing orders between {start} and {end}: {e}")
        return []
    return [order_from_row(row) for row in rows]


async def update_order_status(backend: BackendClient, order_id: str, status: OrderStatus | str) -> bool:
    value = status.value if isinstance(status, OrderStatus) else status
    try:
        await backend.update(Query(ORDERS).eq("id", order_id), {"status": value, "updated_at": _now_iso()})  # noqa: user-scoping
    except BackendError as e:
        logger.error(f"Error updating order {order_id} to {value}: {e}")
        return False
    logger.info(f"Order {order_id} status -> {value}")
    return True


async def request_order_cancellation(
    backend: BackendClient,
    order_id: str,
    reason: str,
    user_id: Optional[str] = None,
) -> bool:
    """Ask for cancellation; an admin reviews it. With user_id, only the owner's order is touched."""
    query = user_scoped(ORDERS, user_id) if user_id else Query(ORDERS)
    try:
        updated = await backend.update(
            query.eq("id", order_id),
            {
                "status": OrderStatus.CANCEL_REQUESTED.value,
                "cancel_reason": reason,
                "updated_at": _now_iso(),
            },
        )
    except BackendError as e:
        logger.error(f"Error requesting cancellation of order {order_id}: {e}")
        return False
    return bool(updated)


# ────────────────────────────────────────────────────────────────
# Lifecycle writes
# ────────────────────────────────────────────────────────────────

async def _adjust_stock(backend: BackendClient, items: Iterable[OrderItem], direction: int) -> None:
    """
    Move each item's quantity between stock and sales.

    direction -1 takes stock for a new order, +1 returns it on cancellation.
    Neither stock nor sales goes below zero. A failure on one product is
    logged and the rest are still adjusted.
    """
    for item in items:
        try:
            row = await backend.fetch_one(Query(PRODUCTS).select("stock,sales").eq("id", item.product_id))
            if row is None:
                logger.warning(f"Product {item.product_id} not found; stock not adjusted")
                continue
            stock = max(0, (row.get("stock") or 0) + direction * item.quantity)
            sales = max(0, (row.get("sales") or 0) - direction * item.quantity)
            status = ProductStatus.FORSALE if stock > 0 else ProductStatus.SOLDOUT
            await backend.update(
                Query(PRODUCTS).eq("id", item.product_id),
                {"stock": stock, "sales": sales, "status": status.value, "updated_at": _now_iso()},
            )
            logger.info(f"Product {item.product_id}: stock={stock}, sales={sales}, status={status.value}")
        except BackendError as e:
            logger.error(f"Error adjusting stock of product {item.product_id}: {e}")


async def create_order(
    backend: BackendClient,
    user_id: str,
    items: list[OrderItem],
    payment_method: str,
    shipping_address: str,
    recipient_name: str,
    recipient_phone: str,
    payment_provider: Optional[str] = None,
    status: OrderStatus = OrderStatus.RECEIVED,
) -> Optional[Order]:
    """
    Record an order and take its items out of stock.

    The hosted backend assigns the id. Returns None when the insert fails;
    stock is only touched once the order exists.
    """
    now = datetime.now(timezone.utc)
    row = {
        "user_id": user_id,
        "order_date": now.isoformat(),
        "status": status.value,
        "total_amount": sum(item.price * item.quantity for item in items),
        "payment_method": payment_method,
        "payment_provider": payment_provider,
        "items": [item.model_dump() for item in items],
        "shipping_address": shipping_address,
        "recipient_name": recipient_name,
        "recipient_phone": recipient_phone,
        "tracking_number": f"TN{int(now.timestamp() * 1000)}",
        "estimated_delivery": (now + timedelta(days=DELIVERY_DAYS)).isoformat(),
        "created_at": now.isoformat(),
        "updated_at": now.isoformat(),
    }
    try:
        inserted = await backend.insert(ORDERS, [row])
    except BackendError as e:
        logger.error(f"Error creating order for user {user_id}: {e}")
        return None
    if not inserted:
        return None

    order = order_from_row(inserted[0])
    logger.info(f"Order {order.id} created for user {user_id}: {len(items)} lines, {order.total_amount}")
    await _adjust_stock(backend, order.items, -1)
    return order


async def approve_order_cancellation(backend: BackendClient, order_id: str) -> bool:
    """
    Cancel an order and put its items back in stock.

    False when the order does not exist, is already cancelled, or the
    status write fails; stock is only returned after the status is written.
    """
    order = await get_order_by_id(backend, order_id)
    if order is None:
        logger.warning(f"Cannot approve cancellation: order {order_id} not found")
        return False
    if order.status == OrderStatus.CANCELLED.value:
        logger.warning(f"Order {order_id} is already cancelled; stock not returned twice")
        return False
    if not await update_order_status(backend, order_id, OrderStatus.CANCELLED):
        return False
    await _adjust_stock(backend, order.items, 1)
    return True


async def update_shipping_info(
    backend: BackendClient,
    order_id: str,
    tracking_number: str,
    estimated_delivery: Optional[str] = None,
) -> bool:
    values = {"tracking_number": tracking_number, "updated_at": _now_iso()}
    if estimated_delivery:
        values["estimated_delivery"] = estimated_delivery
    try:
        updated = await backend.update(Query(ORDERS).eq("id", order_id), values)  # noqa: user-scoping
    except BackendError as e:
        logger.error(f"Error updating shipping info of order {order_id}: {e}")
        return False
    return bool(updated)
