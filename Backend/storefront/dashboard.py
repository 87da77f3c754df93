"""
Merchant Dashboard

Today-versus-yesterday figures for one merchant brand. An order counts for a
brand when any of its items carries that brand; revenue counts only the
brand's own items (price * quantity).
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from .backend_client import BackendClient, BackendError, Query
from .core.config import get_settings
from .orders import ORDERS, list_orders_between
from .records import Order, order_from_row
from .settlements import brand_line_total, settlement_today

logger = logging.getLogger(__name__)

# Product and customer totals have no meaningful day-over-day change
FLAT_CHANGE = "+0%"


class DashboardStats(BaseModel):
    today_orders: int = 0
    total_products: int = 0
    total_customers: int = 0
    today_revenue: int = 0
    today_orders_change: str = "0%"
    total_products_change: str = FLAT_CHANGE
    total_customers_change: str = FLAT_CHANGE
    today_revenue_change: str = "0%"


def calculate_change(today: float, yesterday: float) -> str:
    """
    Day-over-day change as a display string.

    Examples:
        calculate_change(150, 100) = "+50.0%"
        calculate_change(50, 100)  = "-50.0%"
        calculate_change(5, 0)     = "+100%"
        calculate_change(0, 0)     = "0%"
    """
    if yesterday == 0:
        return "+100%" if today > 0 else "0%"
    change = (today - yesterday) / yesterday * 100
    sign = "+" if change >= 0 else ""
    return f"{sign}{change:.1f}%"


def brand_orders(orders: Iterable[Order], brand: str) -> list[Order]:
    return [order for order in orders if any(item.brand == brand for item in order.items)]


def merchant_revenue(orders: Iterable[Order], brand: str) -> int:
    return sum(brand_line_total(order, brand) for order in orders)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    tz = ZoneInfo(get_settings().settlement_timezone)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day, time.max, tzinfo=tz)
    return start, end


async def get_merchant_dashboard_stats(
    backend: BackendClient,
    brand: str,
    today: Optional[date] = None,
) -> DashboardStats:
    today = today or settlement_today()
    yesterday = today - timedelta(days=1)

    today_orders = brand_orders(await list_orders_between(backend, *day_bounds(today)), brand)
    yesterday_orders = brand_orders(await list_orders_between(backend, *day_bounds(yesterday)), brand)

    try:
        total_products = await backend.count(Query("products").select("id").eq("brand", brand))
    except BackendError as e:
        logger.error(f"Error counting products of {brand}: {e}")
        total_products = 0

    try:
        rows = await backend.fetch(Query(ORDERS).select("id,user_id,items").not_null("user_id"))  # noqa: user-scoping
        customers = {order.user_id for order in brand_orders((order_from_row(r) for r in rows), brand)}
    except BackendError as e:
        logger.error(f"Error counting customers of {brand}: {e}")
        customers = set()

    today_revenue = merchant_revenue(today_orders, brand)
    yesterday_revenue = merchant_revenue(yesterday_orders, brand)

    return DashboardStats(
        today_orders=len(today_orders),
        total_products=total_products,
        total_customers=len(customers),
        today_revenue=today_revenue,
        today_orders_change=calculate_change(len(today_orders), len(yesterday_orders)),
        today_revenue_change=calculate_change(today_revenue, yesterday_revenue),
    )
