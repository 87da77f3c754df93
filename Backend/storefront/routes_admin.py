"""
HQ and merchant routes.

Every endpoint needs a signed-in caller with role hq or merchant. A merchant
only sees orders carrying its own brand; HQ sees everything and may pick a
brand for the dashboard.

Usage:
    POST  /admin/settlements/preview                         -> One computed record
    GET   /admin/settlements?start=2025-01-01&end=2025-01-31 -> Records + summary
    GET   /admin/settlements/export?start=...&end=...        -> CSV download
    GET   /admin/dashboard                                   -> Merchant dashboard figures
    PATCH /admin/orders/{order_id}/status                    -> Change an order's status
    POST  /admin/orders/{order_id}/cancel/approve            -> Cancel and restock
    PATCH /admin/orders/{order_id}/shipping                  -> Tracking number and delivery date
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from .backend_client import BackendClient
from .core.request_context import RequestContext, require_roles
from .core.responses import ErrorCodes, error_response, success_response
from .dashboard import brand_orders, day_bounds, get_merchant_dashboard_stats
from .orders import (
    approve_order_cancellation,
    get_order_by_id,
    list_orders_between,
    update_order_status,
    update_shipping_info,
)
from .records import Order, OrderStatus, UserRole
from .routes_storefront import get_backend
from .settlements import (
    SettlementRecord,
    build_settlement_record,
    settlement_today,
    settlements_from_orders,
    settlements_to_csv,
    summarize_settlements,
    validate_settlement_input,
)

logger = logging.getLogger(__name__)

require_admin = require_roles(UserRole.HQ, UserRole.MERCHANT)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# ────────────────────────────────────────────────────────────────
# Request Models
# ────────────────────────────────────────────────────────────────

class SettlementPreviewRequest(BaseModel):
    amount: int
    payment_method: str
    payment_provider: str = ""
    order_date: Optional[date] = None


class OrderStatusRequest(BaseModel):
    status: OrderStatus


class ShippingInfoRequest(BaseModel):
    tracking_number: str = Field(min_length=1)
    estimated_delivery: Optional[str] = None


class DateRange(BaseModel):
    start: date
    end: date


def settlement_period(start: date, end: Optional[date] = None) -> DateRange:
    """Query parameters start and end; end defaults to today."""
    return DateRange(start=start, end=end or settlement_today())


# ────────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────────

def _is_merchant(ctx: RequestContext) -> bool:
    return ctx.role == UserRole.MERCHANT.value


def _merchant_brand(ctx: RequestContext) -> str:
    if not ctx.brand:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response(ErrorCodes.AUTHORIZATION_DENIED, "Merchant account has no brand assigned."),
        )
    return ctx.brand


async def _orders_in_range(backend: BackendClient, ctx: RequestContext, period: DateRange) -> list[Order]:
    if period.end < period.start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response(ErrorCodes.VALIDATION_ERROR, "end must not be before start"),
        )
    start, _ = day_bounds(period.start)
    _, end = day_bounds(period.end)
    orders = await list_orders_between(backend, start, end)
    if _is_merchant(ctx):
        orders = brand_orders(orders, _merchant_brand(ctx))
    return orders


async def _settlements(backend: BackendClient, ctx: RequestContext, period: DateRange) -> list[SettlementRecord]:
    orders = await _orders_in_range(backend, ctx, period)
    brand = _merchant_brand(ctx) if _is_merchant(ctx) else None
    return settlements_from_orders(orders, settlement_today(), brand=brand)


# ────────────────────────────────────────────────────────────────
# Settlements
# ────────────────────────────────────────────────────────────────

@router.post("/settlements/preview")
async def preview_settlement(body: SettlementPreviewRequest):
    """Commission, net amount, settlement date and status for one hypothetical order."""
    errors = validate_settlement_input(body.amount, body.payment_method, body.payment_provider)
    if errors:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=error_response(ErrorCodes.VALIDATION_ERROR, errors[0], details={"errors": errors}),
        )
    record = build_settlement_record(
        id="preview",
        order_id="",
        customer_name="",
        amount=body.amount,
        payment_method=body.payment_method,
        payment_provider=body.payment_provider,
        order_date=body.order_date or settlement_today(),
    )
    return success_response(record.to_dict())


@router.get("/settlements")
async def list_settlements(
    period: DateRange = Depends(settlement_period),
    ctx: RequestContext = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    records = await _settlements(backend, ctx, period)
    return success_response({
        "records": [record.to_dict() for record in records],
        "summary": summarize_settlements(records).to_dict(),
    })


@router.get("/settlements/export")
async def export_settlements(
    period: DateRange = Depends(settlement_period),
    ctx: RequestContext = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    records = await _settlements(backend, ctx, period)
    filename = f"settlements_{period.start.isoformat()}_{period.end.isoformat()}.csv"
    logger.info(f"Exporting {len(records)} settlement records for {ctx.user_id}")
    return Response(
        content=settlements_to_csv(records),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ────────────────────────────────────────────────────────────────
# Dashboard and orders
# ────────────────────────────────────────────────────────────────

@router.get("/dashboard")
async def merchant_dashboard(
    brand: Optional[str] = None,
    ctx: RequestContext = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    """Merchants always get their own brand; HQ must name one."""
    if _is_merchant(ctx):
        brand = _merchant_brand(ctx)
    elif not brand:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response(ErrorCodes.VALIDATION_ERROR, "brand is required"),
        )
    stats = await get_merchant_dashboard_stats(backend, brand)
    return success_response(stats.model_dump())


async def _visible_order(backend: BackendClient, ctx: RequestContext, order_id: str) -> Order:
    """The order, if the caller may manage it; merchants only reach orders carrying their brand."""
    order = await get_order_by_id(backend, order_id)
    if order is None or (_is_merchant(ctx) and not brand_orders([order], _merchant_brand(ctx))):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response(ErrorCodes.NOT_FOUND, f"Order not found: {order_id}"),
        )
    return order


def _order_write_failed(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=error_response(ErrorCodes.WRITE_FAILED, message),
    )


@router.patch("/orders/{order_id}/status")
async def change_order_status(
    order_id: str,
    body: OrderStatusRequest,
    ctx: RequestContext = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    """Moving an order to 주문취소 goes through cancellation approval, so its stock is returned."""
    order = await _visible_order(backend, ctx, order_id)
    if body.status == OrderStatus.CANCELLED:
        if order.status == OrderStatus.CANCELLED.value:
            return success_response({"id": order_id, "status": order.status})
        ok = await approve_order_cancellation(backend, order_id)
    else:
        ok = await update_order_status(backend, order_id, body.status)
    if not ok:
        raise _order_write_failed("Could not update the order status.")
    logger.info(f"Order {order_id} {order.status} -> {body.status.value} by {ctx.user_id} from {ctx.client_label()}")
    return success_response({"id": order_id, "status": body.status.value})


@router.post("/orders/{order_id}/cancel/approve")
async def approve_cancellation(
    order_id: str,
    ctx: RequestContext = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    order = await _visible_order(backend, ctx, order_id)
    if order.status == OrderStatus.CANCELLED.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=error_response(ErrorCodes.ORDER_STATE_CONFLICT, f"Order {order_id} is already cancelled."),
        )
    if not await approve_order_cancellation(backend, order_id):
        raise _order_write_failed("Could not cancel the order.")
    logger.info(f"Cancellation of order {order_id} approved by {ctx.user_id} from {ctx.client_label()}")
    return success_response({"id": order_id, "status": OrderStatus.CANCELLED.value})


@router.patch("/orders/{order_id}/shipping")
async def change_shipping_info(
    order_id: str,
    body: ShippingInfoRequest,
    ctx: RequestContext = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    await _visible_order(backend, ctx, order_id)
    if not await update_shipping_info(backend, order_id, body.tracking_number, body.estimated_delivery):
        raise _order_write_failed("Could not update the shipping information.")
    logger.info(f"Shipping info of order {order_id} updated by {ctx.user_id} from {ctx.client_label()}")
    return success_response({
        "id": order_id,
        "tracking_number": body.tracking_number,
        "estimated_delivery": body.estimated_delivery,
    })
