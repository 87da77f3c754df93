"""
Settlement Engine

Pure functions for commission, settlement date and settlement status.
All functions are stateless and easily testable; nothing here is persisted.
A settlement record is always recomputed from its order inputs, so its status
can never drift from the calendar.

Commission Formula:
    commission = amount * 0.025                      (base rate)
               + amount * METHOD_SURCHARGE[method]   (0 if unlisted)
               + PROVIDER_FIXED_FEE[provider]        (0 if unlisted)
    result = round half up to whole won

Example:
    100,000 won, credit card, Toss Payments
    2,500 + 1,000 + 100 = 3,600 commission, 96,400 settled 3 days after the order
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Optional, Union
from zoneinfo import ZoneInfo

from .core.config import get_settings
from .records import Order, OrderStatus


class SettlementStatus(str, Enum):
    COMPLETED = "completed"
    PROCESSING = "processing"
    SCHEDULED = "scheduled"
    PENDING = "pending"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    KAKAO_PAY = "kakao_pay"
    NAVER_PAY = "naver_pay"


class PaymentProvider(str, Enum):
    TOSS_PAYMENTS = "toss_payments"
    KAKAO_PAY = "kakao_pay"


BASE_COMMISSION_RATE = Decimal("0.025")

METHOD_SURCHARGE: dict[str, Decimal] = {
    PaymentMethod.CREDIT_CARD.value: Decimal("0.01"),
    PaymentMethod.KAKAO_PAY.value: Decimal("0.005"),
    PaymentMethod.NAVER_PAY.value: Decimal("0.008"),
}

PROVIDER_FIXED_FEE: dict[str, int] = {
    PaymentProvider.TOSS_PAYMENTS.value: 100,
    PaymentProvider.KAKAO_PAY.value: 50,
}

SETTLEMENT_DELAY_DAYS: dict[str, int] = {
    PaymentMethod.CREDIT_CARD.value: 3,
    PaymentMethod.KAKAO_PAY.value: 1,
    PaymentMethod.NAVER_PAY.value: 2,
}
DEFAULT_SETTLEMENT_DELAY_DAYS = 7

# Orders store the labels shown at checkout
PAYMENT_KEY_ALIASES: dict[str, str] = {
    "신용카드": PaymentMethod.CREDIT_CARD.value,
    "카드": PaymentMethod.CREDIT_CARD.value,
    "카카오페이": PaymentMethod.KAKAO_PAY.value,
    "네이버페이": PaymentMethod.NAVER_PAY.value,
    "토스페이먼츠": PaymentProvider.TOSS_PAYMENTS.value,
}

STATUS_TEXT: dict[str, str] = {
    SettlementStatus.COMPLETED.value: "정산완료",
    SettlementStatus.PROCESSING.value: "정산처리중",
    SettlementStatus.SCHEDULED.value: "정산예정",
    SettlementStatus.PENDING.value: "정산대기",
}
UNKNOWN_STATUS_TEXT = "알 수 없음"

CSV_HEADERS = ["정산ID", "주문ID", "고객명", "주문금액", "수수료", "정산금액", "결제수단", "주문일", "정산일", "상태"]

# Orders in these states produce no settlement
_UNSETTLED_ORDER_STATUSES = {
    OrderStatus.CANCELLED.value,
    OrderStatus.CANCEL_REQUESTED.value,
    OrderStatus.RETURNED.value,
}

DateLike = Union[date, datetime, str]


@dataclass
class SettlementRecord:
    """One order's settlement, derived from the order on every read."""

    id: str
    order_id: str
    customer_name: str
    amount: int
    commission: int
    net_amount: int
    payment_method: str
    payment_provider: str
    order_date: date
    settlement_date: date
    status: SettlementStatus

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "order_id": self.order_id,
            "customer_name": self.customer_name,
            "amount": self.amount,
            "commission": self.commission,
            "net_amount": self.net_amount,
            "payment_method": self.payment_method,
            "payment_provider": self.payment_provider,
            "order_date": self.order_date.isoformat(),
            "settlement_date": self.settlement_date.isoformat(),
            "status": self.status.value,
            "status_text": get_status_text(self.status),
        }


@dataclass
class SettlementSummary:
    total: int = 0
    total_commission: int = 0
    pending_amount: int = 0
    status_counts: dict[str, int] = field(
        default_factory=lambda: {status.value: 0 for status in SettlementStatus}
    )

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "total_commission": self.total_commission,
            "pending_amount": self.pending_amount,
            "status_counts": dict(self.status_counts),
        }


def normalize_payment_key(key: Optional[str]) -> str:
    """
    Map a stored method/provider label to its table key.

    Examples:
        normalize_payment_key("신용카드") = "credit_card"
        normalize_payment_key("Kakao_Pay") = "kakao_pay"
        normalize_payment_key("bank_transfer") = "bank_transfer"  # unlisted, kept
    """
    if not key:
        return ""
    key = key.strip()
    return PAYMENT_KEY_ALIASES.get(key, key.lower())


def settlement_today() -> date:
    """Current calendar date in the configured settlement timezone."""
    return datetime.now(ZoneInfo(get_settings().settlement_timezone)).date()


def to_calendar_date(value: DateLike) -> date:
    """
    Reduce an order timestamp to its calendar date.

    Aware datetimes are converted to the settlement timezone first, so an
    order placed at 20:00 UTC counts as the next day in Seoul.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(ZoneInfo(get_settings().settlement_timezone))
        return value.date()
    return value


# ────────────────────────────────────────────────────────────────
# Core computations
# ────────────────────────────────────────────────────────────────

def calculate_commission(amount: int, payment_method: Optional[str], payment_provider: Optional[str]) -> int:
    """
    Calculate the commission deducted from an order amount.

    Unlisted methods and providers add nothing; the tables are expected to
    grow without every caller maintaining a whitelist.

    Examples:
        calculate_commission(100000, "credit_card", "toss_payments") = 3600
        calculate_commission(0, "credit_card", None) = 0
        calculate_commission(10000, "bank_transfer", "unknown") = 250
    """
    method = normalize_payment_key(payment_method)
    provider = normalize_payment_key(payment_provider)

    amount_dec = Decimal(amount)
    commission = amount_dec * BASE_COMMISSION_RATE
    commission += amount_dec * METHOD_SURCHARGE.get(method, Decimal("0"))
    commission += PROVIDER_FIXED_FEE.get(provider, 0)

    return int(commission.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def settlement_delay_days(payment_method: Optional[str]) -> int:
    return SETTLEMENT_DELAY_DAYS.get(normalize_payment_key(payment_method), DEFAULT_SETTLEMENT_DELAY_DAYS)


def calculate_settlement_date(order_date: DateLike, payment_method: Optional[str]) -> date:
    """
    Date the order's funds settle: order date plus the method's delay.

    Examples:
        calculate_settlement_date(date(2024, 3, 1), "credit_card") = date(2024, 3, 4)
        calculate_settlement_date(date(2024, 3, 1), "bank_transfer") = date(2024, 3, 8)
    """
    return to_calendar_date(order_date) + timedelta(days=settlement_delay_days(payment_method))


def get_settlement_status(settlement_date: DateLike, today: Optional[date] = None) -> SettlementStatus:
    """
    Derive status by calendar-day comparison. Never stored.

    today after settlement_date -> completed
    today == settlement_date    -> processing
    today before                -> scheduled
    """
    settlement_day = to_calendar_date(settlement_date)
    today = today or settlement_today()

    if today > settlement_day:
        return SettlementStatus.COMPLETED
    if today == settlement_day:
        return SettlementStatus.PROCESSING
    return SettlementStatus.SCHEDULED


def validate_settlement_input(
    amount: Optional[int],
    payment_method: Optional[str],
    payment_provider: Optional[str],
) -> list[str]:
    """Return user-facing validation messages; empty when the input is usable."""
    errors = []
    if not amount or amount <= 0:
        errors.append("주문금액은 0보다 커야 합니다.")
    if not payment_method:
        errors.append("결제수단을 선택해주세요.")
    if not payment_provider:
        errors.append("결제사를 선택해주세요.")
    return errors


def get_status_text(status: Union[SettlementStatus, str]) -> str:
    value = status.value if isinstance(status, SettlementStatus) else status
    return STATUS_TEXT.get(value, UNKNOWN_STATUS_TEXT)


def build_settlement_record(
    *,
    id: str,
    order_id: str,
    customer_name: str,
    amount: int,
    payment_method: str,
    payment_provider: str,
    order_date: DateLike,
    today: Optional[date] = None,
    pending: bool = False,
) -> SettlementRecord:
    """
    Compute a full settlement record from order inputs.

    Deterministic for fixed inputs and today; calling it twice gives equal
    records. pending marks an order whose payment is not confirmed yet, which
    overrides the date-derived status.
    """
    commission = calculate_commission(amount, payment_method, payment_provider)
    settlement_date = calculate_settlement_date(order_date, payment_method)
    status = SettlementStatus.PENDING if pending else get_settlement_status(settlement_date, today)

    return SettlementRecord(
        id=id,
        order_id=order_id,
        customer_name=customer_name,
        amount=amount,
        commission=commission,
        net_amount=amount - commission,
        payment_method=payment_method,
        payment_provider=payment_provider,
        order_date=to_calendar_date(order_date),
        settlement_date=settlement_date,
        status=status,
    )


def brand_line_total(order: Order, brand: str) -> int:
    """The part of an order paid for brand's items."""
    return sum(item.price * item.quantity for item in order.items if item.brand == brand)


def settlements_from_orders(
    orders: Iterable[Order],
    today: Optional[date] = None,
    brand: Optional[str] = None,
) -> list[SettlementRecord]:
    """
    Derive one settlement record per settled order.

    Cancelled and returned orders are skipped. Orders that are only received
    (payment not confirmed) are pending. With brand, each record settles only
    that brand's lines, and orders without any are skipped.
    """
    today = today or settlement_today()
    records = []
    for order in orders:
        if order.status in _UNSETTLED_ORDER_STATUSES:
            continue
        order_date = order.order_date or order.created_at
        if order_date is None:
            continue
        amount = order.total_amount if brand is None else brand_line_total(order, brand)
        if brand is not None and amount == 0:
            continue
        records.append(build_settlement_record(
            id=f"S-{order.id}",
            order_id=order.id,
            customer_name=order.recipient_name,
            amount=amount,
            payment_method=order.payment_method,
            payment_provider=order.payment_provider or "",
            order_date=order_date,
            today=today,
            pending=order.status == OrderStatus.RECEIVED.value,
        ))
    return records


# ────────────────────────────────────────────────────────────────
# Aggregation and export
# ────────────────────────────────────────────────────────────────

def summarize_settlements(records: Iterable[SettlementRecord]) -> SettlementSummary:
    """
    Single-pass totals over records.

    Empty input gives all zeros. Records are not deduplicated; a record
    passed twice is counted twice.
    """
    summary = SettlementSummary()
    for record in records:
        status = record.status.value if isinstance(record.status, SettlementStatus) else record.status
        summary.total += record.amount
        summary.total_commission += record.commission
        if status == SettlementStatus.PENDING.value:
            summary.pending_amount += record.net_amount
        summary.status_counts[status] = summary.status_counts.get(status, 0) + 1
    return summary


def format_settlements_for_csv(records: Iterable[SettlementRecord]) -> list[list[str]]:
    """Header row plus one row per record, every cell as a string."""
    rows = [list(CSV_HEADERS)]
    for record in records:
        rows.append([
            record.id,
            record.order_id,
            record.customer_name,
            str(record.amount),
            str(record.commission),
            str(record.net_amount),
            record.payment_method,
            record.order_date.isoformat(),
            record.settlement_date.isoformat(),
            get_status_text(record.status),
        ])
    return rows


def settlements_to_csv(records: Iterable[SettlementRecord]) -> str:
    """
    Comma-joined CSV text.

    Cells are not quoted or escaped, so a customer name containing a comma
    shifts the columns of its row.
    """
    return "\n".join(",".join(row) for row in format_settlements_for_csv(records)) + "\n"
