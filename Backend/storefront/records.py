"""
Storefront Records

Two layers for every entity:

  * a TypedDict describing the raw row as the hosted backend stores it
  * a pydantic view model the rest of the service works with

Each view model is built by exactly one mapping function (product_from_row,
category_from_row, cart_item_from_row, order_from_row, ...). Nothing else
reads raw rows, so column renames stay local to this module.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, TypedDict

from pydantic import BaseModel, Field

PLACEHOLDER_IMAGE = "/placeholder-image.jpg"

# Stored in user_carts.size / user_carts.color when the variant is absent,
# so (user_id, product_id, size, color) never contains NULL.
NO_SIZE = "no-size"
NO_COLOR = "no-color"


class ProductStatus(str, Enum):
    FORSALE = "forsale"
    SOLDOUT = "soldout"
    INACTIVE = "inactive"


class UserRole(str, Enum):
    CUSTOMER = "customer"
    HQ = "hq"
    MERCHANT = "merchant"


class OrderStatus(str, Enum):
    RECEIVED = "주문접수"
    PAID = "결제완료"
    PREPARING = "상품준비"
    SHIPPING = "배송중"
    DELIVERED = "배송완료"
    CANCELLED = "주문취소"
    CANCEL_REQUESTED = "취소요청"
    RETURN_REQUESTED = "반품신청"
    RETURNED = "반품완료"


# ────────────────────────────────────────────────────────────────
# Raw rows
# ────────────────────────────────────────────────────────────────

class ProductRow(TypedDict, total=False):
    id: int
    name: str
    description: Optional[str]
    price: int
    brand: Optional[str]
    image_urls: Optional[list[str]]
    category_id: int
    status: str
    sales: Optional[int]
    stock: Optional[int]
    created_at: Optional[str]
    updated_at: Optional[str]


class CategoryRow(TypedDict, total=False):
    id: int
    name: str
    description: Optional[str]
    image_url: Optional[str]
    level: int
    parent_id: Optional[int]


class CartRow(TypedDict, total=False):
    id: int
    user_id: str
    product_id: int
    product_name: str
    product_price: int
    product_image: Optional[str]
    quantity: int
    size: str
    color: str
    brand: Optional[str]
    is_selected: bool
    created_at: str
    updated_at: str


class WishlistRow(TypedDict, total=False):
    id: int
    user_id: str
    product_id: int
    created_at: str
    products: Optional[ProductRow]


class RecentViewRow(TypedDict, total=False):
    id: int
    user_id: str
    product_id: int
    viewed_at: str
    products: Optional[ProductRow]


class OrderItemRow(TypedDict, total=False):
    product_id: int
    name: str
    price: int
    quantity: int
    image: str
    size: Optional[str]
    color: Optional[str]
    brand: Optional[str]


class OrderRow(TypedDict, total=False):
    id: str
    user_id: str
    order_date: str
    status: str
    total_amount: int
    payment_method: str
    payment_provider: Optional[str]
    items: list[OrderItemRow]
    shipping_address: str
    recipient_name: str
    recipient_phone: str
    tracking_number: Optional[str]
    estimated_delivery: Optional[str]
    cancel_reason: Optional[str]
    created_at: str
    updated_at: str


# ────────────────────────────────────────────────────────────────
# View models
# ────────────────────────────────────────────────────────────────

class Product(BaseModel):
    id: int
    name: str
    description: str = ""
    price: int
    brand: str = ""
    image: str = PLACEHOLDER_IMAGE
    image_urls: list[str] = Field(default_factory=list)
    category_id: Optional[int] = None
    status: str = ProductStatus.FORSALE.value
    sales: int = 0
    stock: int = 0
    created_at: Optional[datetime] = None


class Category(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    level: int = 1
    parent_id: Optional[int] = None


class CategoryNode(Category):
    """Category with its children, for the three-level navigation tree."""
    children: list["CategoryNode"] = Field(default_factory=list)


class CartItem(BaseModel):
    """
    One cart line. The id is the composite key of product and variant, so the
    same product in two sizes is two lines, and adding the same variant again
    increases quantity instead of adding a line.
    """
    id: str
    product_id: int
    name: str
    price: int
    image: str = PLACEHOLDER_IMAGE
    brand: str = ""
    quantity: int = Field(default=1, ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


class OrderItem(BaseModel):
    product_id: int
    name: str
    price: int
    quantity: int
    image: str = ""
    size: Optional[str] = None
    color: Optional[str] = None
    brand: Optional[str] = None


class Order(BaseModel):
    id: str
    user_id: Optional[str] = None
    order_date: Optional[datetime] = None
    status: str = OrderStatus.RECEIVED.value
    total_amount: int = 0
    payment_method: str = ""
    payment_provider: Optional[str] = None
    items: list[OrderItem] = Field(default_factory=list)
    shipping_address: str = ""
    recipient_name: str = ""
    recipient_phone: str = ""
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: Optional[datetime] = None


# ────────────────────────────────────────────────────────────────
# Mapping functions
# ────────────────────────────────────────────────────────────────

def make_cart_item_id(product_id: int, size: Optional[str] = None, color: Optional[str] = None) -> str:
    """Composite key: "12-M-red", "12-no-size-no-color"."""
    return f"{product_id}-{size or NO_SIZE}-{color or NO_COLOR}"


def _variant(value: Optional[str], sentinel: str) -> Optional[str]:
    if not value or value == sentinel:
        return None
    return value


def product_from_row(row: ProductRow, placeholder_image: str = PLACEHOLDER_IMAGE) -> Product:
    image_urls = [url for url in (row.get("image_urls") or []) if url]
    return Product(
        id=row["id"],
        name=row.get("name") or "",
        description=row.get("description") or "",
        price=row.get("price") or 0,
        brand=row.get("brand") or "",
        image=image_urls[0] if image_urls else placeholder_image,
        image_urls=image_urls,
        category_id=row.get("category_id"),
        status=row.get("status") or ProductStatus.FORSALE.value,
        sales=row.get("sales") or 0,
        stock=row.get("stock") or 0,
        created_at=row.get("created_at"),
    )


def category_from_row(row: CategoryRow) -> Category:
    return Category(
        id=row["id"],
        name=row.get("name") or "",
        description=row.get("description"),
        image_url=row.get("image_url"),
        level=row.get("level") or 1,
        parent_id=row.get("parent_id"),
    )


def cart_item_from_row(row: CartRow, placeholder_image: str = PLACEHOLDER_IMAGE) -> CartItem:
    size = _variant(row.get("size"), NO_SIZE)
    color = _variant(row.get("color"), NO_COLOR)
    return CartItem(
        id=make_cart_item_id(row["product_id"], size, color),
        product_id=row["product_id"],
        name=row.get("product_name") or "",
        price=row.get("product_price") or 0,
        image=row.get("product_image") or placeholder_image,
        brand=row.get("brand") or "",
        quantity=max(1, row.get("quantity") or 1),
        size=size,
        color=color,
    )


def cart_item_to_row(item: CartItem, user_id: str, is_selected: bool = True) -> CartRow:
    """Row for user_carts. Timestamps are left to the backend's defaults."""
    return CartRow(
        user_id=user_id,
        product_id=item.product_id,
        product_name=item.name,
        product_price=item.price,
        product_image=item.image,
        quantity=item.quantity,
        size=item.size or NO_SIZE,
        color=item.color or NO_COLOR,
        brand=item.brand,
        is_selected=is_selected,
    )


def cart_item_from_product(
    product: Product,
    quantity: int = 1,
    size: Optional[str] = None,
    color: Optional[str] = None,
) -> CartItem:
    """Snapshot of the product at add-time."""
    return CartItem(
        id=make_cart_item_id(product.id, size, color),
        product_id=product.id,
        name=product.name,
        price=product.price,
        image=product.image,
        brand=product.brand,
        quantity=quantity,
        size=size,
        color=color,
    )


def order_from_row(row: OrderRow) -> Order:
    return Order(
        id=str(row["id"]),
        user_id=row.get("user_id"),
        order_date=row.get("order_date") or row.get("created_at"),
        status=row.get("status") or OrderStatus.RECEIVED.value,
        total_amount=row.get("total_amount") or 0,
        payment_method=row.get("payment_method") or "",
        payment_provider=row.get("payment_provider"),
        items=[OrderItem(**item) for item in (row.get("items") or [])],
        shipping_address=row.get("shipping_address") or "",
        recipient_name=row.get("recipient_name") or "",
        recipient_phone=row.get("recipient_phone") or "",
        tracking_number=row.get("tracking_number"),
        estimated_delivery=row.get("estimated_delivery"),
        cancel_reason=row.get("cancel_reason"),
        created_at=row.get("created_at"),
    )
