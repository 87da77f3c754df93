"""
Customer-facing routes.

Open to guests and members alike. Identity comes from the optional bearer
token; a guest's cart lives in guest storage keyed by the X-Guest-Session
header.

Usage:
    GET    /api/products/popular        -> Best sellers
    GET    /api/search?q=shirt          -> Products plus total count
    GET    /api/categories/tree         -> Three-level navigation tree
    GET    /api/categories/12/products  -> Products in the category subtree

    GET    /api/cart                    -> Current cart (guest or member)
    POST   /api/cart/items              -> Add a product variant
    POST   /api/cart/merge              -> Fold the guest cart into the member cart after login
    POST   /api/cart/logout             -> Reset the in-memory cart

    POST   /api/orders                  -> Place an order for the selected cart lines

    GET    /api/wishlist                -> Member's wishlist
    POST   /api/recent-views/12         -> Record a product view
"""

import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query as QueryParam, Request, status
from pydantic import BaseModel, Field

from .backend_client import BackendClient
from .cart import CartStore, CartView
from .catalog import (
    SearchFilters,
    advanced_search_products,
    get_all_products,
    get_discounted_products,
    get_new_products,
    get_popular_products,
    get_popular_search_terms,
    get_product_by_id,
    get_products_by_category,
    get_related_products,
    get_search_result_count,
    get_search_suggestions,
)
from .categories import (
    CategoryProducts,
    DescendantResolver,
    get_all_categories,
    get_categories_hierarchy,
    get_category_by_id,
    get_category_products,
)
from .core.request_context import (
    GUEST_SESSION_HEADER,
    RequestContext,
    get_optional_request_context,
    get_request_context,
)
from .core.responses import ErrorCodes, error_response
from .guest_storage import GuestStorage, SqlGuestStorage
from .orders import create_order, get_order_by_id, get_user_orders, request_order_cancellation
from .records import Category, CategoryNode, Order, OrderItem, Product
from .recent_views import RecentViewStore
from .wishlist import StoreMessage, WishlistStore

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────
# Router Definition
# ────────────────────────────────────────────────────────────────

router = APIRouter(prefix="/api", tags=["storefront"])


# ────────────────────────────────────────────────────────────────
# Dependencies
# ────────────────────────────────────────────────────────────────

def get_backend(request: Request) -> BackendClient:
    return request.app.state.backend


def get_resolver(request: Request) -> DescendantResolver:
    return request.app.state.resolver


def get_guest_storage(
    request: Request,
    ctx: RequestContext = Depends(get_optional_request_context),
) -> Optional[GuestStorage]:
    """Guest storage for the caller's guest session, or None without one."""
    if not ctx.guest_session_id:
        return None
    return SqlGuestStorage(request.app.state.session_factory, ctx.guest_session_id)


async def get_cart_store(
    ctx: RequestContext = Depends(get_optional_request_context),
    backend: BackendClient = Depends(get_backend),
    guest_storage: Optional[GuestStorage] = Depends(get_guest_storage),
) -> CartStore:
    """The caller's cart, loaded."""
    store = CartStore(backend, guest_storage, user_id=ctx.user_id if ctx.is_authenticated else None)
    await store.load()
    return store


def _write_failed(message: str) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=error_response(ErrorCodes.WRITE_FAILED, message),
    )


def _require_cart_session(store: CartStore) -> None:
    """Guests can only change a cart they can come back to, and only once it was read."""
    if store.guest_unreadable:
        _write_failed("The guest cart could not be read; try again.")
    if not store.is_member and store.guest_storage is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response(
                ErrorCodes.GUEST_SESSION_REQUIRED,
                f"Send the {GUEST_SESSION_HEADER} header to keep a guest cart.",
            ),
        )


# ────────────────────────────────────────────────────────────────
# Request / Response Models
# ────────────────────────────────────────────────────────────────

class SearchResponse(BaseModel):
    products: list[Product]
    count: int


class AddToCartRequest(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


class UpdateQuantityRequest(BaseModel):
    quantity: int


class CartMergeResponse(BaseModel):
    merged: int
    item_count: int
    # False when the merge landed but the guest cart is still stored; the client should not retry
    guest_cleared: bool = True
    cart: CartView


class WishlistResponse(BaseModel):
    items: list[Product]
    count: int


class StoreMessageResponse(BaseModel):
    message: str


class CancelOrderRequest(BaseModel):
    reason: str = Field(min_length=1)


class PlaceOrderRequest(BaseModel):
    payment_method: str = Field(min_length=1)
    payment_provider: Optional[str] = None
    shipping_address: str = Field(min_length=1)
    recipient_name: str = Field(min_length=1)
    recipient_phone: str = Field(min_length=1)


# ────────────────────────────────────────────────────────────────
# Products and search
# ────────────────────────────────────────────────────────────────

@router.get("/products", response_model=list[Product])
async def list_products(
    category_id: Optional[int] = None,
    backend: BackendClient = Depends(get_backend),
):
    if category_id is not None:
        return await get_products_by_category(backend, category_id)
    return await get_all_products(backend)


@router.get("/products/popular", response_model=list[Product])
async def popular_products(limit: int = QueryParam(8, ge=1, le=50), backend: BackendClient = Depends(get_backend)):
    return await get_popular_products(backend, limit)


@router.get("/products/new", response_model=list[Product])
async def new_products(limit: int = QueryParam(8, ge=1, le=50), backend: BackendClient = Depends(get_backend)):
    return await get_new_products(backend, limit)


@router.get("/products/discounted", response_model=list[Product])
async def discounted_products(limit: int = QueryParam(8, ge=1, le=50), backend: BackendClient = Depends(get_backend)):
    return await get_discounted_products(backend, limit)


@router.get("/products/{product_id}", response_model=Product)
async def product_detail(product_id: int, backend: BackendClient = Depends(get_backend)):
    product = await get_product_by_id(backend, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail=f"Product not found: {product_id}")
    return product


@router.get("/products/{product_id}/related", response_model=list[Product])
async def related_products(product_id: int, backend: BackendClient = Depends(get_backend)):
    product = await get_product_by_id(backend, product_id)
    if product is None or product.category_id is None:
        return []
    return await get_related_products(backend, product.id, product.category_id)


@router.get("/search", response_model=SearchResponse)
async def search(
    q: str = "",
    filters: SearchFilters = Depends(),
    backend: BackendClient = Depends(get_backend),
):
    products = await advanced_search_products(backend, q, filters)
    count = await get_search_result_count(backend, q, filters)
    return SearchResponse(products=products, count=count)


@router.get("/search/suggestions", response_model=list[str])
async def search_suggestions(
    q: str = "",
    limit: int = QueryParam(10, ge=1, le=50),
    backend: BackendClient = Depends(get_backend),
):
    return await get_search_suggestions(backend, q, limit)


@router.get("/search/popular", response_model=list[str])
async def popular_search_terms(backend: BackendClient = Depends(get_backend)):
    return await get_popular_search_terms(backend)


# ────────────────────────────────────────────────────────────────
# Categories
# ────────────────────────────────────────────────────────────────

@router.get("/categories", response_model=list[Category])
async def list_categories(backend: BackendClient = Depends(get_backend)):
    return await get_all_categories(backend)


@router.get("/categories/tree", response_model=list[CategoryNode])
async def category_tree(backend: BackendClient = Depends(get_backend)):
    return await get_categories_hierarchy(backend)


@router.get("/categories/{category_id}", response_model=Category)
async def category_detail(category_id: int, backend: BackendClient = Depends(get_backend)):
    category = await get_category_by_id(backend, category_id)
    if category is None:
        raise HTTPException(status_code=404, detail=f"Category not found: {category_id}")
    return category


@router.get("/categories/{category_id}/products", response_model=CategoryProducts)
async def category_products(
    category_id: int,
    backend: BackendClient = Depends(get_backend),
    resolver: DescendantResolver = Depends(get_resolver),
):
    return await get_category_products(backend, resolver, category_id)


# ────────────────────────────────────────────────────────────────
# Cart
# ────────────────────────────────────────────────────────────────

@router.get("/cart", response_model=CartView)
async def get_cart(store: CartStore = Depends(get_cart_store)):
    return store.to_view()


@router.post("/cart/items", response_model=CartView)
async def add_cart_item(
    body: AddToCartRequest,
    store: CartStore = Depends(get_cart_store),
    backend: BackendClient = Depends(get_backend),
):
    _require_cart_session(store)
    product = await get_product_by_id(backend, body.product_id)
    if product is None:
        raise HTTPException(status_code=404, detail=f"Product not found: {body.product_id}")
    if not await store.add_to_cart(product, body.quantity, body.size, body.color):
        _write_failed("Could not add the item to the cart.")
    return store.to_view()


@router.patch("/cart/items/{item_id}", response_model=CartView)
async def update_cart_item(item_id: str, body: UpdateQuantityRequest, store: CartStore = Depends(get_cart_store)):
    _require_cart_session(store)
    if store.find_item(item_id) is None:
        raise HTTPException(status_code=404, detail=f"Cart item not found: {item_id}")
    if not await store.update_quantity(item_id, body.quantity):
        _write_failed("Could not update the quantity.")
    return store.to_view()


@router.delete("/cart/items/{item_id}", response_model=CartView)
async def delete_cart_item(item_id: str, store: CartStore = Depends(get_cart_store)):
    _require_cart_session(store)
    if store.find_item(item_id) is None:
        raise HTTPException(status_code=404, detail=f"Cart item not found: {item_id}")
    if not await store.remove_item(item_id):
        _write_failed("Could not remove the item.")
    return store.to_view()


@router.post("/cart/items/{item_id}/toggle", response_model=CartView)
async def toggle_cart_item(item_id: str, store: CartStore = Depends(get_cart_store)):
    _require_cart_session(store)
    if store.find_item(item_id) is None:
        raise HTTPException(status_code=404, detail=f"Cart item not found: {item_id}")
    if not await store.toggle_item_selection(item_id):
        _write_failed("Could not change the selection.")
    return store.to_view()


@router.post("/cart/select-all", response_model=CartView)
async def toggle_all_cart_items(store: CartStore = Depends(get_cart_store)):
    _require_cart_session(store)
    if not await store.toggle_all_selection():
        _write_failed("Could not change the selection.")
    return store.to_view()


@router.delete("/cart/selected", response_model=CartView)
async def delete_selected_cart_items(store: CartStore = Depends(get_cart_store)):
    _require_cart_session(store)
    if not await store.remove_selected_items():
        _write_failed("Could not remove every selected item.")
    return store.to_view()


@router.delete("/cart", response_model=CartView)
async def clear_cart(store: CartStore = Depends(get_cart_store)):
    _require_cart_session(store)
    if not await store.clear_cart():
        _write_failed("Could not clear the cart.")
    return store.to_view()


@router.post("/cart/merge", response_model=CartMergeResponse)
async def merge_guest_cart(
    ctx: RequestContext = Depends(get_request_context),
    backend: BackendClient = Depends(get_backend),
    guest_storage: Optional[GuestStorage] = Depends(get_guest_storage),
):
    """Called once after sign-in. The guest cart is kept when the merge fails, so it can be retried."""
    store = CartStore(backend, guest_storage)
    result = await store.sync_on_login(ctx.user_id)
    if not result.ok:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=error_response(
                ErrorCodes.WRITE_FAILED,
                "Could not merge the guest cart. It was kept; try again.",
                details={"item_count": result.item_count},
            ),
        )
    return CartMergeResponse(
        merged=result.merged,
        item_count=result.item_count,
        guest_cleared=result.guest_cleared,
        cart=store.to_view(),
    )


@router.post("/cart/logout", response_model=CartView)
async def logout_cart(store: CartStore = Depends(get_cart_store)):
    store.sync_on_logout()
    return store.to_view()


# ────────────────────────────────────────────────────────────────
# Wishlist
# ────────────────────────────────────────────────────────────────

def _check_message(ctx: RequestContext, result: StoreMessage) -> StoreMessageResponse:
    if result.ok:
        return StoreMessageResponse(message=result.message)
    if not ctx.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response(ErrorCodes.LOGIN_REQUIRED, result.message),
        )
    _write_failed(result.message)


async def _wishlist(ctx: RequestContext, backend: BackendClient) -> WishlistStore:
    store = WishlistStore(backend, ctx.user_id if ctx.is_authenticated else None)
    await store.refresh()
    return store


@router.get("/wishlist", response_model=WishlistResponse)
async def get_wishlist(
    ctx: RequestContext = Depends(get_optional_request_context),
    backend: BackendClient = Depends(get_backend),
):
    store = await _wishlist(ctx, backend)
    return WishlistResponse(items=store.items, count=store.count)


@router.get("/wishlist/{product_id}")
async def wishlist_contains(
    product_id: int,
    ctx: RequestContext = Depends(get_optional_request_context),
    backend: BackendClient = Depends(get_backend),
):
    store = await _wishlist(ctx, backend)
    return {"product_id": product_id, "in_wishlist": store.contains(product_id)}


@router.post("/wishlist/{product_id}", response_model=StoreMessageResponse)
async def add_wishlist_item(
    product_id: int,
    ctx: RequestContext = Depends(get_optional_request_context),
    backend: BackendClient = Depends(get_backend),
):
    store = WishlistStore(backend, ctx.user_id if ctx.is_authenticated else None)
    return _check_message(ctx, await store.add(product_id))


@router.delete("/wishlist/{product_id}", response_model=StoreMessageResponse)
async def remove_wishlist_item(
    product_id: int,
    ctx: RequestContext = Depends(get_optional_request_context),
    backend: BackendClient = Depends(get_backend),
):
    store = WishlistStore(backend, ctx.user_id if ctx.is_authenticated else None)
    return _check_message(ctx, await store.remove(product_id))


@router.delete("/wishlist", response_model=StoreMessageResponse)
async def clear_wishlist(
    ctx: RequestContext = Depends(get_optional_request_context),
    backend: BackendClient = Depends(get_backend),
):
    store = WishlistStore(backend, ctx.user_id if ctx.is_authenticated else None)
    return _check_message(ctx, await store.clear())


# ────────────────────────────────────────────────────────────────
# Recent views
# ────────────────────────────────────────────────────────────────

def _recent_views(ctx: RequestContext, backend: BackendClient) -> RecentViewStore:
    return RecentViewStore(backend, ctx.user_id if ctx.is_authenticated else None)


@router.get("/recent-views", response_model=list[Product])
async def get_recent_views(
    ctx: RequestContext = Depends(get_optional_request_context),
    backend: BackendClient = Depends(get_backend),
):
    store = _recent_views(ctx, backend)
    await store.refresh()
    return store.items


@router.post("/recent-views/{product_id}", response_model=list[Product])
async def record_recent_view(
    product_id: int,
    ctx: RequestContext = Depends(get_optional_request_context),
    backend: BackendClient = Depends(get_backend),
):
    """Guests get an empty history and nothing is recorded."""
    store = _recent_views(ctx, backend)
    if ctx.is_authenticated and not await store.record(product_id):
        _write_failed("Could not record the view.")
    return store.items


@router.delete("/recent-views/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_recent_view(
    product_id: int,
    ctx: RequestContext = Depends(get_request_context),
    backend: BackendClient = Depends(get_backend),
):
    if not await _recent_views(ctx, backend).remove(product_id):
        _write_failed("Could not remove the view.")


@router.delete("/recent-views", status_code=status.HTTP_204_NO_CONTENT)
async def clear_recent_views(
    ctx: RequestContext = Depends(get_request_context),
    backend: BackendClient = Depends(get_backend),
):
    if not await _recent_views(ctx, backend).clear():
        _write_failed("Could not clear the history.")


# ────────────────────────────────────────────────────────────────
# Orders
# ────────────────────────────────────────────────────────────────

@router.get("/orders", response_model=list[Order])
async def my_orders(
    ctx: RequestContext = Depends(get_request_context),
    backend: BackendClient = Depends(get_backend),
):
    return await get_user_orders(backend, ctx.user_id)


@router.post("/orders", response_model=Order, status_code=status.HTTP_201_CREATED)
async def place_order(
    body: PlaceOrderRequest,
    ctx: RequestContext = Depends(get_request_context),
    backend: BackendClient = Depends(get_backend),
):
    """Order the selected cart lines; they leave the cart once the order is recorded."""
    store = CartStore(backend, None, user_id=ctx.user_id)
    await store.load()
    selected = set(store.selected_ids)
    items = [
        OrderItem(
            product_id=item.product_id,
            name=item.name,
            price=item.price,
            quantity=item.quantity,
            image=item.image,
            size=item.size,
            color=item.color,
            brand=item.brand or None,
        )
        for item in store.items
        if item.id in selected
    ]
    if not items:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response(ErrorCodes.VALIDATION_ERROR, "Select at least one cart item to order."),
        )

    order = await create_order(
        backend,
        ctx.user_id,
        items,
        payment_method=body.payment_method,
        payment_provider=body.payment_provider,
        shipping_address=body.shipping_address,
        recipient_name=body.recipient_name,
        recipient_phone=body.recipient_phone,
    )
    if order is None:
        _write_failed("Could not place the order.")
    if not await store.remove_selected_items():
        logger.warning(f"Order {order.id} placed but its lines are still in the cart of {ctx.user_id}")
    return order


@router.get("/orders/{order_id}", response_model=Order)
async def my_order(
    order_id: str,
    ctx: RequestContext = Depends(get_request_context),
    backend: BackendClient = Depends(get_backend),
):
    order = await get_order_by_id(backend, order_id, user_id=ctx.user_id)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order not found: {order_id}")
    return order


@router.post("/orders/{order_id}/cancel", response_model=StoreMessageResponse)
async def cancel_my_order(
    order_id: str,
    body: CancelOrderRequest,
    ctx: RequestContext = Depends(get_request_context),
    backend: BackendClient = Depends(get_backend),
):
    if await get_order_by_id(backend, order_id, user_id=ctx.user_id) is None:
        raise HTTPException(status_code=404, detail=f"Order not found: {order_id}")
    if not await request_order_cancellation(backend, order_id, body.reason, user_id=ctx.user_id):
        _write_failed("Could not request the cancellation.")
    return StoreMessageResponse(message="취소 요청이 접수되었습니다.")
