"""
Catalog Data Access

Product listing and search against the hosted backend. One function per query
shape; each takes the backend client explicitly and maps rows through
product_from_row.

Read failures never propagate: they are logged and degrade to an empty list,
None or 0, so a flaky backend shows an empty shelf instead of an error page.
Search is a plain ILIKE pass-through, not a ranking engine.
"""

import logging
from typing import Iterable, Literal, Optional

from pydantic import BaseModel

from .backend_client import BackendClient, BackendError, Query
from .core.config import get_settings
from .records import Product, ProductRow, ProductStatus, product_from_row

logger = logging.getLogger(__name__)

PRODUCTS = "products"
SEARCH_COLUMNS = ("name", "description", "brand")
MIN_SUGGESTION_LENGTH = 2


class SearchFilters(BaseModel):
    category_id: Optional[int] = None
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    brand: Optional[str] = None
    sort_by: Literal["name", "price", "sales", "created_at"] = "sales"
    sort_order: Literal["asc", "desc"] = "desc"


def products_from_rows(rows: Iterable[ProductRow]) -> list[Product]:
    placeholder = get_settings().placeholder_image
    return [product_from_row(row, placeholder) for row in rows]


def for_sale() -> Query:
    return Query(PRODUCTS).eq("status", ProductStatus.FORSALE.value)


async def _fetch_products(backend: BackendClient, query: Query, label: str) -> list[Product]:
    try:
        rows = await backend.fetch(query)
    except BackendError as e:
        logger.error(f"Error in {label}: {e}")
        return []
    return products_from_rows(rows)


# ────────────────────────────────────────────────────────────────
# Listings
# ────────────────────────────────────────────────────────────────

async def get_all_products(backend: BackendClient) -> list[Product]:
    return await _fetch_products(backend, for_sale().order("created_at", descending=True), "get_all_products")


async def get_products_by_category(backend: BackendClient, category_id: int) -> list[Product]:
    """Products attached directly to category_id, best sellers first."""
    query = for_sale().eq("category_id", category_id).order("sales", descending=True)
    return await _fetch_products(backend, query, "get_products_by_category")


async def get_product_by_id(backend: BackendClient, product_id: int) -> Optional[Product]:
    try:
        row = await backend.fetch_one(Query(PRODUCTS).eq("id", product_id))
    except BackendError as e:
        logger.error(f"Error fetching product {product_id}: {e}")
        return None
    if row is None:
        return None
    return product_from_row(row, get_settings().placeholder_image)


async def get_popular_products(backend: BackendClient, limit: int = 8) -> list[Product]:
    query = for_sale().order("sales", descending=True).limit(limit)
    return await _fetch_products(backend, query, "get_popular_products")


async def get_new_products(backend: BackendClient, limit: int = 8) -> list[Product]:
    query = for_sale().order("created_at", descending=True).limit(limit)
    return await _fetch_products(backend, query, "get_new_products")


async def get_discounted_products(backend: BackendClient, limit: int = 8) -> list[Product]:
    # No discount column yet; cheapest items stand in for the sale shelf
    query = for_sale().order("price").limit(limit)
    return await _fetch_products(backend, query, "get_discounted_products")


async def get_related_products(
    backend: BackendClient,
    product_id: int,
    category_id: int,
    limit: int = 4,
) -> list[Product]:
    """Other for-sale products from the same category."""
    query = (
        for_sale()
        .eq("category_id", category_id)
        .neq("id", product_id)
        .order("sales", descending=True)
        .limit(limit)
    )
    return await _fetch_products(backend, query, "get_related_products")


# ────────────────────────────────────────────────────────────────
# Search
# ────────────────────────────────────────────────────────────────

def _apply_filters(query: Query, term: str, filters: Optional[SearchFilters]) -> Query:
    if term and term.strip():
        query = query.or_ilike(SEARCH_COLUMNS, term.strip())
    if filters is None:
        return query
    if filters.category_id:
        query = query.eq("category_id", filters.category_id)
    if filters.min_price is not None:
        query = query.gte("price", filters.min_price)
    if filters.max_price is not None:
        query = query.lte("price", filters.max_price)
    if filters.brand:
        query = query.ilike("brand", f"%{filters.brand}%")
    return query


async def search_products(backend: BackendClient, term: str) -> list[Product]:
    """ILIKE over name, description and brand; for-sale only; best sellers first."""
    query = _apply_filters(for_sale(), term, None).order("sales", descending=True)
    return await _fetch_products(backend, query, "search_products")


async def advanced_search_products(
    backend: BackendClient,
    term: str,
    filters: Optional[SearchFilters] = None,
) -> list[Product]:
    filters = filters or SearchFilters()
    query = _apply_filters(for_sale(), term, filters).order(
        filters.sort_by, descending=filters.sort_order == "desc"
    )
    return await _fetch_products(backend, query, "advanced_search_products")


async def get_search_result_count(
    backend: BackendClient,
    term: str,
    filters: Optional[SearchFilters] = None,
) -> int:
    query = _apply_filters(for_sale().select("id"), term, filters)
    try:
        return await backend.count(query)
    except BackendError as e:
        logger.error(f"Error counting search results for '{term}': {e}")
        return 0


def rank_suggestions(candidates: Iterable[str], term: str, limit: int) -> list[str]:
    """
    Deduplicate, then order prefix matches first and shorter strings first.

    Examples:
        rank_suggestions(["Blue Shirt", "Shirt", "Shirts"], "shi", 10)
            = ["Shirt", "Shirts", "Blue Shirt"]
    """
    term_lower = term.lower()
    unique = list(dict.fromkeys(c for c in candidates if c))
    unique.sort(key=lambda s: (not s.lower().startswith(term_lower), len(s)))
    return unique[:limit]


async def get_search_suggestions(backend: BackendClient, term: str, limit: int = 10) -> list[str]:
    """Autocomplete from product names and brands. Terms under two characters get nothing."""
    if not term or len(term.strip()) < MIN_SUGGESTION_LENGTH:
        return []
    term = term.strip()

    try:
        name_rows = await backend.fetch(
            for_sale().select("name").ilike("name", f"%{term}%").limit(limit)
        )
        brand_rows = await backend.fetch(
            for_sale().select("brand").not_null("brand").ilike("brand", f"%{term}%").limit(limit)
        )
    except BackendError as e:
        logger.error(f"Error fetching search suggestions for '{term}': {e}")
        return []

    candidates = [row.get("name") for row in name_rows] + [row.get("brand") for row in brand_rows]
    return rank_suggestions(candidates, term, limit)


async def get_popular_search_terms(backend: BackendClient, limit: int = 10) -> list[str]:
    """Best-selling product names, used as the popular-terms list."""
    try:
        rows = await backend.fetch(for_sale().select("name").order("sales", descending=True).limit(limit))
    except BackendError as e:
        logger.error(f"Error fetching popular search terms: {e}")
        return []
    return [row["name"] for row in rows if row.get("name")]
