"""
Category Hierarchy

Categories are parent-pointer rows at three nominal levels:

    level 1  여성 패션
    level 2    아우터
    level 3      코트

Listing a level-3 category is a direct equality filter on products. Listing a
level-1 or level-2 category needs the descendant closure first, which one of
two DescendantResolver implementations computes:

    RecursiveQueryResolver  one server-side recursive function call
    TraversalResolver       breadth-first, one query per tree level

Both must return the same set for the same tree. probe_descendant_resolver()
picks one at startup; the RPC path is wrapped so it falls back to traversal
whenever the RPC fails at request time.
"""

import logging
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field

from .backend_client import BackendClient, BackendError, Query
from .catalog import for_sale, products_from_rows
from .records import Category, CategoryNode, Product, category_from_row

logger = logging.getLogger(__name__)

CATEGORIES = "categories"
DEFAULT_CATEGORY_NAME = "카테고리"
LEAF_LEVEL = 3

# Shown when the category table cannot be read
DEFAULT_CATEGORIES: list[Category] = [
    Category(
        id=1,
        name="여성 패션",
        level=1,
        image_url="https://image.thehyundai.com/HM/HM006/20250806/104045/pc_exclusive_stories.jpg",
    ),
    Category(
        id=2,
        name="남성 패션",
        level=1,
        image_url="https://image.thehyundai.com/HM/HM006/20250805/132821/pc_exclusive.jpg",
    ),
    Category(
        id=3,
        name="뷰티",
        level=1,
        image_url="https://image.thehyundai.com/HM/HM006/20250804/103547/pc_exclusive_stylein_3rd.jpg",
    ),
]


class CategoryProducts(BaseModel):
    category_name: str = DEFAULT_CATEGORY_NAME
    products: list[Product] = Field(default_factory=list)
    subcategories: list[Category] = Field(default_factory=list)
    # child id -> number of listed products in that child's subtree
    subcategory_counts: dict[int, int] = Field(default_factory=dict)


# ────────────────────────────────────────────────────────────────
# Descendant resolvers
# ────────────────────────────────────────────────────────────────

class DescendantResolver(Protocol):
    async def resolve_descendant_ids(self, parent_id: int) -> set[int]:
        """All category ids below parent_id, excluding parent_id itself."""
        ...


def _ids_from_rpc(data: Any) -> set[int]:
    """The RPC returns either bare ids or one-column rows, depending on its signature."""
    ids = set()
    for item in data or []:
        if isinstance(item, dict):
            value = item.get("id", next(iter(item.values()), None))
        else:
            value = item
        if value is not None:
            ids.add(int(value))
    return ids


class RecursiveQueryResolver:
    """Closure computed by a recursive SQL function on the backend."""

    def __init__(self, backend: BackendClient, function_name: str = "get_all_subcategory_ids"):
        self.backend = backend
        self.function_name = function_name

    async def resolve_descendant_ids(self, parent_id: int) -> set[int]:
        data = await self.backend.rpc(self.function_name, {"parent_id": parent_id})
        return _ids_from_rpc(data) - {parent_id}


class TraversalResolver:
    """
    Breadth-first closure: one parent_id IN (frontier) query per level.

    No depth cap. The visited set makes it terminate on trees deeper than
    three levels and on malformed rows that form a cycle.
    """

    def __init__(self, backend: BackendClient):
        self.backend = backend

    async def resolve_descendant_ids(self, parent_id: int) -> set[int]:
        visited = {parent_id}
        descendants: set[int] = set()
        frontier = [parent_id]

        while frontier:
            rows = await self.backend.fetch(
                Query(CATEGORIES).select("id").in_("parent_id", frontier)
            )
            next_frontier = []
            for row in rows:
                child_id = row["id"]
                if child_id in visited:
                    continue
                visited.add(child_id)
                descendants.add(child_id)
                next_frontier.append(child_id)
            frontier = next_frontier

        return descendants


class FallbackResolver:
    """Try primary; on a backend error log it and answer from fallback."""

    def __init__(self, primary: DescendantResolver, fallback: DescendantResolver):
        self.primary = primary
        self.fallback = fallback

    async def resolve_descendant_ids(self, parent_id: int) -> set[int]:
        try:
            return await self.primary.resolve_descendant_ids(parent_id)
        except BackendError as e:
            logger.warning(f"Descendant RPC failed for category {parent_id}, using traversal: {e}")
            return await self.fallback.resolve_descendant_ids(parent_id)


async def probe_descendant_resolver(
    backend: BackendClient,
    function_name: str = "get_all_subcategory_ids",
) -> DescendantResolver:
    """
    Pick the resolver once at startup.

    A probe call with a parent id no category has tells us whether the
    recursive function is installed without depending on any real data.
    """
    traversal = TraversalResolver(backend)
    try:
        await backend.rpc(function_name, {"parent_id": 0})
    except BackendError as e:
        logger.warning(f"Recursive category function '{function_name}' unavailable, using traversal: {e}")
        return traversal

    logger.info(f"Using recursive category function '{function_name}'")
    return FallbackResolver(RecursiveQueryResolver(backend, function_name), traversal)


# ────────────────────────────────────────────────────────────────
# Category data access
# ────────────────────────────────────────────────────────────────

async def get_all_categories(backend: BackendClient) -> list[Category]:
    try:
        rows = await backend.fetch(Query(CATEGORIES).order("name"))
    except BackendError as e:
        logger.error(f"Error fetching categories, serving defaults: {e}")
        return list(DEFAULT_CATEGORIES)
    return [category_from_row(row) for row in rows]


async def get_category_by_id(backend: BackendClient, category_id: int) -> Optional[Category]:
    try:
        row = await backend.fetch_one(Query(CATEGORIES).eq("id", category_id))
    except BackendError as e:
        logger.error(f"Error fetching category {category_id}: {e}")
        return None
    return category_from_row(row) if row else None


def build_category_tree(categories: list[Category]) -> list[CategoryNode]:
    """
    Nest flat rows under their parents. Roots are rows without a parent.

    Input order is kept within each level, so rows sorted by name give
    children sorted by name.
    """
    nodes = {c.id: CategoryNode(**c.model_dump()) for c in categories}
    roots = []
    for category in categories:
        node = nodes[category.id]
        if category.parent_id is None:
            roots.append(node)
        elif category.parent_id in nodes and category.parent_id != category.id:
            nodes[category.parent_id].children.append(node)
    return roots


async def get_categories_hierarchy(backend: BackendClient) -> list[CategoryNode]:
    try:
        rows = await backend.fetch(Query(CATEGORIES).order("name"))
    except BackendError as e:
        logger.error(f"Error fetching category hierarchy: {e}")
        return []
    return build_category_tree([category_from_row(row) for row in rows])


async def _subcategory_counts(
    resolver: DescendantResolver,
    subcategories: list[Category],
    products: list[Product],
) -> dict[int, int]:
    counts = {}
    for sub in subcategories:
        try:
            subtree = {sub.id} | await resolver.resolve_descendant_ids(sub.id)
        except BackendError as e:
            logger.warning(f"Counting only direct products of category {sub.id}: {e}")
            subtree = {sub.id}
        counts[sub.id] = sum(1 for p in products if p.category_id in subtree)
    return counts


async def get_category_products(
    backend: BackendClient,
    resolver: DescendantResolver,
    category_id: int,
) -> CategoryProducts:
    """
    Name, subtree products and immediate children of one category.

    A level-3 category lists its own products. Higher levels list every
    product whose category is a descendant. Any backend failure gives the
    default name and no products.
    """
    try:
        category = await backend.fetch_one(Query(CATEGORIES).eq("id", category_id))
        if category is None:
            logger.warning(f"Category {category_id} not found")
            return CategoryProducts()

        if category.get("level") == LEAF_LEVEL:
            rows = await backend.fetch(
                for_sale().eq("category_id", category_id).order("created_at", descending=True)
            )
            return CategoryProducts(category_name=category["name"], products=products_from_rows(rows))

        descendant_ids = await resolver.resolve_descendant_ids(category_id)
        rows = []
        if descendant_ids:
            rows = await backend.fetch(
                for_sale()
                .in_("category_id", sorted(descendant_ids))
                .order("created_at", descending=True)
            )
        else:
            logger.debug(f"Category {category_id} has no descendants")
        products = products_from_rows(rows)
    except BackendError as e:
        logger.error(f"Error fetching products for category {category_id}: {e}")
        return CategoryProducts()

    try:
        sub_rows = await backend.fetch(Query(CATEGORIES).eq("parent_id", category_id).order("name"))
    except BackendError as e:
        logger.error(f"Error fetching subcategories of {category_id}: {e}")
        sub_rows = []
    subcategories = [category_from_row(row) for row in sub_rows]

    return CategoryProducts(
        category_name=category["name"],
        products=products,
        subcategories=subcategories,
        subcategory_counts=await _subcategory_counts(resolver, subcategories, products),
    )
