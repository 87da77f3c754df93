"""
Tests for category hierarchy resolution.

Run with: pytest tests/test_categories.py -v
"""

import pytest

from conftest import FakeBackend, category_rows, seed_products, subcategory_rpc
from storefront.categories import (
    DEFAULT_CATEGORIES,
    DEFAULT_CATEGORY_NAME,
    FallbackResolver,
    RecursiveQueryResolver,
    TraversalResolver,
    build_category_tree,
    get_all_categories,
    get_categories_hierarchy,
    get_category_by_id,
    get_category_products,
    probe_descendant_resolver,
)
from storefront.records import category_from_row


# ============================================================================
# RESOLVERS
# ============================================================================

class TestTraversalResolver:
    """Breadth-first closure over parent_id."""

    @pytest.mark.asyncio
    async def test_level_one_closure(self, backend):
        ids = await TraversalResolver(backend).resolve_descendant_ids(1)
        assert ids == {11, 12, 111, 112, 121}

    @pytest.mark.asyncio
    async def test_excludes_parent(self, backend):
        ids = await TraversalResolver(backend).resolve_descendant_ids(11)
        assert ids == {111, 112}

    @pytest.mark.asyncio
    async def test_leaf_has_no_descendants(self, backend):
        assert await TraversalResolver(backend).resolve_descendant_ids(111) == set()

    @pytest.mark.asyncio
    async def test_one_query_per_level(self, backend):
        await TraversalResolver(backend).resolve_descendant_ids(1)
        # levels 2, 3 and the empty level below 3
        assert backend.calls.count(("fetch", "categories")) == 3

    @pytest.mark.asyncio
    async def test_deeper_than_three_levels(self):
        rows = [{"id": i, "name": f"c{i}", "level": i, "parent_id": i - 1 if i > 1 else None} for i in range(1, 7)]
        backend = FakeBackend({"categories": rows})
        assert await TraversalResolver(backend).resolve_descendant_ids(1) == {2, 3, 4, 5, 6}

    @pytest.mark.asyncio
    async def test_cycle_terminates(self):
        rows = [
            {"id": 1, "name": "a", "level": 1, "parent_id": 3},
            {"id": 2, "name": "b", "level": 2, "parent_id": 1},
            {"id": 3, "name": "c", "level": 3, "parent_id": 2},
        ]
        backend = FakeBackend({"categories": rows})
        assert await TraversalResolver(backend).resolve_descendant_ids(1) == {2, 3}


class TestRecursiveQueryResolver:
    @pytest.mark.asyncio
    async def test_uses_single_rpc(self, backend):
        backend.rpc_functions["get_all_subcategory_ids"] = subcategory_rpc

        ids = await RecursiveQueryResolver(backend).resolve_descendant_ids(1)

        assert ids == {11, 12, 111, 112, 121}
        assert backend.calls == [("rpc", "get_all_subcategory_ids")]

    @pytest.mark.asyncio
    async def test_bare_id_results_accepted(self, backend):
        backend.rpc_functions["get_all_subcategory_ids"] = lambda b, p: [11, 12, p["parent_id"]]
        assert await RecursiveQueryResolver(backend).resolve_descendant_ids(1) == {11, 12}

    @pytest.mark.asyncio
    async def test_same_answer_as_traversal(self, backend):
        backend.rpc_functions["get_all_subcategory_ids"] = subcategory_rpc
        for category_id in (1, 2, 11, 12, 111):
            rpc = await RecursiveQueryResolver(backend).resolve_descendant_ids(category_id)
            bfs = await TraversalResolver(backend).resolve_descendant_ids(category_id)
            assert rpc == bfs


class TestFallbackAndProbe:
    @pytest.mark.asyncio
    async def test_fallback_on_rpc_failure(self, backend):
        backend.rpc_functions["get_all_subcategory_ids"] = subcategory_rpc
        backend.fail("rpc", "get_all_subcategory_ids")
        resolver = FallbackResolver(RecursiveQueryResolver(backend), TraversalResolver(backend))

        assert await resolver.resolve_descendant_ids(11) == {111, 112}

    @pytest.mark.asyncio
    async def test_probe_picks_rpc_when_installed(self, backend):
        backend.rpc_functions["get_all_subcategory_ids"] = subcategory_rpc
        resolver = await probe_descendant_resolver(backend)
        assert isinstance(resolver, FallbackResolver)
        assert isinstance(resolver.primary, RecursiveQueryResolver)

    @pytest.mark.asyncio
    async def test_probe_picks_traversal_without_rpc(self, backend):
        resolver = await probe_descendant_resolver(backend)
        assert isinstance(resolver, TraversalResolver)


# ============================================================================
# CATEGORY DATA ACCESS
# ============================================================================

class TestGetCategoryProducts:
    """Products of a whole subtree plus the immediate children."""

    @pytest.mark.asyncio
    async def test_level_one_collects_subtree(self, backend):
        result = await get_category_products(backend, TraversalResolver(backend), 1)

        assert result.category_name == "여성 패션"
        # soldout product 5 excluded
        assert {p.id for p in result.products} == {1, 2, 3, 4}
        assert [c.id for c in result.subcategories] == [11, 12]
        assert result.subcategory_counts == {11: 3, 12: 1}

    @pytest.mark.asyncio
    async def test_leaf_uses_direct_products(self, backend):
        result = await get_category_products(backend, TraversalResolver(backend), 111)

        assert result.category_name == "코트"
        assert {p.id for p in result.products} == {1, 2}
        assert result.subcategories == []

    @pytest.mark.asyncio
    async def test_category_without_children(self, backend):
        result = await get_category_products(backend, TraversalResolver(backend), 2)
        assert result.category_name == "남성 패션"
        assert result.products == []

    @pytest.mark.asyncio
    async def test_missing_category_gives_default(self, backend):
        result = await get_category_products(backend, TraversalResolver(backend), 999)
        assert result.category_name == DEFAULT_CATEGORY_NAME
        assert result.products == []

    @pytest.mark.asyncio
    async def test_backend_failure_gives_default(self, backend):
        backend.fail("fetch", "products")
        result = await get_category_products(backend, TraversalResolver(backend), 1)
        assert result.category_name == DEFAULT_CATEGORY_NAME
        assert result.products == []

    @pytest.mark.asyncio
    async def test_rpc_and_traversal_agree(self):
        backend = FakeBackend({"categories": category_rows(), "products": seed_products()})
        backend.rpc_functions["get_all_subcategory_ids"] = subcategory_rpc
        via_rpc = await get_category_products(backend, RecursiveQueryResolver(backend), 1)
        via_bfs = await get_category_products(backend, TraversalResolver(backend), 1)
        assert {p.id for p in via_rpc.products} == {p.id for p in via_bfs.products}


class TestCategoryLookups:
    @pytest.mark.asyncio
    async def test_all_categories_sorted_by_name(self, backend):
        names = [c.name for c in await get_all_categories(backend)]
        assert names == sorted(names)

    @pytest.mark.asyncio
    async def test_all_categories_defaults_on_failure(self, backend):
        backend.fail("fetch", "categories")
        assert await get_all_categories(backend) == DEFAULT_CATEGORIES

    @pytest.mark.asyncio
    async def test_by_id(self, backend):
        category = await get_category_by_id(backend, 12)
        assert category.name == "원피스"
        assert category.parent_id == 1
        assert await get_category_by_id(backend, 999) is None

    @pytest.mark.asyncio
    async def test_hierarchy(self, backend):
        tree = await get_categories_hierarchy(backend)

        assert [node.id for node in tree] == [2, 1]
        women = tree[1]
        assert [child.id for child in women.children] == [11, 12]
        outer = women.children[0]
        assert {leaf.id for leaf in outer.children} == {111, 112}

    def test_tree_ignores_orphans_and_self_parent(self):
        categories = [category_from_row(r) for r in [
            {"id": 1, "name": "root", "level": 1, "parent_id": None},
            {"id": 5, "name": "orphan", "level": 2, "parent_id": 42},
            {"id": 6, "name": "self", "level": 2, "parent_id": 6},
        ]]
        tree = build_category_tree(categories)
        assert [node.id for node in tree] == [1]
        assert tree[0].children == []
