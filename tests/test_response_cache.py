import asyncio
from typing import Optional

import pytest
from pydantic import BaseModel

from docsearch_server.cache.response_cache import (
    DOCUMENTS,
    SEARCH,
    ResponseCache,
    cached,
    document_key,
    normalize_query,
    search_key,
)


class Item(BaseModel):
    name: str


class ItemService:
    def __init__(self, cache: Optional[ResponseCache]) -> None:
        self.cache = cache
        self.calls = 0
        self.result: Optional[Item] = Item(name="first")

    @cached(DOCUMENTS, lambda item_id: f"item:{item_id}", Item)
    async def get(self, item_id: str) -> Optional[Item]:
        self.calls += 1
        return self.result


class GatedItemService(ItemService):
    """Holds its first call open after reading, until `release` is set."""

    def __init__(self, cache: Optional[ResponseCache]) -> None:
        super().__init__(cache)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    @cached(DOCUMENTS, lambda item_id: f"item:{item_id}", Item)
    async def get(self, item_id: str) -> Optional[Item]:
        self.calls += 1
        result = self.result
        if self.calls == 1:
            self.entered.set()
            await self.release.wait()
        return result


# ---------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------

class TestKeys:
    def test_normalize_query(self):
        assert normalize_query("  hello   world \n") == "hello   world"
        assert normalize_query(None) == ""

    def test_document_key(self):
        assert document_key("abc", "t1") == "abc:t1"

    def test_search_key_separates_tenants(self):
        assert search_key("t1", "q", 1, 10, "relevance") != search_key("t2", "q", 1, 10, "relevance")
        assert search_key("t1", "q", 1, 10, "relevance").startswith("t1:")

    def test_search_key_separates_paging_and_sort(self):
        base = search_key("t1", "q", 1, 10, "relevance")
        assert base != search_key("t1", "q", 2, 10, "relevance")
        assert base != search_key("t1", "q", 1, 20, "relevance")
        assert base != search_key("t1", "q", 1, 10, "recent")
        assert base != search_key("t1", "other", 1, 10, "relevance")

    def test_search_key_keeps_inner_whitespace(self):
        assert search_key("t1", " a b ", 1, 10, "relevance") == search_key("t1", "a b", 1, 10, "relevance")
        assert search_key("t1", "a  b", 1, 10, "relevance") != search_key("t1", "a b", 1, 10, "relevance")


# ---------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------

class TestResponseCache:
    async def test_put_uses_namespace_ttl(self, cache, fake_redis):
        await cache.put(SEARCH, "k", "v")

        assert fake_redis.data["cache:search:k"] == "0|v"
        assert fake_redis.ttls["cache:search:k"] == 300
        assert await cache.get(SEARCH, "k") == "v"

    async def test_none_is_never_stored(self, cache, fake_redis):
        await cache.put(DOCUMENTS, "k", None)
        assert fake_redis.data == {}

    async def test_invalidate(self, cache, fake_redis):
        await cache.put(DOCUMENTS, "k", "v")
        await cache.invalidate(DOCUMENTS, "k")

        assert await cache.get(DOCUMENTS, "k") is None
        assert "cache:documents:k" not in fake_redis.data
        assert fake_redis.ttls["cache:documents:gen:k"] == 7200

    async def test_write_under_old_generation_is_a_miss(self, cache):
        _, before = await cache.lookup(DOCUMENTS, "k")
        await cache.invalidate(DOCUMENTS, "k")

        await cache.put(DOCUMENTS, "k", "stale", generation=before)

        assert await cache.get(DOCUMENTS, "k") is None

    async def test_write_after_invalidation_is_served(self, cache):
        await cache.invalidate(DOCUMENTS, "k")
        await cache.put(DOCUMENTS, "k", "fresh")

        assert await cache.get(DOCUMENTS, "k") == "fresh"

    async def test_outage_fails_open(self, cache, fake_redis):
        fake_redis.fail = True

        assert await cache.lookup(DOCUMENTS, "k") == (None, None)
        assert await cache.get(DOCUMENTS, "k") is None
        await cache.put(DOCUMENTS, "k", "v")
        await cache.invalidate(DOCUMENTS, "k")


class TestCachedDecorator:
    async def test_second_call_is_served_from_cache(self, cache):
        service = ItemService(cache)

        first = await service.get("1")
        service.result = Item(name="changed")
        second = await service.get("1")

        assert first == second == Item(name="first")
        assert service.calls == 1

    async def test_absent_results_are_not_cached(self, cache, fake_redis):
        service = ItemService(cache)
        service.result = None

        assert await service.get("1") is None
        assert fake_redis.data == {}

        service.result = Item(name="later")
        assert await service.get("1") == Item(name="later")
        assert service.calls == 2

    @pytest.mark.parametrize("entry", ["{not json", "0|{not json"])
    async def test_unreadable_entry_is_replaced(self, cache, fake_redis, entry):
        fake_redis.data["cache:documents:item:1"] = entry
        service = ItemService(cache)

        assert await service.get("1") == Item(name="first")
        assert service.calls == 1
        assert fake_redis.data["cache:documents:item:1"] == '0|{"name":"first"}'

    async def test_invalidation_during_call_is_not_undone(self, cache):
        service = GatedItemService(cache)

        pending = asyncio.create_task(service.get("1"))
        await service.entered.wait()
        service.result = Item(name="second")
        await cache.invalidate(DOCUMENTS, "item:1")
        service.release.set()

        assert await pending == Item(name="first")
        assert await service.get("1") == Item(name="second")
        assert service.calls == 2

    async def test_without_cache_calls_through(self):
        service = ItemService(None)
        await service.get("1")
        await service.get("1")
        assert service.calls == 2

    async def test_outage_calls_through(self, cache, fake_redis):
        fake_redis.fail = True
        service = ItemService(cache)

        assert await service.get("1") == Item(name="first")
        assert await service.get("1") == Item(name="first")
        assert service.calls == 2
