"""
Shared fixtures: in-memory stand-ins for the record store, the search index
and Redis, plus a fully wired DocumentService / SearchService.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from docsearch_server.cache.response_cache import DOCUMENTS, SEARCH, ResponseCache
from docsearch_server.core.errors import DependencyUnavailableError
from docsearch_server.core.resilience import GuardPolicy, GuardRegistry
from docsearch_server.db.models import Document
from docsearch_server.documents.lifecycle import DocumentStatus
from docsearch_server.documents.service import DocumentService
from docsearch_server.messaging.channel import InMemoryTaskChannel
from docsearch_server.search.index import SORT_RECENT
from docsearch_server.search.models import IndexRecord, SearchHit, SearchHits
from docsearch_server.search.service import SearchService


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeDocumentStore:
    """Dict-backed DocumentStore with the same conditional-update rules."""

    def __init__(self) -> None:
        self.rows: Dict[uuid.UUID, Document] = {}
        self.unavailable = False
        self.lookups = 0

    def _check(self) -> None:
        if self.unavailable:
            raise DependencyUnavailableError("postgresql", "connection refused")

    async def insert(self, document: Document) -> Document:
        self._check()
        now = _utcnow()
        document.created_at = document.created_at or now
        document.updated_at = document.updated_at or now
        if document.status is None:
            document.status = DocumentStatus.INDEXING
        self.rows[document.id] = document
        return document

    async def find_by_id_and_tenant(self, document_id, tenant_id) -> Optional[Document]:
        self._check()
        self.lookups += 1
        document = self.rows.get(document_id)
        if document is None or document.tenant_id != tenant_id:
            return None
        return document

    async def find_by_id(self, document_id) -> Optional[Document]:
        self._check()
        return self.rows.get(document_id)

    async def update_status(self, document_id, status, allowed_from) -> bool:
        self._check()
        document = self.rows.get(document_id)
        if document is None or document.status not in set(allowed_from):
            return False
        document.status = status
        document.updated_at = _utcnow()
        return True

    async def delete_by_id_and_tenant(self, document_id, tenant_id) -> bool:
        self._check()
        document = self.rows.get(document_id)
        if document is None or document.tenant_id != tenant_id:
            return False
        document.status = DocumentStatus.DELETED
        del self.rows[document_id]
        return True

    async def find_stuck(self, status, older_than, limit=100) -> List[Document]:
        self._check()
        stuck = [
            d for d in self.rows.values()
            if d.status == status and d.updated_at < older_than
        ]
        stuck.sort(key=lambda d: d.updated_at)
        return stuck[:limit]

    async def ping(self) -> bool:
        self._check()
        return True


class FakeSearchIndex:
    """
    Dict-backed SearchIndex. Matching is a case-insensitive token match on
    title or content; the score is the number of matching tokens.
    """

    def __init__(self) -> None:
        self.records: Dict[str, IndexRecord] = {}
        self.upsert_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.queries = 0

    async def ensure_index(self) -> None:
        return None

    async def upsert(self, record: IndexRecord) -> None:
        if self.upsert_error is not None:
            raise self.upsert_error
        self.records[record.id] = record

    async def delete_by_id(self, document_id: str) -> bool:
        if self.delete_error is not None:
            raise self.delete_error
        return self.records.pop(document_id, None) is not None

    async def query(self, tenant_id, text, offset, size, sort="relevance") -> SearchHits:
        self.queries += 1
        tokens = text.lower().split()
        hits = []
        for record in self.records.values():
            if record.tenant_id != tenant_id:
                continue
            haystack = f"{record.title} {record.content}".lower()
            score = float(sum(1 for t in tokens if t in haystack)) if tokens else 1.0
            if score > 0:
                hits.append(SearchHit(record=record, score=score))

        if sort == SORT_RECENT:
            hits.sort(key=lambda h: h.record.created_at or "", reverse=True)
        else:
            hits.sort(key=lambda h: h.score, reverse=True)
        return SearchHits(total=len(hits), hits=hits[offset:offset + size])

    async def ping(self) -> bool:
        return True


class FakeRedis:
    """The subset of redis.asyncio.Redis used by the cache and rate limiter."""

    def __init__(self) -> None:
        self.data: Dict[str, Any] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def incr(self, key: str) -> int:
        self._check()
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self._check()
        self.ttls[key] = seconds
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.data.get(key)

    async def mget(self, *keys: str) -> List[Optional[str]]:
        self._check()
        return [self.data.get(key) for key in keys]

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        self._check()
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def ping(self) -> bool:
        self._check()
        return True


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def index() -> FakeSearchIndex:
    return FakeSearchIndex()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis) -> ResponseCache:
    return ResponseCache(fake_redis, ttls={DOCUMENTS: 3600, SEARCH: 300})


@pytest.fixture
def guards() -> GuardRegistry:
    return GuardRegistry(
        GuardPolicy(
            max_attempts=2,
            backoff_base_seconds=0.0,
            backoff_max_seconds=0.0,
            failure_threshold=100,
            reset_timeout_seconds=1.0,
        )
    )


@pytest.fixture
async def channel():
    channel = InMemoryTaskChannel(max_deliveries=3)
    await channel.start()
    yield channel
    await channel.close()


@pytest.fixture
def documents(store, index, channel, cache, guards) -> DocumentService:
    return DocumentService(store, index, channel, cache=cache, guards=guards)


@pytest.fixture
def search_service(index, cache, guards) -> SearchService:
    return SearchService(
        index,
        cache=cache,
        guard=guards.get("elasticsearch"),
        default_page_size=10,
        max_page_size=100,
    )


def make_document(
    tenant_id: str = "t1",
    title: str = "Title",
    content: str = "Content",
    status: DocumentStatus = DocumentStatus.INDEXING,
    age_seconds: float = 0.0,
) -> Document:
    when = _utcnow() - timedelta(seconds=age_seconds)
    return Document(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        title=title,
        content=content,
        metadata_=None,
        status=status,
        created_at=when,
        updated_at=when,
    )


@pytest.fixture
def document_factory():
    return make_document
