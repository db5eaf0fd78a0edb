"""
Service Container

Builds the shared clients and services once per process and tears them down
in reverse order.

Startup is tolerant: an unreachable Redis or Elasticsearch is logged and the
application still starts. Those outages then surface through the health
endpoint and as 503 responses (or as fail-open behaviour for the cache and
rate limiter).
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as redis
from elasticsearch import AsyncElasticsearch
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import ServiceError
from .resilience import GuardPolicy, GuardRegistry
from ..cache.rate_limiter import RateLimiter
from ..cache.response_cache import DOCUMENTS, SEARCH, ResponseCache
from ..config import Settings
from ..db.document_store import DocumentStore
from ..documents.reconciler import IndexReconciler
from ..documents.service import DocumentService
from ..health.probe import HealthProbe
from ..messaging.channel import InMemoryTaskChannel, TaskChannel
from ..messaging.kafka_channel import KafkaTaskChannel
from ..messaging.worker import IndexingWorker
from ..search.index import DEPENDENCY_NAME as INDEX_DEPENDENCY
from ..search.index import SearchIndex
from ..search.service import SearchService

logger = logging.getLogger("docsearch.container")


def build_channel(settings: Settings) -> TaskChannel:
    if settings.channel_backend == "memory":
        return InMemoryTaskChannel(
            max_deliveries=settings.channel_max_deliveries,
            retry_backoff_seconds=settings.channel_retry_backoff_seconds,
        )
    return KafkaTaskChannel(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=settings.kafka_group_id,
        max_deliveries=settings.channel_max_deliveries,
        retry_backoff_seconds=settings.channel_retry_backoff_seconds,
    )


def build_guards(settings: Settings) -> GuardRegistry:
    return GuardRegistry(
        GuardPolicy(
            max_attempts=settings.retry_max_attempts,
            backoff_base_seconds=settings.retry_backoff_base_seconds,
            backoff_max_seconds=settings.retry_backoff_max_seconds,
            failure_threshold=settings.breaker_failure_threshold,
            reset_timeout_seconds=settings.breaker_reset_timeout_seconds,
        )
    )


class ServiceContainer:
    """Owns every long-lived client and service of the application."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.settings = settings
        self._session_factory = session_factory

        self.redis: Optional[redis.Redis] = None
        self.elasticsearch: Optional[AsyncElasticsearch] = None
        self.channel: Optional[TaskChannel] = None

        self.store: Optional[DocumentStore] = None
        self.index: Optional[SearchIndex] = None
        self.cache: Optional[ResponseCache] = None
        self.rate_limiter: Optional[RateLimiter] = None
        self.documents: Optional[DocumentService] = None
        self.search: Optional[SearchService] = None
        self.health: Optional[HealthProbe] = None

        self.worker: Optional[IndexingWorker] = None
        self.reconciler: Optional[IndexReconciler] = None

    async def initialize(self) -> None:
        s = self.settings
        logger.info("Initializing service container")

        # Redis connection (cache + rate-limit counters)
        self.redis = redis.from_url(
            s.redis_url,
            decode_responses=True,
            socket_timeout=s.redis_timeout_seconds,
            socket_connect_timeout=s.redis_timeout_seconds,
        )
        try:
            await self.redis.ping()
        except (RedisError, OSError) as exc:
            logger.warning("Redis not reachable at startup: %s", exc)

        # Elasticsearch client
        self.elasticsearch = AsyncElasticsearch(
            s.elasticsearch_url,
            request_timeout=s.elasticsearch_timeout_seconds,
        )
        self.index = SearchIndex(self.elasticsearch, s.elasticsearch_index, refresh=s.elasticsearch_refresh)
        try:
            await self.index.ensure_index()
        except ServiceError as exc:
            logger.warning("Could not ensure search index '%s': %s", s.elasticsearch_index, exc.detail)

        # Message channel
        self.channel = build_channel(s)
        await self.channel.start()

        guards = build_guards(s)
        self.store = DocumentStore(self._session_factory)
        self.cache = ResponseCache(
            self.redis,
            ttls={
                DOCUMENTS: s.cache_document_ttl_seconds,
                SEARCH: s.cache_search_ttl_seconds,
            },
        )
        self.rate_limiter = RateLimiter(
            self.redis,
            enabled=s.rate_limit_enabled,
            limit=s.rate_limit_requests,
            window_seconds=s.rate_limit_window_seconds,
        )
        self.documents = DocumentService(
            self.store,
            self.index,
            self.channel,
            cache=self.cache,
            guards=guards,
        )
        self.search = SearchService(
            self.index,
            cache=self.cache,
            guard=guards.get(INDEX_DEPENDENCY),
            default_page_size=s.search_default_page_size,
            max_page_size=s.search_max_page_size,
        )
        self.health = HealthProbe(
            self.store,
            self.index,
            self.redis,
            self.channel,
            timeout_seconds=s.health_probe_timeout_seconds,
        )

        logger.info("Service container initialized (channel=%s)", self.channel.name)

    async def start_background(self) -> None:
        """Start the indexing worker and the reconciliation sweep, if enabled."""
        s = self.settings

        if s.worker_enabled:
            self.worker = IndexingWorker(self.channel, self.documents, concurrency=s.worker_concurrency)
            await self.worker.start()

        if s.reconcile_enabled:
            self.reconciler = IndexReconciler(
                self.documents,
                interval_seconds=s.reconcile_interval_seconds,
                stale_after_seconds=s.reconcile_stale_after_seconds,
                batch_size=s.reconcile_batch_size,
            )
            self.reconciler.start()

    async def close(self) -> None:
        logger.info("Closing service container")

        if self.reconciler is not None:
            await self.reconciler.stop()
            self.reconciler = None

        if self.channel is not None:
            await self.channel.close()
            self.channel = None

        if self.elasticsearch is not None:
            await self.elasticsearch.close()
            self.elasticsearch = None

        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
