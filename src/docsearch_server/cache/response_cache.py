"""
Response Cache

Redis-backed TTL cache for document lookups and search result pages.

Design choices
--------------
- Two namespaces with independent TTLs: `documents` (long, strict
  invalidation on delete and status change) and `search` (short, entries may
  outlive a deleted document until they expire).
- Values are JSON strings produced by pydantic models, tagged with the
  generation of their key so a late write-back cannot resurrect an
  invalidated entry.
- Absent results are never cached.
- Every Redis failure fails open: reads become misses, writes and
  invalidations are logged and skipped.
- Read-through is applied explicitly with the `cached` decorator and a key
  builder function, rather than hidden in the service logic.
"""

from __future__ import annotations

import functools
import hashlib
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError
from redis.asyncio import Redis

logger = logging.getLogger("docsearch.cache")

DOCUMENTS = "documents"
SEARCH = "search"

INITIAL_GENERATION = "0"
GENERATION_SEPARATOR = "|"

M = TypeVar("M", bound=BaseModel)


# ---------------------------------------------------------------------
# Key Builders
# ---------------------------------------------------------------------

def normalize_query(query: Optional[str]) -> str:
    """
    Strip surrounding whitespace; case and inner whitespace are preserved.

    Inner whitespace is significant: snippets match the query text
    literally, so "a  b" and "a b" are different searches.
    """
    return (query or "").strip()


def document_key(document_id: uuid.UUID | str, tenant_id: str) -> str:
    return f"{document_id}:{tenant_id}"


def search_key(tenant_id: str, query: Optional[str], page: int, size: int, sort: str) -> str:
    """
    Key for one search result page.

    Tenant stays readable as a prefix; the remaining parameters are hashed so
    arbitrary query text never reaches the key verbatim.
    """
    fingerprint = json.dumps(
        [normalize_query(query), page, size, sort],
        ensure_ascii=False,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()
    return f"{tenant_id}:{digest}"


# ---------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------

class ResponseCache:
    """
    Entries are stored as ``{generation}|{json}`` under ``cache:{ns}:{key}``.

    Every key has a generation token at ``cache:{ns}:gen:{key}`` ("0" when
    absent). `invalidate` replaces the token, so an entry written by a read
    that started before the invalidation carries the old token and is
    treated as a miss.
    """

    def __init__(
        self,
        redis: Optional[Redis],
        ttls: Dict[str, int],
        prefix: str = "cache",
    ) -> None:
        """
        Parameters
        ----------
        redis : Optional[Redis]
            Shared async client. None disables caching entirely.
        ttls : Dict[str, int]
            TTL in seconds per namespace.
        prefix : str
            Key prefix separating cache entries from rate-limit counters.
        """
        self._redis = redis
        self._ttls = dict(ttls)
        self._prefix = prefix

    def _key(self, namespace: str, key: str) -> str:
        return f"{self._prefix}:{namespace}:{key}"

    def _generation_key(self, namespace: str, key: str) -> str:
        return f"{self._prefix}:{namespace}:gen:{key}"

    def _generation_ttl(self, namespace: str) -> Optional[int]:
        # Must outlive any entry written under the token it replaces.
        ttl = self._ttls.get(namespace)
        return ttl * 2 if ttl else None

    async def lookup(self, namespace: str, key: str) -> Tuple[Optional[str], Optional[str]]:
        """
        Return ``(value, generation)``.

        `value` is None on a miss or when the entry predates the current
        generation. `generation` is None when Redis is unavailable, in which
        case nothing should be written back.
        """
        if self._redis is None:
            return None, None
        try:
            entry, generation = await self._redis.mget(
                self._key(namespace, key), self._generation_key(namespace, key)
            )
        except Exception:
            logger.warning("Cache read failed for %s:%s", namespace, key, exc_info=True)
            return None, None

        generation = generation or INITIAL_GENERATION
        if entry is None:
            return None, generation
        written_under, sep, value = entry.partition(GENERATION_SEPARATOR)
        if not sep or written_under != generation:
            return None, generation
        return value, generation

    async def get(self, namespace: str, key: str) -> Optional[str]:
        value, _ = await self.lookup(namespace, key)
        return value

    async def put(
        self,
        namespace: str,
        key: str,
        value: Optional[str],
        ttl: Optional[int] = None,
        generation: Optional[str] = None,
    ) -> None:
        """
        Store `value`. Pass the `generation` observed before computing the
        value; omitting it writes under the current generation.
        """
        if self._redis is None or value is None:
            return
        if generation is None:
            _, generation = await self.lookup(namespace, key)
            if generation is None:
                return
        ttl = ttl if ttl is not None else self._ttls.get(namespace)
        try:
            await self._redis.set(
                self._key(namespace, key),
                f"{generation}{GENERATION_SEPARATOR}{value}",
                ex=ttl,
            )
        except Exception:
            logger.warning("Cache write failed for %s:%s", namespace, key, exc_info=True)

    async def invalidate(self, namespace: str, key: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set(
                self._generation_key(namespace, key),
                uuid.uuid4().hex,
                ex=self._generation_ttl(namespace),
            )
            await self._redis.delete(self._key(namespace, key))
        except Exception:
            logger.error("Cache invalidation failed for %s:%s", namespace, key, exc_info=True)


# ---------------------------------------------------------------------
# Read-through decorator
# ---------------------------------------------------------------------

def cached(
    namespace: str,
    key_builder: Callable[..., str],
    model: Type[M],
) -> Callable[[Callable[..., Awaitable[Optional[M]]]], Callable[..., Awaitable[Optional[M]]]]:
    """
    Wrap an async service method with read-through caching.

    The decorated method's owner must expose a `cache` attribute
    (`ResponseCache` or None). `key_builder` receives the method's arguments
    (without `self`) and returns the key within `namespace`.

    The result is written back under the generation seen before the method
    ran, so an invalidation that lands while the method is running is never
    undone by the write-back.

    Example:
        @cached(DOCUMENTS, lambda document_id, tenant: document_key(document_id, tenant.tenant_id), DocumentResponse)
        async def get(self, document_id, tenant): ...
    """

    def decorator(func: Callable[..., Awaitable[Optional[M]]]) -> Callable[..., Awaitable[Optional[M]]]:
        @functools.wraps(func)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> Optional[M]:
            cache: Optional[ResponseCache] = getattr(self, "cache", None)
            if cache is None:
                return await func(self, *args, **kwargs)

            key = key_builder(*args, **kwargs)
            hit, generation = await cache.lookup(namespace, key)
            if hit is not None:
                try:
                    return model.model_validate_json(hit)
                except ModelValidationError:
                    logger.warning("Discarding unreadable cache entry %s:%s", namespace, key)

            result = await func(self, *args, **kwargs)
            if result is not None and generation is not None:
                await cache.put(namespace, key, result.model_dump_json(), generation=generation)
            return result

        return wrapper

    return decorator
