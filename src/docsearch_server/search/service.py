"""
Search Service

Tenant-scoped, paginated full-text search over the index, with snippets
computed locally from the stored content and result pages cached briefly.
"""

from __future__ import annotations

import logging
from typing import Optional

from .index import DEPENDENCY_NAME, SORT_MODES, SORT_RELEVANCE, SearchIndex
from .snippets import extract_snippet
from ..api.models import SearchResponse, SearchResult
from ..cache.response_cache import SEARCH, ResponseCache, cached, normalize_query, search_key
from ..core.errors import ValidationError
from ..core.resilience import DependencyGuard, GuardPolicy
from ..tenants import TenantContext

logger = logging.getLogger("docsearch.search")


class SearchService:
    def __init__(
        self,
        index: SearchIndex,
        cache: Optional[ResponseCache] = None,
        guard: Optional[DependencyGuard] = None,
        default_page_size: int = 10,
        max_page_size: int = 100,
    ) -> None:
        self.index = index
        self.cache = cache
        self._guard = guard or DependencyGuard(DEPENDENCY_NAME, GuardPolicy())
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size

    async def search(
        self,
        tenant: TenantContext,
        query: Optional[str] = None,
        page: int = 1,
        size: Optional[int] = None,
        sort: str = SORT_RELEVANCE,
    ) -> SearchResponse:
        """
        Run a ranked search within the caller's tenant.

        Parameters
        ----------
        tenant : TenantContext
            Mandatory tenant filter.
        query : Optional[str]
            Free text matched against title or content. Blank returns every
            indexed document of the tenant.
        page : int
            1-based page number.
        size : Optional[int]
            Page size, defaults to the configured default page size.
        sort : str
            "relevance" (default) or "recent".

        Raises
        ------
        ValidationError
            On an out-of-range page/size or unknown sort mode.
        """
        size = self._default_page_size if size is None else size

        if page < 1:
            raise ValidationError("page must be >= 1")
        if size < 1 or size > self._max_page_size:
            raise ValidationError(f"size must be between 1 and {self._max_page_size}")
        if sort not in SORT_MODES:
            raise ValidationError(f"sort must be one of: {', '.join(SORT_MODES)}")

        return await self._search(tenant.tenant_id, normalize_query(query), page, size, sort)

    @cached(SEARCH, search_key, SearchResponse)
    async def _search(self, tenant_id: str, text: str, page: int, size: int, sort: str) -> SearchResponse:
        hits = await self._guard.call(
            self.index.query, tenant_id, text, (page - 1) * size, size, sort
        )

        results = [
            SearchResult(
                id=hit.record.id,
                title=hit.record.title,
                snippet=extract_snippet(hit.record.content, text),
                score=hit.score,
                metadata=hit.record.metadata,
            )
            for hit in hits.hits
        ]
        logger.debug(
            "Search tenant=%s page=%d size=%d sort=%s -> %d/%d hit(s)",
            tenant_id,
            page,
            size,
            sort,
            len(results),
            hits.total,
        )
        return SearchResponse(
            query=text,
            page=page,
            size=len(results),
            total=hits.total,
            results=results,
        )
