"""
Search Routes

Full-text search within one tenant's indexed documents.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from .dependencies import get_search_service, limited_search_tenant
from .models import SearchResponse
from ..search.index import SORT_RELEVANCE
from ..search.service import SearchService
from ..tenants import TenantContext

router = APIRouter(prefix="/api/v1", tags=["search"])


@router.get(
    "/search",
    response_model=SearchResponse,
    summary="Tenant-scoped full-text search",
)
async def search(
    tenant: Annotated[TenantContext, Depends(limited_search_tenant)],
    service: Annotated[SearchService, Depends(get_search_service)],
    q: Annotated[Optional[str], Query()] = None,
    page: Annotated[int, Query()] = 1,
    size: Annotated[Optional[int], Query()] = None,
    sort: Annotated[str, Query()] = SORT_RELEVANCE,
) -> SearchResponse:
    """
    Search the calling tenant's documents.

    Parameters
    ----------
    q : Optional[str]
        Text matched against title or content. Omitted or blank returns
        every indexed document of the tenant.
    page : int
        1-based page number.
    size : Optional[int]
        Results per page.
    sort : str
        "relevance" or "recent".
    """
    return await service.search(tenant, q, page=page, size=size, sort=sort)
