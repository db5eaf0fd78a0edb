"""
FastAPI dependencies resolving services from the application container.

Tests replace these through `app.dependency_overrides`.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from ..cache.rate_limiter import RateLimiter
from ..core.container import ServiceContainer
from ..core.errors import DependencyUnavailableError, RateLimitedError
from ..documents.service import DocumentService
from ..health.probe import HealthProbe
from ..search.service import SearchService
from ..tenants import TenantContext, require_search_tenant, require_tenant


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise DependencyUnavailableError("application", "Service container is not initialized")
    return container


def get_document_service(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> DocumentService:
    return container.documents


def get_search_service(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> SearchService:
    return container.search


def get_health_probe(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> HealthProbe:
    return container.health


def get_rate_limiter(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> RateLimiter:
    return container.rate_limiter


# ---------------------------------------------------------------------
# Rate-limited tenant resolution
# ---------------------------------------------------------------------

async def _enforce(limiter: RateLimiter, tenant: TenantContext) -> TenantContext:
    decision = await limiter.check(tenant.tenant_id)
    if not decision.allowed:
        raise RateLimitedError(
            f"Rate limit of {decision.limit} requests exceeded",
            retry_after=decision.retry_after,
        )
    return tenant


async def limited_tenant(
    tenant: Annotated[TenantContext, Depends(require_tenant)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> TenantContext:
    """Tenant from the header, admitted by the per-tenant rate limiter."""
    return await _enforce(limiter, tenant)


async def limited_search_tenant(
    tenant: Annotated[TenantContext, Depends(require_search_tenant)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> TenantContext:
    """Tenant from the query parameter or header, admitted by the rate limiter."""
    return await _enforce(limiter, tenant)
