"""
Multi-Tenant Support

This module provides tenant isolation for serving many document tenants from
a single deployment.

Architecture
------------
- Each tenant is identified by a `tenant_id` (e.g., "acme-prod")
- The id arrives on every request via the `X-Tenant-Id` header, or, for
  search, the `tenant` query parameter
- A validated, immutable `TenantContext` is resolved once per request and
  passed explicitly to every service call; there is no process-wide tenant
  state that could leak into an unrelated request

Security
--------
- tenant_id is validated so it can be embedded safely in cache and
  rate-limit keys
- Only alphanumeric characters, dots, hyphens, and underscores allowed
- Maximum 64 characters
"""

from __future__ import annotations

import re
from typing import Annotated, Optional

from fastapi import Header, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .core.errors import ValidationError


# ---------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------

TENANT_HEADER = "X-Tenant-Id"
TENANT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]{1,64}$")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class InvalidTenantError(ValueError):
    """Raised when a tenant_id is missing or malformed."""


def check_tenant_id(value: Optional[str]) -> str:
    """
    Validate and return a stripped tenant id.

    Raises
    ------
    InvalidTenantError
        If the id is missing, blank, or malformed.
    """
    if not value or not isinstance(value, str) or not value.strip():
        raise InvalidTenantError("Tenant ID is required")

    value = value.strip()

    if not TENANT_ID_PATTERN.match(value):
        raise InvalidTenantError(
            f"Invalid tenant_id '{value}': must be 1-64 alphanumeric chars, dots, hyphens, or underscores"
        )

    return value


# ---------------------------------------------------------------------
# Tenant Context Model
# ---------------------------------------------------------------------

class TenantContext(BaseModel):
    """
    The active tenant for one in-flight request.
    """

    tenant_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Identifier of the tenant that owns the request.",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("tenant_id", mode="before")
    @classmethod
    def validate_tenant_id(cls, v: str) -> str:
        return check_tenant_id(v)


def resolve_tenant(raw: Optional[str]) -> TenantContext:
    """
    Build a TenantContext from a raw identifier.

    Raises
    ------
    ValidationError
        If the identifier is missing, blank, or malformed. The detail is the
        plain validation message, safe to return to the client.
    """
    try:
        tenant_id = check_tenant_id(raw)
    except InvalidTenantError as exc:
        raise ValidationError(str(exc)) from exc
    return TenantContext(tenant_id=tenant_id)


# ---------------------------------------------------------------------
# FastAPI Dependencies
# ---------------------------------------------------------------------

def require_tenant(
    x_tenant_id: Annotated[Optional[str], Header(alias=TENANT_HEADER)] = None,
) -> TenantContext:
    """Resolve the tenant for document endpoints from the tenant header."""
    return resolve_tenant(x_tenant_id)


def require_search_tenant(
    tenant: Annotated[Optional[str], Query()] = None,
    x_tenant_id: Annotated[Optional[str], Header(alias=TENANT_HEADER)] = None,
) -> TenantContext:
    """Resolve the tenant for search: query parameter first, then header."""
    return resolve_tenant(tenant if tenant is not None else x_tenant_id)
