"""
API Models for the document search service

This module defines the Pydantic models used for request/response validation
across the document, search, and health endpoints.

Design Goals
------------
- camelCase on the wire, snake_case in Python
- Safe defaults (no shared mutable state)
- Response models double as cache payloads, so they round-trip through JSON
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..db.models import Document
from ..documents.lifecycle import DocumentStatus


_WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------
# Document Models
# ---------------------------------------------------------------------

class DocumentRequest(BaseModel):
    """
    Document creation payload.

    Blank title/content are rejected by the service, not here, so every
    missing-field condition produces the same validation error.
    """
    title: Optional[str] = None
    content: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="ignore")


class DocumentResponse(BaseModel):
    id: uuid.UUID
    tenant_id: str
    title: str
    content: str
    metadata: Optional[Dict[str, Any]] = None
    status: DocumentStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = _WIRE_CONFIG

    @classmethod
    def from_document(cls, document: Document) -> "DocumentResponse":
        return cls(
            id=document.id,
            tenant_id=document.tenant_id,
            title=document.title,
            content=document.content,
            metadata=document.metadata_,
            status=document.status,
            created_at=document.created_at,
            updated_at=document.updated_at,
        )


# ---------------------------------------------------------------------
# Search Models
# ---------------------------------------------------------------------

class SearchResult(BaseModel):
    """
    A single ranked hit.

    `score` is engine-provided: higher is more relevant, and scores are not
    comparable across queries.
    """
    id: str
    title: str
    snippet: str
    score: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None

    model_config = _WIRE_CONFIG


class SearchResponse(BaseModel):
    query: str
    page: int = Field(..., ge=1)
    size: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    results: List[SearchResult] = Field(default_factory=list)

    model_config = _WIRE_CONFIG


# ---------------------------------------------------------------------
# Health Models
# ---------------------------------------------------------------------

ProbeStatus = Literal["UP", "DOWN"]


class HealthResponse(BaseModel):
    status: ProbeStatus
    checks: Dict[str, ProbeStatus] = Field(default_factory=dict)
