"""
Index Data Models

This module defines the canonical data model stored in the full-text index
and the raw hit structures returned by index queries.

An IndexRecord is a disposable projection of a Document: it has no identity
beyond the document id and can be deleted and rebuilt at any time.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..db.models import Document


class IndexRecord(BaseModel):
    """
    A single indexed document.

    Field aliases are the index engine's field names.
    """

    id: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1, alias="tenantId")
    title: str
    content: str
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
    )

    @classmethod
    def from_document(cls, document: Document) -> "IndexRecord":
        return cls(
            id=str(document.id),
            tenant_id=document.tenant_id,
            title=document.title,
            content=document.content,
            metadata=document.metadata_,
            created_at=document.created_at.isoformat() if document.created_at else None,
            updated_at=document.updated_at.isoformat() if document.updated_at else None,
        )

    def to_source(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class SearchHit(BaseModel):
    """One ranked hit. `score` is engine-provided and opaque."""

    record: IndexRecord
    score: Optional[float] = None


class SearchHits(BaseModel):
    total: int = Field(..., ge=0)
    hits: List[SearchHit] = Field(default_factory=list)
