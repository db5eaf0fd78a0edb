"""
Document Lifecycle

Status values and the legal transitions between them.

    INDEXING ──► INDEXED ◄──► FAILED
        │           │           │
        └───────────┴───────────┴──► DELETED (terminal)

Nothing ever returns to INDEXING. INDEXED -> INDEXED and FAILED -> INDEXED
exist because tasks are redelivered: a duplicate index task re-writes an
already indexed document, and a retried task can succeed after a failure.
"""

from __future__ import annotations

import enum
from typing import Dict, FrozenSet


class DocumentStatus(str, enum.Enum):
    INDEXING = "INDEXING"
    INDEXED = "INDEXED"
    FAILED = "FAILED"
    DELETED = "DELETED"


ALLOWED_TRANSITIONS: Dict[DocumentStatus, FrozenSet[DocumentStatus]] = {
    DocumentStatus.INDEXING: frozenset(
        {DocumentStatus.INDEXED, DocumentStatus.FAILED, DocumentStatus.DELETED}
    ),
    DocumentStatus.INDEXED: frozenset(
        {DocumentStatus.INDEXED, DocumentStatus.FAILED, DocumentStatus.DELETED}
    ),
    DocumentStatus.FAILED: frozenset(
        {DocumentStatus.INDEXED, DocumentStatus.FAILED, DocumentStatus.DELETED}
    ),
    DocumentStatus.DELETED: frozenset(),
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def sources_for(target: DocumentStatus) -> FrozenSet[DocumentStatus]:
    """Return every status from which `target` may be entered."""
    return frozenset(
        status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )
