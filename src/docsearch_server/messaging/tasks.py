"""
Indexing task messages and channel topology.

Topology
--------
- queue/topic `document.index`, routing keys `document.index.{tenant}`
- queue/topic `document.delete`, routing keys `document.delete.{tenant}`

Routing keys carry the tenant so consumers can be partitioned per tenant;
ordering is only guaranteed among messages sharing a routing key.
"""

from __future__ import annotations

import enum
import uuid
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

INDEX_QUEUE = "document.index"
DELETE_QUEUE = "document.delete"


class TaskKind(str, enum.Enum):
    INDEX = "INDEX"
    DELETE = "DELETE"


QUEUE_FOR_KIND = {
    TaskKind.INDEX: INDEX_QUEUE,
    TaskKind.DELETE: DELETE_QUEUE,
}


class IndexingTask(BaseModel):
    """
    Identifiers only: consumers always re-fetch current document state, so
    stale or duplicate messages are harmless.
    """

    document_id: uuid.UUID = Field(..., alias="documentId")
    tenant_id: str = Field(..., min_length=1, alias="tenantId")
    kind: TaskKind

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @property
    def queue(self) -> str:
        return QUEUE_FOR_KIND[self.kind]

    @property
    def routing_key(self) -> str:
        return f"{self.queue}.{self.tenant_id}"

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
