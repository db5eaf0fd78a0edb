"""
Document Service

Owns every status transition of a Document and orchestrates the record
store, the search index and the task channel.

Failure policy
--------------
- create: the record store must succeed; publishing the INDEX task is best
  effort (logged, never raised). A document whose task was lost stays in
  INDEXING until the reconciliation sweep republishes it.
- delete: the record store must succeed; removing the index record and
  publishing the DELETE task are both best effort.
- process_index_task: any failure flips the document to FAILED and is
  re-raised so the channel redelivers the task.
- process_delete_task: failures propagate for redelivery; an already absent
  record counts as success.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from ..api.models import DocumentResponse
from ..cache.response_cache import DOCUMENTS, ResponseCache, cached, document_key
from ..core.errors import NotFoundError, ServiceError, ValidationError
from ..core.resilience import GuardPolicy, GuardRegistry
from ..db.document_store import DEPENDENCY_NAME as STORE_DEPENDENCY
from ..db.document_store import DocumentStore
from ..db.models import Document
from ..messaging.channel import TaskChannel
from ..messaging.tasks import IndexingTask, TaskKind
from ..search.index import DEPENDENCY_NAME as INDEX_DEPENDENCY
from ..search.index import SearchIndex
from ..search.models import IndexRecord
from ..tenants import TenantContext
from .lifecycle import DocumentStatus, sources_for

logger = logging.getLogger("docsearch.documents")


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required")
    return value


class DocumentService:
    def __init__(
        self,
        store: DocumentStore,
        index: SearchIndex,
        channel: TaskChannel,
        cache: Optional[ResponseCache] = None,
        guards: Optional[GuardRegistry] = None,
    ) -> None:
        """
        Parameters
        ----------
        store : DocumentStore
            System of record; the only authority for status and existence.
        index : SearchIndex
            Eventually consistent search projection.
        channel : TaskChannel
            Carries INDEX and DELETE tasks to the indexing worker.
        cache : Optional[ResponseCache]
            Document lookup cache. None disables caching.
        guards : Optional[GuardRegistry]
            Shared retry/circuit-breaker guards per dependency.
        """
        self.store = store
        self.index = index
        self.channel = channel
        self.cache = cache

        guards = guards or GuardRegistry(GuardPolicy())
        self._store_guard = guards.get(STORE_DEPENDENCY)
        self._index_guard = guards.get(INDEX_DEPENDENCY)

    # -----------------------------------------------------------------
    # Request path
    # -----------------------------------------------------------------

    async def create(
        self,
        tenant: TenantContext,
        title: Optional[str],
        content: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DocumentResponse:
        """
        Persist a new document in INDEXING and enqueue its INDEX task.

        Returns as soon as the document is stored; indexing happens out of
        band.
        """
        title = _require_text(title, "title")
        content = _require_text(content, "content")

        document = Document(
            id=uuid.uuid4(),
            tenant_id=tenant.tenant_id,
            title=title,
            content=content,
            metadata_=metadata,
            status=DocumentStatus.INDEXING,
        )
        document = await self._store_guard.call(self.store.insert, document)
        logger.info("Created document %s (tenant=%s)", document.id, tenant.tenant_id)

        await self._publish(
            IndexingTask(document_id=document.id, tenant_id=tenant.tenant_id, kind=TaskKind.INDEX)
        )
        return DocumentResponse.from_document(document)

    @cached(
        DOCUMENTS,
        lambda document_id, tenant: document_key(document_id, tenant.tenant_id),
        DocumentResponse,
    )
    async def get(self, document_id: uuid.UUID, tenant: TenantContext) -> DocumentResponse:
        """
        Look up a document of the caller's tenant.

        Raises
        ------
        NotFoundError
            When no document matches both the id and the tenant. A document
            of another tenant is reported exactly like a missing one.
        """
        document = await self._store_guard.call(
            self.store.find_by_id_and_tenant, document_id, tenant.tenant_id
        )
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return DocumentResponse.from_document(document)

    async def delete(self, document_id: uuid.UUID, tenant: TenantContext) -> None:
        removed = await self._store_guard.call(
            self.store.delete_by_id_and_tenant, document_id, tenant.tenant_id
        )
        if not removed:
            raise NotFoundError(f"Document {document_id} not found")

        await self._invalidate(document_id, tenant.tenant_id)
        logger.info("Deleted document %s (tenant=%s)", document_id, tenant.tenant_id)

        try:
            await self._index_guard.call(self.index.delete_by_id, str(document_id))
        except ServiceError as exc:
            # The DELETE task below is the second removal path.
            logger.warning("Synchronous index removal failed for document %s: %s", document_id, exc.detail)

        await self._publish(
            IndexingTask(document_id=document_id, tenant_id=tenant.tenant_id, kind=TaskKind.DELETE)
        )

    # -----------------------------------------------------------------
    # Worker path
    # -----------------------------------------------------------------

    async def process_index_task(self, document_id: uuid.UUID) -> None:
        """
        Build and write the IndexRecord for `document_id`, then flip the
        document to INDEXED.

        Safe to call repeatedly: the record is keyed by document id and
        INDEXED -> INDEXED is a legal transition.
        """
        document = await self._store_guard.call(self.store.find_by_id, document_id)
        if document is None or document.status is DocumentStatus.DELETED:
            logger.info("Document %s no longer exists; skipping index task", document_id)
            return

        try:
            record = IndexRecord.from_document(document)
            await self._index_guard.call(self.index.upsert, record)
        except Exception as exc:
            logger.error(
                "Indexing failed for document %s (tenant=%s): %s",
                document_id,
                document.tenant_id,
                getattr(exc, "detail", exc),
            )
            await self._mark_failed(document)
            raise

        updated = await self._store_guard.call(
            self.store.update_status,
            document.id,
            DocumentStatus.INDEXED,
            sources_for(DocumentStatus.INDEXED),
        )
        if not updated:
            logger.info("Document %s was deleted while indexing; removing its index record", document_id)
            await self._index_guard.call(self.index.delete_by_id, str(document_id))
            return

        await self._invalidate(document.id, document.tenant_id)
        logger.info("Indexed document %s (tenant=%s)", document_id, document.tenant_id)

    async def process_delete_task(self, document_id: uuid.UUID) -> None:
        removed = await self._index_guard.call(self.index.delete_by_id, str(document_id))
        if removed:
            logger.info("Removed index record for document %s", document_id)
        else:
            logger.debug("No index record left for document %s", document_id)

    async def reconcile_stuck(self, older_than: datetime, limit: int = 100) -> int:
        """
        Republish INDEX tasks for documents left in INDEXING since before
        `older_than`.

        Returns
        -------
        int
            Number of tasks successfully republished.
        """
        stuck = await self._store_guard.call(
            self.store.find_stuck, DocumentStatus.INDEXING, older_than, limit
        )
        republished = 0
        for document in stuck:
            task = IndexingTask(document_id=document.id, tenant_id=document.tenant_id, kind=TaskKind.INDEX)
            if await self._publish(task):
                republished += 1

        if stuck:
            logger.info("Reconciliation republished %d of %d stuck document(s)", republished, len(stuck))
        return republished

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------

    async def _publish(self, task: IndexingTask) -> bool:
        try:
            await self.channel.publish(task.queue, task.routing_key, task.to_payload())
        except Exception:
            logger.error(
                "Failed to enqueue %s task for document %s (tenant=%s)",
                task.kind.value,
                task.document_id,
                task.tenant_id,
                exc_info=True,
            )
            return False
        return True

    async def _mark_failed(self, document: Document) -> None:
        try:
            updated = await self._store_guard.call(
                self.store.update_status,
                document.id,
                DocumentStatus.FAILED,
                sources_for(DocumentStatus.FAILED),
            )
        except ServiceError as exc:
            logger.warning("Could not mark document %s FAILED: %s", document.id, exc.detail)
            return
        if updated:
            await self._invalidate(document.id, document.tenant_id)

    async def _invalidate(self, document_id: uuid.UUID, tenant_id: str) -> None:
        if self.cache is not None:
            await self.cache.invalidate(DOCUMENTS, document_key(document_id, tenant_id))
