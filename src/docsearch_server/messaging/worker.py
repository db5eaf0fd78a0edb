"""
Background consumer for indexing tasks.

Registers one handler per named queue on the task channel. Handlers parse
the message, hand it to the DocumentService and let any failure propagate,
so the channel owns redelivery and dead-lettering.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import ValidationError as PayloadValidationError

from .channel import TaskChannel
from .tasks import DELETE_QUEUE, INDEX_QUEUE, IndexingTask, TaskKind

if TYPE_CHECKING:
    from ..documents.service import DocumentService

logger = logging.getLogger("docsearch.worker")


class IndexingWorker:
    def __init__(
        self,
        channel: TaskChannel,
        service: "DocumentService",
        concurrency: int = 1,
    ) -> None:
        self._channel = channel
        self._service = service
        self._concurrency = max(1, concurrency)

    async def start(self) -> None:
        await self._channel.subscribe(INDEX_QUEUE, self.handle_index_message, self._concurrency)
        await self._channel.subscribe(DELETE_QUEUE, self.handle_delete_message, self._concurrency)
        logger.info(
            "Indexing worker started on %s (concurrency=%d)",
            self._channel.name,
            self._concurrency,
        )

    @staticmethod
    def _parse(payload: Dict[str, Any], expected: TaskKind) -> Optional[IndexingTask]:
        try:
            task = IndexingTask.model_validate(payload)
        except PayloadValidationError as exc:
            # Redelivering a malformed message can never succeed.
            logger.error("Dropping malformed %s task %r: %s", expected.value, payload, exc)
            return None
        if task.kind is not expected:
            logger.error("Dropping %s task received on the %s queue", task.kind.value, expected.value)
            return None
        return task

    async def handle_index_message(self, payload: Dict[str, Any]) -> None:
        task = self._parse(payload, TaskKind.INDEX)
        if task is None:
            return
        logger.info("Received INDEX task for document %s (tenant=%s)", task.document_id, task.tenant_id)
        await self._service.process_index_task(task.document_id)

    async def handle_delete_message(self, payload: Dict[str, Any]) -> None:
        task = self._parse(payload, TaskKind.DELETE)
        if task is None:
            return
        logger.info("Received DELETE task for document %s (tenant=%s)", task.document_id, task.tenant_id)
        await self._service.process_delete_task(task.document_id)
