"""
Periodic sweep for documents stuck in INDEXING.

A document stays in INDEXING when its INDEX task was never published (the
channel was down at create time) or was lost with a crashed consumer. The
sweep republishes tasks for such documents; duplicates are harmless because
indexing is idempotent.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .service import DocumentService

logger = logging.getLogger("docsearch.reconciler")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IndexReconciler:
    def __init__(
        self,
        service: DocumentService,
        interval_seconds: float = 300.0,
        stale_after_seconds: float = 600.0,
        batch_size: int = 100,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._service = service
        self._interval = interval_seconds
        self._stale_after = timedelta(seconds=stale_after_seconds)
        self._batch_size = batch_size
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> int:
        """Run a single sweep and return the number of republished tasks."""
        older_than = self._clock() - self._stale_after
        return await self._service.reconcile_stuck(older_than, self._batch_size)

    async def _run(self) -> None:
        logger.info(
            "Index reconciler started (interval=%.0fs, stale after %.0fs)",
            self._interval,
            self._stale_after.total_seconds(),
        )
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Reconciliation sweep failed")

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="index-reconciler")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Index reconciler stopped")
