import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from docsearch_server.documents.reconciler import IndexReconciler
from docsearch_server.documents.lifecycle import DocumentStatus
from docsearch_server.messaging.tasks import INDEX_QUEUE


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


async def test_run_once_uses_stale_cutoff():
    service = AsyncMock()
    service.reconcile_stuck.return_value = 2
    reconciler = IndexReconciler(
        service, stale_after_seconds=600, batch_size=25, clock=lambda: NOW
    )

    assert await reconciler.run_once() == 2
    service.reconcile_stuck.assert_awaited_once_with(NOW - timedelta(seconds=600), 25)


async def test_stuck_document_is_picked_up(documents, store, channel, document_factory):
    stuck = document_factory(age_seconds=3600)
    await store.insert(stuck)
    reconciler = IndexReconciler(documents, stale_after_seconds=600)

    assert await reconciler.run_once() == 1
    assert channel.pending(INDEX_QUEUE) == 1

    await documents.process_index_task(stuck.id)
    assert store.rows[stuck.id].status is DocumentStatus.INDEXED
    assert await reconciler.run_once() == 0


async def test_loop_survives_failed_sweep():
    service = AsyncMock()
    service.reconcile_stuck.side_effect = [RuntimeError("db down"), 0, 0, 0, 0, 0]
    reconciler = IndexReconciler(service, interval_seconds=0.01)

    reconciler.start()
    for _ in range(100):
        if service.reconcile_stuck.await_count >= 2:
            break
        await asyncio.sleep(0.01)
    await reconciler.stop()

    assert service.reconcile_stuck.await_count >= 2
