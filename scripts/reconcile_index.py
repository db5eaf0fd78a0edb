import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from docsearch_server.config import settings
from docsearch_server.core.container import build_channel, build_guards
from docsearch_server.db import AsyncSessionLocal, DocumentStore, async_engine
from docsearch_server.documents.service import DocumentService
from docsearch_server.search.index import SearchIndex
from elasticsearch import AsyncElasticsearch


async def main():
    if settings.channel_backend == "memory":
        # Tasks published to an in-process queue would die with this script.
        print("CHANNEL_BACKEND=memory: nothing to republish to, aborting.")
        return

    print("Initializing clients...")
    es = AsyncElasticsearch(settings.elasticsearch_url, request_timeout=settings.elasticsearch_timeout_seconds)
    channel = build_channel(settings)
    await channel.start()

    service = DocumentService(
        DocumentStore(AsyncSessionLocal),
        SearchIndex(es, settings.elasticsearch_index, refresh=settings.elasticsearch_refresh),
        channel,
        guards=build_guards(settings),
    )

    older_than = datetime.now(timezone.utc) - timedelta(seconds=settings.reconcile_stale_after_seconds)
    print(f"Republishing INDEX tasks for documents stuck in INDEXING since before {older_than.isoformat()}...")

    try:
        count = await service.reconcile_stuck(older_than, settings.reconcile_batch_size)
        print(f"Republished {count} task(s).")
    finally:
        await channel.close()
        await es.close()
        await async_engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
