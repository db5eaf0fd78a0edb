"""
Task Channel

The contract between the document write path (producer) and the indexing
worker (consumer), plus an in-process implementation backed by
`asyncio.Queue` for single-process deployments and tests.

Delivery semantics (all implementations)
----------------------------------------
- at-least-once: a handler may see the same payload more than once
- a handler signals failure by raising; the channel redelivers up to
  `max_deliveries` times, then dead-letters the message
- ordering is only guaranteed among messages sharing a routing key
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Protocol, Tuple

logger = logging.getLogger("docsearch.messaging")

Handler = Callable[[Dict[str, Any]], Awaitable[None]]


class TaskChannel(Protocol):
    name: str

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def publish(self, topic: str, routing_key: str, payload: Dict[str, Any]) -> None: ...

    async def subscribe(self, queue_name: str, handler: Handler, concurrency: int = 1) -> None: ...

    async def ping(self) -> bool: ...


@dataclass
class Delivery:
    """One message in flight, with its delivery attempt counter."""
    routing_key: str
    payload: Dict[str, Any]
    attempt: int = 1


class InMemoryTaskChannel:
    """
    In-process channel: one asyncio.Queue per queue name.

    Topic and queue name are the same thing here. Messages do not survive a
    process restart; documents left in INDEXING by a crash are picked up by
    the reconciliation sweep.
    """

    name = "memory"

    def __init__(self, max_deliveries: int = 5, retry_backoff_seconds: float = 0.0) -> None:
        self._queues: Dict[str, asyncio.Queue[Delivery]] = {}
        self._consumers: List[asyncio.Task] = []
        self._max_deliveries = max(1, max_deliveries)
        self._retry_backoff = retry_backoff_seconds
        self.dead_letters: List[Tuple[str, Delivery]] = []

    def _queue(self, name: str) -> asyncio.Queue[Delivery]:
        queue = self._queues.get(name)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[name] = queue
        return queue

    async def start(self) -> None:
        logger.info("In-memory task channel started")

    async def publish(self, topic: str, routing_key: str, payload: Dict[str, Any]) -> None:
        """Add a message to the queue. Returns once it is accepted."""
        queue = self._queue(topic)
        await queue.put(Delivery(routing_key=routing_key, payload=dict(payload)))
        logger.debug("Message enqueued on %s (%s), queue size %d", topic, routing_key, queue.qsize())

    async def subscribe(self, queue_name: str, handler: Handler, concurrency: int = 1) -> None:
        for i in range(max(1, concurrency)):
            task = asyncio.create_task(
                self._consume(queue_name, handler),
                name=f"consumer:{queue_name}:{i}",
            )
            self._consumers.append(task)
        logger.info("Subscribed %d consumer(s) to %s", max(1, concurrency), queue_name)

    async def _consume(self, queue_name: str, handler: Handler) -> None:
        queue = self._queue(queue_name)

        while True:
            delivery = await queue.get()
            try:
                await handler(delivery.payload)
            except asyncio.CancelledError:
                # Hand the message back so it is not lost with this consumer.
                queue.put_nowait(delivery)
                raise
            except Exception:
                logger.exception(
                    "Handler failed on %s (%s), attempt %d",
                    queue_name,
                    delivery.routing_key,
                    delivery.attempt,
                )
                await self._redeliver(queue_name, queue, delivery)
            finally:
                queue.task_done()

    async def _redeliver(
        self,
        queue_name: str,
        queue: asyncio.Queue[Delivery],
        delivery: Delivery,
    ) -> None:
        if delivery.attempt >= self._max_deliveries:
            self.dead_letters.append((queue_name, delivery))
            logger.error(
                "Dead-lettered message on %s (%s) after %d attempt(s): %s",
                queue_name,
                delivery.routing_key,
                delivery.attempt,
                delivery.payload,
            )
            return

        if self._retry_backoff > 0:
            await asyncio.sleep(self._retry_backoff)
        await queue.put(
            Delivery(
                routing_key=delivery.routing_key,
                payload=delivery.payload,
                attempt=delivery.attempt + 1,
            )
        )

    async def join(self) -> None:
        """Wait until every published message has been handled or dead-lettered."""
        for queue in list(self._queues.values()):
            await queue.join()

    def pending(self, queue_name: str) -> int:
        return self._queue(queue_name).qsize()

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        for task in self._consumers:
            task.cancel()
        await asyncio.gather(*self._consumers, return_exceptions=True)
        self._consumers.clear()
        logger.info("In-memory task channel closed")
