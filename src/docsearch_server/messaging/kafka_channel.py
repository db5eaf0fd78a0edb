"""Kafka-backed task channel."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Dict, List, Optional

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer, TopicPartition
from aiokafka.errors import KafkaError

from .channel import Handler
from ..core.errors import DependencyUnavailableError

logger = logging.getLogger("docsearch.messaging.kafka")

DEPENDENCY_NAME = "kafka"


class KafkaTaskChannel:
    """
    Topic per queue, routing key as the message key.

    Kafka keeps per-key ordering within a partition, which gives the
    per-routing-key ordering the channel contract promises. Offsets are
    committed only after the handler returns (or the message is
    dead-lettered), so a crash mid-handler leads to redelivery.
    """

    name = "kafka"

    def __init__(
        self,
        bootstrap_servers: str,
        group_id: str,
        max_deliveries: int = 5,
        retry_backoff_seconds: float = 1.0,
        client_id: str = "docsearch-server",
    ) -> None:
        self._bootstrap_servers = bootstrap_servers
        self._group_id = group_id
        self._max_deliveries = max(1, max_deliveries)
        self._retry_backoff = retry_backoff_seconds
        self._client_id = client_id

        self._producer: Optional[AIOKafkaProducer] = None
        self._consumers: List[AIOKafkaConsumer] = []
        self._tasks: List[asyncio.Task] = []
        self._lock = asyncio.Lock()

    async def _ensure_producer(self) -> AIOKafkaProducer:
        if self._producer is not None:
            return self._producer

        async with self._lock:
            if self._producer is not None:
                return self._producer
            producer = AIOKafkaProducer(
                bootstrap_servers=self._bootstrap_servers,
                client_id=self._client_id,
                acks="all",
                enable_idempotence=True,
            )
            try:
                await producer.start()
            except KafkaError as exc:
                with contextlib.suppress(KafkaError):
                    await producer.stop()
                raise DependencyUnavailableError(
                    DEPENDENCY_NAME, f"Kafka producer unavailable: {exc}"
                ) from exc
            self._producer = producer
        return self._producer

    async def start(self) -> None:
        try:
            await self._ensure_producer()
            logger.info("Kafka task channel started (%s)", self._bootstrap_servers)
        except DependencyUnavailableError as exc:
            # Publishing retries the connection lazily.
            logger.warning("%s", exc.detail)

    async def publish(self, topic: str, routing_key: str, payload: Dict[str, Any]) -> None:
        producer = await self._ensure_producer()
        encoded = json.dumps(payload).encode("utf-8")
        try:
            await producer.send_and_wait(topic, encoded, key=routing_key.encode("utf-8"))
        except KafkaError as exc:
            raise DependencyUnavailableError(
                DEPENDENCY_NAME, f"Failed to publish to {topic}: {exc}"
            ) from exc

    async def subscribe(self, queue_name: str, handler: Handler, concurrency: int = 1) -> None:
        for i in range(max(1, concurrency)):
            task = asyncio.create_task(
                self._run_consumer(queue_name, handler),
                name=f"kafka-consumer:{queue_name}:{i}",
            )
            self._tasks.append(task)

    async def _run_consumer(self, queue_name: str, handler: Handler) -> None:
        delay = max(self._retry_backoff, 0.5)

        while True:
            consumer = AIOKafkaConsumer(
                queue_name,
                bootstrap_servers=self._bootstrap_servers,
                client_id=self._client_id,
                group_id=f"{self._group_id}.{queue_name}",
                enable_auto_commit=False,
                auto_offset_reset="earliest",
            )
            try:
                await consumer.start()
            except KafkaError as exc:
                logger.error("Failed to start Kafka consumer for %s: %s; retrying in %.1fs", queue_name, exc, delay)
                with contextlib.suppress(KafkaError):
                    await consumer.stop()
                await asyncio.sleep(delay)
                delay = min(delay * 2, 30.0)
                continue

            self._consumers.append(consumer)
            logger.info("Kafka consumer started for %s", queue_name)
            try:
                await self._consume(consumer, queue_name, handler)
            finally:
                self._consumers.remove(consumer)
                with contextlib.suppress(KafkaError):
                    await consumer.stop()

    async def _consume(self, consumer: AIOKafkaConsumer, queue_name: str, handler: Handler) -> None:
        while True:
            message = await consumer.getone()
            tp = TopicPartition(message.topic, message.partition)

            try:
                payload = json.loads(message.value.decode("utf-8"))
            except (ValueError, AttributeError):
                logger.error("Undecodable message on %s at offset %d", queue_name, message.offset)
                await self._dead_letter(queue_name, message.key, message.value)
                await self._commit(consumer, tp, message.offset)
                continue

            attempt = 1
            while True:
                try:
                    await handler(payload)
                    break
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception(
                        "Handler failed on %s at offset %d, attempt %d",
                        queue_name,
                        message.offset,
                        attempt,
                    )
                    if attempt >= self._max_deliveries:
                        await self._dead_letter(queue_name, message.key, message.value)
                        break
                    attempt += 1
                    await asyncio.sleep(self._retry_backoff)

            await self._commit(consumer, tp, message.offset)

    async def _commit(self, consumer: AIOKafkaConsumer, tp: TopicPartition, offset: int) -> None:
        try:
            await consumer.commit({tp: offset + 1})
        except KafkaError as exc:
            # Uncommitted messages are redelivered after the rebalance.
            logger.warning("Offset commit failed for %s@%d: %s", tp, offset, exc)

    async def _dead_letter(self, queue_name: str, key: Optional[bytes], value: Optional[bytes]) -> None:
        topic = f"{queue_name}.dead-letter"
        try:
            producer = await self._ensure_producer()
            await producer.send_and_wait(topic, value, key=key)
            logger.error("Dead-lettered message to %s", topic)
        except (KafkaError, DependencyUnavailableError) as exc:
            logger.error("Failed to dead-letter message to %s: %s (payload=%r)", topic, exc, value)

    async def ping(self) -> bool:
        producer = await self._ensure_producer()
        await producer.client.fetch_all_metadata()
        return True

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._producer is not None:
            await self._producer.stop()
            self._producer = None
        logger.info("Kafka task channel closed")
