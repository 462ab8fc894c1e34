"""
Distributed event bus on Redis Streams.

Publishing appends one stream entry per event::

    XADD <stream> * routing_key <event_key> payload <json> headers <json>

Consumers read through a consumer group. A message is acknowledged once every
local handler for its routing key succeeded. A failed message is re-added with
``x-retry-count`` incremented while below ``max_retries``; after that it is
moved to ``<stream>.dead-letter`` and acknowledged.

Example:
    bus = RedisEventBus(redis_url="redis://localhost:6379/0")
    bus.subscribe("sports.event.live", handler)
    await bus.start_consuming("gateway")
"""
import asyncio
import json
import socket
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from sports_ingest.core.errors import DispatchError
from sports_ingest.core.logging import correlation_scope, get_logger
from sports_ingest.events.bus import EventBus, EventBusConfig
from sports_ingest.events.domain_event import DomainEvent

logger = get_logger(__name__)

DEFAULT_STREAM = "sports.domain_events"
DEAD_LETTER_SUFFIX = ".dead-letter"


class RedisEventBus(EventBus):
    """
    Event bus backed by a Redis stream and consumer groups.

    Args:
        redis_url: Connection URL (ignored when ``client`` is given)
        stream: Stream name events are appended to
        config: Retry / store policy
        event_store: Optional event store appended to on publish
        client: Pre-built ``redis.asyncio`` client (tests inject a fake)
        read_count: Max entries fetched per XREADGROUP call
        block_ms: XREADGROUP block timeout
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        stream: str = DEFAULT_STREAM,
        config: Optional[EventBusConfig] = None,
        event_store=None,
        client=None,
        read_count: int = 10,
        block_ms: int = 1000,
    ):
        super().__init__(config, event_store)
        if client is None:
            if not redis_url:
                raise ValueError("redis_url or client is required")
            client = redis.from_url(redis_url, decode_responses=True)
        self._redis = client
        self.stream = stream
        self.dead_letter_stream = f"{stream}{DEAD_LETTER_SUFFIX}"
        self.read_count = read_count
        self.block_ms = block_ms
        self._consumer_task: Optional[asyncio.Task] = None
        self._consuming = False

    # ========================================================================
    # Publishing
    # ========================================================================

    async def publish(self, event: DomainEvent) -> None:
        """
        Append the event to the stream.

        Raises:
            DispatchError: The entry could not be written after all retries
        """
        await self._store(event)
        fields = self._encode(event, retry_count=0)

        attempts = self.config.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                await self._redis.xadd(self.stream, fields)
                self._count(event, "delivered")
                logger.debug(f"Published {event.event_key} ({event.event_id}) to {self.stream}")
                return
            except redis.RedisError as e:
                logger.warning(f"Publish of {event.event_key} failed (attempt {attempt}/{attempts}): {e}")
                if attempt == attempts:
                    self._count(event, "failed")
                    raise DispatchError(event.event_key, str(e)) from e
                await asyncio.sleep(self.config.retry_delay * attempt)

    @staticmethod
    def _encode(event: DomainEvent, retry_count: int) -> Dict[str, str]:
        headers = {
            "x-event-id": event.event_id,
            "x-aggregate-type": event.aggregate_type,
            "x-aggregate-id": event.aggregate_id,
            "x-retry-count": retry_count,
        }
        return {
            "routing_key": event.event_key,
            "payload": json.dumps(event.to_dict(), default=str),
            "headers": json.dumps(headers),
        }

    # ========================================================================
    # Consuming
    # ========================================================================

    async def ensure_group(self, group: str) -> None:
        """Create the consumer group (and the stream) if missing."""
        try:
            await self._redis.xgroup_create(self.stream, group, id="0", mkstream=True)
            logger.info(f"Created consumer group {group} on {self.stream}")
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def start_consuming(self, group: str, consumer: Optional[str] = None) -> None:
        """Start a background task reading the stream as ``group``/``consumer``."""
        if self._consumer_task is not None and not self._consumer_task.done():
            logger.warning("Consumer already running")
            return
        await self.ensure_group(group)
        consumer = consumer or f"{socket.gethostname()}-{id(self)}"
        self._consuming = True
        self._consumer_task = asyncio.create_task(self._consume_loop(group, consumer))
        logger.info(f"Consuming {self.stream} as {group}/{consumer}")

    async def stop_consuming(self) -> None:
        self._consuming = False
        task, self._consumer_task = self._consumer_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Stopped consuming")

    async def _consume_loop(self, group: str, consumer: str) -> None:
        while self._consuming:
            try:
                batches = await self._redis.xreadgroup(
                    groupname=group,
                    consumername=consumer,
                    streams={self.stream: ">"},
                    count=self.read_count,
                    block=self.block_ms,
                )
            except asyncio.CancelledError:
                raise
            except redis.RedisError as e:
                logger.error(f"XREADGROUP failed: {e}")
                await asyncio.sleep(self.config.retry_delay)
                continue

            for _stream, entries in batches or []:
                for message_id, fields in entries:
                    try:
                        await self.process_message(group, message_id, fields)
                    except redis.RedisError as e:
                        # entry stays pending (unacked) in the group
                        logger.error(f"Processing {message_id} on {self.stream} failed: {e}")
                        await asyncio.sleep(self.config.retry_delay)

    async def process_message(self, group: str, message_id: str, fields: Dict[str, Any]) -> bool:
        """
        Handle one stream entry and ack, requeue or dead-letter it.

        Returns:
            True when every handler succeeded
        """
        headers = json.loads(fields.get("headers") or "{}")
        retry_count = int(headers.get("x-retry-count", 0))
        routing_key = fields.get("routing_key", "")

        try:
            event = DomainEvent.from_dict(json.loads(fields["payload"]))
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Unreadable message {message_id} on {self.stream}: {e}")
            await self._dead_letter(fields, f"unreadable: {e}")
            await self._redis.xack(self.stream, group, message_id)
            return False

        with correlation_scope(event.metadata.get("correlation_id") or None, prefix="consume"):
            failures = await self._dispatch_local(event)

        if not failures:
            await self._redis.xack(self.stream, group, message_id)
            return True

        if retry_count < self.config.max_retries:
            logger.warning(
                f"Requeueing {routing_key} ({event.event_id}), retry {retry_count + 1}/{self.config.max_retries}"
            )
            await self._redis.xadd(self.stream, self._encode(event, retry_count + 1))
        else:
            logger.error(f"Dead-lettering {routing_key} ({event.event_id}) after {retry_count} retries")
            await self._dead_letter(fields, "; ".join(failures))
        await self._redis.xack(self.stream, group, message_id)
        return False

    async def _dispatch_local(self, event: DomainEvent) -> List[str]:
        failures = []
        for handler in self.handlers_for(event.event_key):
            try:
                await handler.handle(event)
            except Exception as e:
                logger.error(f"Handler {handler.handler_name} failed for {event.event_key}: {e}")
                failures.append(f"{handler.handler_name}: {e}")
        return failures

    async def _dead_letter(self, fields: Dict[str, Any], reason: str) -> None:
        await self._redis.xadd(self.dead_letter_stream, {**fields, "error": reason})

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def is_healthy(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return False

    async def shutdown(self) -> None:
        await self.stop_consuming()
        self._handlers.clear()
        self._handlers_by_name.clear()
        await self._redis.aclose()
        logger.info("Redis event bus shutdown")
