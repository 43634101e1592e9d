"""
Notification Bus — Abstract interface with in-memory, Redis Streams and SNS backends.

Topology:
  notifications:schedule     : inbound schedule/reschedule requests
  notifications:processor    : requests handed to the processor service
                                (immediate sends bypass the slot store)
  {topic}:dlq                : dead-letter stream for failed inbound requests

Message Schema:
  The body is the notification request exactly as received, as a JSON
  string. It is never re-encoded on the way through, so the processor sees
  the bytes the caller published.

  Stream entries (Redis) carry:
  {
      "body":     raw JSON request,
      "attempt":  delivery attempt, starting at 0,
      ...         string metadata (dead-lettered entries carry "error")
  }

With the "sns" backend, `topic` is a topic ARN and delivery to the
scheduler happens through an SNS subscription (see api/lambda_handler.py),
so it only publishes.
"""
from __future__ import annotations

import asyncio
import uuid
import structlog
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from core.errors import PublishError

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Message Model
# ──────────────────────────────────────────────────────────────

@dataclass
class BusMessage:
    """A unit of work on the bus."""
    body: str
    attempt: int = 0
    message_id: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.message_id:
            self.message_id = f"msg_{uuid.uuid4().hex[:12]}"

    def to_fields(self) -> dict[str, str]:
        fields = {k: str(v) for k, v in self.metadata.items()}
        fields.update(body=self.body, attempt=str(self.attempt))
        return fields

    @classmethod
    def from_fields(cls, fields: dict[str, Any], message_id: str = "") -> BusMessage:
        return cls(
            body=fields.get("body", ""),
            attempt=int(fields.get("attempt", 0)),
            message_id=message_id,
            metadata={k: v for k, v in fields.items() if k not in ("body", "attempt")},
        )

    def next_attempt(self) -> BusMessage:
        return BusMessage(body=self.body, attempt=self.attempt + 1, metadata=dict(self.metadata))


class Topics:
    SCHEDULE = "notifications:schedule"
    PROCESSOR = "notifications:processor"

    @staticmethod
    def dead_letter(topic: str) -> str:
        return f"{topic}:dlq"


Handler = Callable[[BusMessage], Awaitable[Any]]


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class NotificationBus(ABC):
    """Abstract notification bus interface."""

    @abstractmethod
    async def connect(self):
        """Establish connection to the bus backend."""
        ...

    @abstractmethod
    async def close(self):
        """Gracefully shut down."""
        ...

    @abstractmethod
    async def publish(self, topic: str, message: BusMessage) -> str:
        """Publish a message. Returns the backend's message id."""
        ...

    async def consume(self, topic: str, handler: Handler, consumer_group: str = "default",
                      consumer_name: str = "", batch_size: int = 10):
        """
        Start consuming from a topic. Blocks and calls handler for each message.
        The handler owns failures: anything it raises is logged and dropped.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support consuming")

    async def queue_length(self, topic: str) -> int:
        return 0

    async def peek(self, topic: str, count: int = 10) -> list[BusMessage]:
        return []

    def stop(self):
        """Signal a running consume loop to exit."""
        self._running = False


# ──────────────────────────────────────────────────────────────
#  Redis Streams Implementation
# ──────────────────────────────────────────────────────────────

class RedisNotificationBus(NotificationBus):
    """Bus backed by Redis Streams with consumer groups."""

    def __init__(self, redis_url: str = "redis://localhost:6379"):
        self._redis_url = redis_url
        self._redis = None
        self._running = False

    async def connect(self):
        import redis.asyncio as aioredis
        self._redis = aioredis.from_url(
            self._redis_url,
            decode_responses=True,
            max_connections=20,
        )
        await self._redis.ping()
        logger.info("redis_bus_connected", url=self._redis_url)

    async def close(self):
        self._running = False
        if self._redis:
            await self._redis.close()

    async def _ensure_group(self, topic: str, group: str):
        from redis.exceptions import ResponseError
        try:
            await self._redis.xgroup_create(topic, group, id="0", mkstream=True)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def publish(self, topic: str, message: BusMessage) -> str:
        from redis.exceptions import RedisError
        try:
            entry_id = await self._redis.xadd(topic, message.to_fields())
        except RedisError as e:
            raise PublishError(f"Failed to publish to stream {topic}: {e}", topic=topic) from e
        logger.info("message_published", topic=topic, entry_id=entry_id,
                    message_id=message.message_id, attempt=message.attempt)
        return entry_id

    async def consume(self, topic: str, handler: Handler, consumer_group: str = "default",
                      consumer_name: str = "", batch_size: int = 10):
        if not consumer_name:
            consumer_name = f"worker_{uuid.uuid4().hex[:8]}"

        await self._ensure_group(topic, consumer_group)
        self._running = True
        logger.info("consumer_started", topic=topic, group=consumer_group,
                    consumer=consumer_name)

        while self._running:
            try:
                entries = await self._redis.xreadgroup(
                    groupname=consumer_group,
                    consumername=consumer_name,
                    streams={topic: ">"},
                    count=batch_size,
                    block=2000,  # block 2s waiting for messages
                )
                if not entries:
                    continue

                for _stream, stream_entries in entries:
                    for entry_id, fields in stream_entries:
                        message = BusMessage.from_fields(fields, message_id=entry_id)
                        try:
                            await handler(message)
                        except Exception as e:
                            # not acked: stays in the pending list for XCLAIM
                            logger.error("message_handler_error", topic=topic,
                                         entry_id=entry_id, error=str(e))
                            continue
                        await self._redis.xack(topic, consumer_group, entry_id)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("consumer_error", topic=topic, error=str(e))
                await asyncio.sleep(1)

    async def queue_length(self, topic: str) -> int:
        return await self._redis.xlen(topic)

    async def peek(self, topic: str, count: int = 10) -> list[BusMessage]:
        entries = await self._redis.xrange(topic, count=count)
        return [BusMessage.from_fields(fields, message_id=entry_id) for entry_id, fields in entries]


# ──────────────────────────────────────────────────────────────
#  SNS Implementation
# ──────────────────────────────────────────────────────────────

class SnsNotificationBus(NotificationBus):
    """Publishes to SNS topics. `topic` is the topic ARN."""

    def __init__(self, region: str = "", client=None):
        self._region = region
        self._client = client

    async def connect(self):
        if self._client is None:
            import boto3
            kwargs = {"region_name": self._region} if self._region else {}
            self._client = boto3.client("sns", **kwargs)
        logger.info("sns_bus_connected", region=self._region)

    async def close(self):
        self._client = None

    async def publish(self, topic: str, message: BusMessage) -> str:
        from botocore.exceptions import BotoCoreError, ClientError
        if self._client is None:
            await self.connect()
        try:
            response = await asyncio.to_thread(
                self._client.publish, TopicArn=topic, Message=message.body,
            )
        except (BotoCoreError, ClientError) as e:
            raise PublishError(f"Failed to publish to SNS topic {topic}: {e}", topic=topic) from e
        message_id = response.get("MessageId", "")
        logger.info("message_published", topic=topic, sns_message_id=message_id)
        return message_id


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryNotificationBus(NotificationBus):
    """
    Development/test bus backed by asyncio queues.
    Single-process only, no consumer groups or persistence.
    """

    def __init__(self):
        self._queues: dict[str, asyncio.Queue] = {}
        self._running = False

    def _get_queue(self, name: str) -> asyncio.Queue:
        if name not in self._queues:
            self._queues[name] = asyncio.Queue()
        return self._queues[name]

    async def connect(self):
        self._running = True
        logger.info("inmemory_bus_connected")

    async def close(self):
        self._running = False

    async def publish(self, topic: str, message: BusMessage) -> str:
        await self._get_queue(topic).put(message)
        logger.info("message_published", topic=topic, message_id=message.message_id,
                    attempt=message.attempt)
        return message.message_id

    async def consume(self, topic: str, handler: Handler, consumer_group: str = "default",
                      consumer_name: str = "", batch_size: int = 10):
        q = self._get_queue(topic)
        self._running = True
        logger.info("consumer_started", topic=topic)

        while self._running:
            try:
                message = await asyncio.wait_for(q.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            try:
                await handler(message)
            except Exception as e:
                logger.error("message_handler_error", topic=topic,
                             message_id=message.message_id, error=str(e))

    async def queue_length(self, topic: str) -> int:
        return self._get_queue(topic).qsize()

    async def peek(self, topic: str, count: int = 10) -> list[BusMessage]:
        q = self._get_queue(topic)
        # asyncio.Queue has no peek: drain and re-add
        items = []
        while not q.empty():
            items.append(q.get_nowait())
        for item in items:
            q.put_nowait(item)
        return items[:count]

    def drain(self, topic: str) -> list[BusMessage]:
        """Remove and return everything queued on a topic."""
        q = self._get_queue(topic)
        items = []
        while not q.empty():
            items.append(q.get_nowait())
        return items


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

_instance: Optional[NotificationBus] = None


def create_notification_bus(bus_config: dict[str, Any] = None) -> NotificationBus:
    """Factory: create the appropriate bus backend."""
    global _instance
    if _instance:
        return _instance

    config = bus_config or {}
    backend = config.get("backend", "memory")

    if backend == "redis":
        _instance = RedisNotificationBus(redis_url=config.get("redis_url", "redis://localhost:6379"))
    elif backend == "sns":
        _instance = SnsNotificationBus(region=config.get("region", ""))
    else:
        _instance = InMemoryNotificationBus()

    logger.info("bus_created", backend=backend)
    return _instance


def get_notification_bus() -> NotificationBus:
    """Return the singleton bus instance."""
    global _instance
    if _instance is None:
        _instance = create_notification_bus()
    return _instance


def reset_notification_bus() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
