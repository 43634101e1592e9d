"""
Tests — Notification bus backends, factory and the inbound consumer.
"""
import asyncio
import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from botocore.exceptions import ClientError

from core.errors import PublishError, StoreError
from job_queue.consumer import ScheduleRequestConsumer
from job_queue.message_queue import (
    BusMessage, InMemoryNotificationBus, RedisNotificationBus, SnsNotificationBus,
    Topics, create_notification_bus, get_notification_bus,
)


class TestBusMessage:
    def test_fields_roundtrip_keeps_body(self):
        body = '{"b": 1,   "a": 2}'
        message = BusMessage(body=body, attempt=2, metadata={"error": "boom"})
        restored = BusMessage.from_fields(message.to_fields(), message_id="1-0")
        assert restored.body == body
        assert restored.attempt == 2
        assert restored.metadata == {"error": "boom"}
        assert restored.message_id == "1-0"

    def test_next_attempt(self):
        message = BusMessage(body="{}")
        retry = message.next_attempt()
        assert retry.attempt == 1
        assert retry.body == "{}"
        assert retry.message_id != message.message_id

    def test_dead_letter_topic(self):
        assert Topics.dead_letter(Topics.SCHEDULE) == "notifications:schedule:dlq"


class TestInMemoryBus:
    @pytest.mark.asyncio
    async def test_publish_and_peek(self, bus):
        await bus.publish("t", BusMessage(body="one"))
        await bus.publish("t", BusMessage(body="two"))
        assert await bus.queue_length("t") == 2
        assert [m.body for m in await bus.peek("t")] == ["one", "two"]
        assert await bus.queue_length("t") == 2

    @pytest.mark.asyncio
    async def test_consume_until_stopped(self, bus):
        received = []

        async def handler(message):
            received.append(message.body)
            if len(received) == 2:
                bus.stop()

        await bus.publish("t", BusMessage(body="one"))
        await bus.publish("t", BusMessage(body="two"))
        await asyncio.wait_for(bus.consume("t", handler), timeout=5)
        assert received == ["one", "two"]

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_consumer(self, bus):
        received = []

        async def handler(message):
            received.append(message.body)
            if message.body == "bad":
                raise RuntimeError("handler failed")
            bus.stop()

        await bus.publish("t", BusMessage(body="bad"))
        await bus.publish("t", BusMessage(body="good"))
        await asyncio.wait_for(bus.consume("t", handler), timeout=5)
        assert received == ["bad", "good"]


class TestSnsBus:
    @pytest.mark.asyncio
    async def test_publishes_body_unchanged(self):
        client = MagicMock()
        client.publish.return_value = {"MessageId": "sns-123"}
        sns = SnsNotificationBus(client=client)
        body = '{"sendTimeUtc": "now"}'
        message_id = await sns.publish("arn:aws:sns:us-east-1:123:processor", BusMessage(body=body))
        assert message_id == "sns-123"
        client.publish.assert_called_once_with(
            TopicArn="arn:aws:sns:us-east-1:123:processor", Message=body,
        )

    @pytest.mark.asyncio
    async def test_client_error_becomes_publish_error(self):
        client = MagicMock()
        client.publish.side_effect = ClientError(
            {"Error": {"Code": "NotFound", "Message": "Topic does not exist"}}, "Publish",
        )
        sns = SnsNotificationBus(client=client)
        with pytest.raises(PublishError) as exc_info:
            await sns.publish("arn:missing", BusMessage(body="{}"))
        assert exc_info.value.topic == "arn:missing"

    @pytest.mark.asyncio
    async def test_does_not_consume(self):
        with pytest.raises(NotImplementedError):
            await SnsNotificationBus(client=MagicMock()).consume("t", AsyncMock())


class TestRedisBus:
    @pytest.mark.asyncio
    async def test_publish_uses_stream_fields(self):
        bus = RedisNotificationBus()
        bus._redis = MagicMock()
        bus._redis.xadd = AsyncMock(return_value="1700000000000-0")
        entry_id = await bus.publish("notifications:processor", BusMessage(body='{"a":1}'))
        assert entry_id == "1700000000000-0"
        bus._redis.xadd.assert_awaited_once_with(
            "notifications:processor", {"body": '{"a":1}', "attempt": "0"},
        )

    @pytest.mark.asyncio
    async def test_failed_handler_leaves_entry_pending(self):
        bus = RedisNotificationBus()
        bus._redis = MagicMock()
        bus._redis.xgroup_create = AsyncMock()
        bus._redis.xack = AsyncMock()

        async def read_once(**kwargs):
            bus.stop()
            return [("notifications:schedule", [
                ("1-0", {"body": "bad", "attempt": "0"}),
                ("2-0", {"body": "good", "attempt": "0"}),
            ])]

        bus._redis.xreadgroup = AsyncMock(side_effect=read_once)

        async def handler(message):
            if message.body == "bad":
                raise PublishError("stream unavailable", topic="notifications:schedule")

        await asyncio.wait_for(bus.consume("notifications:schedule", handler), timeout=5)
        bus._redis.xack.assert_awaited_once_with(
            "notifications:schedule", "default", "2-0",
        )


class TestBusFactory:
    def test_default_is_memory(self):
        assert isinstance(create_notification_bus(), InMemoryNotificationBus)

    def test_redis_selected(self):
        assert isinstance(create_notification_bus({"backend": "redis"}), RedisNotificationBus)

    def test_sns_selected(self):
        assert isinstance(create_notification_bus({"backend": "sns", "region": "us-east-1"}),
                          SnsNotificationBus)

    def test_singleton(self):
        bus = create_notification_bus()
        assert get_notification_bus() is bus


# ──────────────────────────────────────────────────────────────
#  ScheduleRequestConsumer
# ──────────────────────────────────────────────────────────────

class TestScheduleRequestConsumer:
    @pytest.fixture
    def consumer(self, scheduler, bus):
        return ScheduleRequestConsumer(scheduler, bus, max_attempts=3)

    @pytest.mark.asyncio
    async def test_schedules_message(self, consumer, store, sample_body):
        outcome = await consumer.handle_message(BusMessage(body=sample_body))
        assert outcome == "scheduled"
        assert await store.discover("user12345-dailyreminder") == ["08-05"]

    @pytest.mark.asyncio
    async def test_invalid_request_dead_lettered(self, consumer, bus):
        outcome = await consumer.handle_message(BusMessage(body='{"sendTimeUtc": "now"}'))
        assert outcome == "dead_lettered"
        dead = bus.drain(Topics.dead_letter(Topics.SCHEDULE))
        assert len(dead) == 1
        assert dead[0].metadata["error_type"] == "RequestValidationError"
        assert await bus.queue_length(Topics.SCHEDULE) == 0

    @pytest.mark.asyncio
    async def test_store_error_requeued_then_dead_lettered(self, consumer, bus, store, sample_body):
        store.discover = AsyncMock(side_effect=StoreError("s3 unavailable"))

        assert await consumer.handle_message(BusMessage(body=sample_body)) == "retried"
        [retry] = bus.drain(Topics.SCHEDULE)
        assert retry.attempt == 1
        assert retry.body == sample_body

        assert await consumer.handle_message(retry) == "retried"
        [last] = bus.drain(Topics.SCHEDULE)
        assert last.attempt == 2

        assert await consumer.handle_message(last) == "dead_lettered"
        assert await bus.queue_length(Topics.SCHEDULE) == 0
        assert await bus.queue_length(Topics.dead_letter(Topics.SCHEDULE)) == 1

    @pytest.mark.asyncio
    async def test_failed_requeue_propagates(self, consumer, bus, store, sample_body):
        store.discover = AsyncMock(side_effect=StoreError("s3 unavailable"))
        bus.publish = AsyncMock(side_effect=PublishError("bus down", topic=Topics.SCHEDULE))
        with pytest.raises(PublishError):
            await consumer.handle_message(BusMessage(body=sample_body))
        assert bus.publish.await_args.args[0] == Topics.SCHEDULE

    @pytest.mark.asyncio
    async def test_failed_dead_letter_propagates(self, consumer, bus):
        bus.publish = AsyncMock(side_effect=PublishError("bus down"))
        with pytest.raises(PublishError):
            await consumer.handle_message(BusMessage(body='{"sendTimeUtc": "now"}'))
        assert bus.publish.await_args.args[0] == Topics.dead_letter(Topics.SCHEDULE)

    @pytest.mark.asyncio
    async def test_background_consumer(self, consumer, bus, store, make_request):
        await bus.connect()
        task = await consumer.start_background()
        await bus.publish(Topics.SCHEDULE, BusMessage(body=json.dumps(make_request())))

        for _ in range(50):
            if await store.discover("user12345-dailyreminder"):
                break
            await asyncio.sleep(0.05)

        await consumer.stop()
        assert task.done()
        assert await store.discover("user12345-dailyreminder") == ["08-05"]
