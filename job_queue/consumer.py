"""
Schedule Request Consumer — Pulls schedule requests from the inbound topic.

The scheduler never retries; this consumer owns redelivery:

  ┌──────────────┐       ┌──────────────────────┐       ┌────────────┐
  │ Calling apps │──pub──▶│ notifications:       │──────▶│  Consumer  │
  └──────────────┘       │   schedule            │       │  Worker(s) │
                         └──────────▲───────────┘       └─────┬──────┘
                                    │ retryable error,        │
                                    └── attempt + 1 ──────────┤
                                                              │
                         ┌──────────────────────┐             │
                         │ notifications:       │◀─ invalid / ┘
                         │   schedule:dlq       │   exhausted
                         └──────────────────────┘

For horizontal scaling, deploy multiple processes with the same
consumer_group; Redis Streams delivers each request to one consumer.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from core.errors import PublishError, SchedulerError
from core.scheduler import NotificationScheduler
from job_queue.message_queue import BusMessage, NotificationBus, Topics

logger = structlog.get_logger()


class ScheduleRequestConsumer:
    """
    Consumes schedule requests and hands them to the scheduler.

    Usage:
        consumer = ScheduleRequestConsumer(scheduler, bus)
        await consumer.start()             # blocks, runs until stop()
        await consumer.start_background()  # returns immediately, runs as task
        await consumer.stop()
    """

    def __init__(
        self,
        scheduler: NotificationScheduler,
        bus: NotificationBus,
        topic: str = Topics.SCHEDULE,
        consumer_group: str = "scheduler-workers",
        consumer_name: str = "",
        concurrency: int = 5,
        max_attempts: int = 3,
    ):
        self.scheduler = scheduler
        self.bus = bus
        self.topic = topic
        self.dead_letter_topic = Topics.dead_letter(topic)
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name
        self.max_attempts = max_attempts
        self._semaphore = asyncio.Semaphore(concurrency)
        self._tasks: list[asyncio.Task] = []

    async def start(self):
        """Start consuming; blocks until stop() is called."""
        logger.info("schedule_consumer_starting", topic=self.topic,
                    group=self.consumer_group, max_attempts=self.max_attempts)
        await self.bus.consume(
            topic=self.topic,
            handler=self.handle_message,
            consumer_group=self.consumer_group,
            consumer_name=self.consumer_name,
        )

    async def start_background(self) -> asyncio.Task:
        """Start consuming in a background task. Returns the task handle."""
        task = asyncio.create_task(self.start())
        self._tasks.append(task)
        return task

    async def stop(self):
        """Gracefully stop all consumer tasks."""
        self.bus.stop()
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("schedule_consumer_stopped")

    async def handle_message(self, message: BusMessage) -> Optional[str]:
        """
        Schedule one request. Returns the outcome: "scheduled", "retried"
        or "dead_lettered".

        Raises PublishError when the requeue or dead-letter publish fails;
        the bus must then leave the message unacked.
        """
        async with self._semaphore:
            try:
                result = await self.scheduler.handle_body(message.body)
            except SchedulerError as e:
                try:
                    return await self._redeliver(message, e)
                except PublishError as publish_error:
                    logger.error("schedule_request_redelivery_failed",
                                 message_id=message.message_id, attempt=message.attempt,
                                 error=str(e), publish_error=str(publish_error))
                    raise

            logger.info("schedule_request_done", message_id=message.message_id,
                        notification_id=result.notification_id,
                        time_slot=result.time_slot, dispatched=result.dispatched)
            return "scheduled"

    async def _redeliver(self, message: BusMessage, error: SchedulerError) -> str:
        if error.retryable and message.attempt + 1 < self.max_attempts:
            await self.bus.publish(self.topic, message.next_attempt())
            logger.warning("schedule_request_requeued", message_id=message.message_id,
                           attempt=message.attempt + 1, error=str(error))
            return "retried"

        dead = BusMessage(body=message.body, attempt=message.attempt,
                          metadata={"error": str(error), "error_type": type(error).__name__})
        await self.bus.publish(self.dead_letter_topic, dead)
        logger.error("schedule_request_dead_lettered", message_id=message.message_id,
                     attempts=message.attempt + 1, error=str(error),
                     error_type=type(error).__name__)
        return "dead_lettered"
