"""Hands "now" requests straight to the processor topic."""
from __future__ import annotations

from typing import Optional

from core.context import RequestContext, ensure_context
from job_queue.message_queue import BusMessage, NotificationBus, Topics


class ImmediateDispatcher:
    """
    Republishes a validated request body, unchanged, to the processor topic.
    Never touches the slot store.
    """

    def __init__(self, bus: NotificationBus, topic: str = Topics.PROCESSOR):
        self.bus = bus
        self.topic = topic

    async def dispatch(self, body: str, ctx: Optional[RequestContext] = None) -> str:
        ctx = ensure_context(ctx)
        message_id = await self.bus.publish(self.topic, BusMessage(body=body))
        ctx.log.info("notification_dispatched_immediately", topic=self.topic,
                     message_id=message_id)
        return message_id
