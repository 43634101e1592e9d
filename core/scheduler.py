"""
Notification Scheduler — turns one schedule/reschedule request into a placement.

Flow:
1. Decode and validate the request (no side effects on failure)
2. Derive the notification id and bind it as the correlation id
3. Resolve sendTimeUtc into a time slot
4. "now"  → ImmediateDispatcher (slot store untouched)
   HH-MM  → PlacementMigrator (one live placement, at the new slot)

The raw body is what gets stored or republished; the validated model is
only used to read identity and send time.
"""
from __future__ import annotations

import json
import structlog
from typing import Any, Optional
from zoneinfo import ZoneInfoNotFoundError

from core.context import RequestContext
from core.dispatcher import ImmediateDispatcher
from core.errors import SchedulerError
from core.identity import derive_notification_id
from core.migrator import PlacementMigrator
from core.time_slots import (
    BYPASS_SLOT, describe_send_time, describe_time_slot, is_bypass, parse_send_time,
    resolve_time_slot,
)
from database.store_base import BaseSlotStore
from models.schemas import NotificationRequest, ScheduleResult

logger = structlog.get_logger()


class NotificationScheduler:

    def __init__(
        self,
        store: BaseSlotStore,
        dispatcher: ImmediateDispatcher,
        diagnostics_timezone: str = "America/New_York",
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.migrator = PlacementMigrator(store)
        self.diagnostics_timezone = diagnostics_timezone

    async def schedule(self, payload: dict[str, Any]) -> ScheduleResult:
        """Schedule an already-decoded request."""
        request = NotificationRequest.parse_payload(payload)
        return await self._process(request, json.dumps(payload))

    async def handle_body(self, body: str) -> ScheduleResult:
        """Schedule a raw JSON request, keeping the body byte-for-byte."""
        request, _payload = NotificationRequest.parse_body(body)
        return await self._process(request, body)

    async def _process(self, request: NotificationRequest, body: str) -> ScheduleResult:
        ctx = RequestContext()
        notification_id = derive_notification_id(request.user_id, request.message_id, ctx)
        ctx = ctx.with_correlation(notification_id)

        try:
            ctx.log.debug("schedule_request_received", send_time_utc=request.sendTimeUtc,
                          local_time=self._describe_send_time(request.sendTimeUtc, ctx),
                          schedule_type=request.scheduleType.value,
                          notification_type=request.notificationType.value)

            time_slot = resolve_time_slot(request.sendTimeUtc, ctx)
            result = ScheduleResult(notification_id=notification_id, time_slot=time_slot,
                                    warnings=ctx.warnings)

            if time_slot == BYPASS_SLOT:
                result.message_id = await self.dispatcher.dispatch(body, ctx)
                result.dispatched = True
                return result

            ctx.log.debug("time_slot_resolved", time_slot=time_slot,
                          local_time=self._describe_slot(time_slot, ctx))
            migration = await self.migrator.migrate(notification_id, time_slot, body, ctx)
            result.removed_from = migration.removed_from
            result.already_in_target = migration.already_in_target
            return result

        except SchedulerError as e:
            ctx.log.error("schedule_request_failed", error=str(e),
                          error_type=type(e).__name__, retryable=e.retryable)
            raise

    # ── Diagnostics (never affect the outcome) ────────────────

    def _describe_send_time(self, send_time_utc: str, ctx: RequestContext) -> str:
        if is_bypass(send_time_utc):
            return BYPASS_SLOT
        try:
            return describe_send_time(parse_send_time(send_time_utc), self.diagnostics_timezone)
        except (SchedulerError, ZoneInfoNotFoundError, ValueError) as e:
            ctx.log.debug("send_time_description_failed", error=str(e))
            return ""

    def _describe_slot(self, time_slot: str, ctx: RequestContext) -> str:
        try:
            return describe_time_slot(time_slot, self.diagnostics_timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            ctx.log.debug("time_slot_description_failed", error=str(e))
            return ""


def create_scheduler(store: BaseSlotStore, bus, processor_topic: str,
                     diagnostics_timezone: str = "America/New_York") -> NotificationScheduler:
    logger.info("scheduler_created", store=type(store).__name__, bus=type(bus).__name__,
                processor_topic=processor_topic)
    return NotificationScheduler(
        store=store,
        dispatcher=ImmediateDispatcher(bus, processor_topic),
        diagnostics_timezone=diagnostics_timezone,
    )
