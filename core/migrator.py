"""
Placement Migrator — keeps one live placement per notification id.

The slot store has no cross-slot transactions, so migration is a sequence of
independent calls:

  1. discover every slot holding the id (exact key match)
  2. delete it from each slot that is not the target
  3. leave a placement already in the target slot alone
  4. put the latest payload in the target slot, always

A failed delete aborts before the put; the caller sees a StoreError and the
next delivery of the request finishes the job. Concurrent requests for the
same id may briefly leave zero or two placements; the next successful
migration for that id converges them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from core.context import RequestContext, ensure_context
from core.errors import StoreError, TimeSlotFormatError
from core.time_slots import is_valid_time_slot
from database.store_base import BaseSlotStore


@dataclass
class MigrationResult:
    time_slot: str
    removed_from: list[str] = field(default_factory=list)
    already_in_target: bool = False


class PlacementMigrator:

    def __init__(self, store: BaseSlotStore):
        self.store = store

    async def migrate(
        self,
        notification_id: str,
        time_slot: str,
        body: str,
        ctx: Optional[RequestContext] = None,
    ) -> MigrationResult:
        ctx = ensure_context(ctx)
        if not is_valid_time_slot(time_slot):
            raise TimeSlotFormatError(time_slot)

        result = MigrationResult(time_slot=time_slot)
        try:
            current_slots = await self.store.discover(notification_id)
            if not current_slots:
                ctx.log.debug("placement_not_found", notification_id=notification_id,
                              target_slot=time_slot)

            for current in current_slots:
                if current == time_slot:
                    result.already_in_target = True
                    ctx.log.debug("placement_already_in_target", notification_id=notification_id,
                                  time_slot=time_slot)
                    continue
                await self._remove(current, notification_id, ctx)
                result.removed_from.append(current)

            # overwrite even when unchanged: non-identity fields may differ
            await self.store.put(time_slot, notification_id, body)
        except StoreError as e:
            ctx.log.error("migration_aborted", notification_id=notification_id,
                          target_slot=time_slot, removed_from=result.removed_from,
                          error=str(e))
            raise

        ctx.log.info("placement_saved", notification_id=notification_id, time_slot=time_slot,
                     removed_from=result.removed_from)
        return result

    async def _remove(self, time_slot: str, notification_id: str, ctx: RequestContext) -> None:
        if not await self.store.exists(time_slot, notification_id):
            ctx.warn("placement_missing_before_delete",
                     notification_id=notification_id, time_slot=time_slot)
        await self.store.delete(time_slot, notification_id)
        ctx.log.info("placement_deleted", notification_id=notification_id, time_slot=time_slot)
