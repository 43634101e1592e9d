"""
InMemorySlotStore — Dict-backed slot store for development and testing.

Features:
  - Zero dependencies (no bucket, no disk)
  - Same interface and exact-key semantics as S3SlotStore
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import structlog
from collections import defaultdict
from typing import Optional

from database.store_base import BaseSlotStore

logger = structlog.get_logger()


class InMemorySlotStore(BaseSlotStore):

    def __init__(self):
        self._slots: dict[str, dict[str, str]] = defaultdict(dict)   # slot → {id → body}
        logger.info("inmemory_slot_store_initialized")

    async def list_slots(self) -> list[str]:
        return sorted(slot for slot, items in self._slots.items() if items)

    async def list_keys(self, time_slot: str) -> list[str]:
        return sorted(self._slots.get(time_slot, {}))

    async def discover(self, notification_id: str) -> list[str]:
        return sorted(
            slot for slot, items in self._slots.items() if notification_id in items
        )

    async def get(self, time_slot: str, notification_id: str) -> Optional[str]:
        return self._slots.get(time_slot, {}).get(notification_id)

    async def put(self, time_slot: str, notification_id: str, body: str) -> None:
        self._check_slot(time_slot)
        self._slots[time_slot][notification_id] = body

    async def delete(self, time_slot: str, notification_id: str) -> None:
        items = self._slots.get(time_slot)
        if items is None:
            return
        items.pop(notification_id, None)
        if not items:
            del self._slots[time_slot]
