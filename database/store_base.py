"""
Abstract Slot Store — Interface for all placement storage backends.

The key space is partitioned by time slot:

    notifications/slots/{HH-MM}/{notification_id}.json

Implementations:
  - InMemorySlotStore (dict-based, single-process, no persistence)
  - FileSlotStore     (JSON files on disk, mirrors the bucket layout)
  - S3SlotStore       (S3 bucket, production)

There are no cross-slot transactions and no compare-and-swap. Callers that
need one live placement per identity go through PlacementMigrator.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import quote, unquote

from core.errors import StoreError
from core.time_slots import is_valid_time_slot
from models.schemas import Placement

SLOTS_PREFIX = "notifications/slots"
OBJECT_SUFFIX = ".json"


def object_name(notification_id: str) -> str:
    """
    Single path segment for a notification id.

    userId is not sanitized, so the id is percent-encoded: "/" and "%" never
    reach the key, which keeps every placement directly under its slot.
    Ids made of letters, digits and "-" are unchanged.
    """
    return f"{quote(notification_id, safe='')}{OBJECT_SUFFIX}"


def notification_id_from_object(name: str) -> Optional[str]:
    """Inverse of object_name; None for objects that are not placements."""
    if not name.endswith(OBJECT_SUFFIX) or len(name) == len(OBJECT_SUFFIX):
        return None
    return unquote(name[: -len(OBJECT_SUFFIX)])


class BaseSlotStore(ABC):
    """Interface that all slot store backends must implement."""

    # ── Slots ─────────────────────────────────────────────────

    @abstractmethod
    async def list_slots(self) -> list[str]:
        """Slots that currently hold at least one placement."""
        ...

    @abstractmethod
    async def list_keys(self, time_slot: str) -> list[str]:
        """Notification ids stored in a slot."""
        ...

    async def discover(self, notification_id: str) -> list[str]:
        """
        Every slot holding exactly this notification id.

        Matches the whole key; an id that is a prefix or suffix of another
        never matches it. Backends with a cheaper cross-slot listing
        override this.
        """
        found = []
        for time_slot in await self.list_slots():
            if notification_id in await self.list_keys(time_slot):
                found.append(time_slot)
        return sorted(found)

    # ── Placements ────────────────────────────────────────────

    @abstractmethod
    async def get(self, time_slot: str, notification_id: str) -> Optional[str]:
        """Serialized payload, or None if the slot does not hold the id."""
        ...

    async def exists(self, time_slot: str, notification_id: str) -> bool:
        return await self.get(time_slot, notification_id) is not None

    @abstractmethod
    async def put(self, time_slot: str, notification_id: str, body: str) -> None:
        """Store body, overwriting any previous payload."""
        ...

    @abstractmethod
    async def delete(self, time_slot: str, notification_id: str) -> None:
        """Remove a placement. Deleting an absent placement is not an error."""
        ...

    # ── Helpers ───────────────────────────────────────────────

    async def get_placement(self, time_slot: str, notification_id: str) -> Optional[Placement]:
        body = await self.get(time_slot, notification_id)
        if body is None:
            return None
        return Placement(time_slot=time_slot, notification_id=notification_id, body=body)

    async def list_placements(self, time_slot: str) -> list[Placement]:
        placements = []
        for notification_id in await self.list_keys(time_slot):
            placement = await self.get_placement(time_slot, notification_id)
            # may have been migrated away between listing and reading
            if placement is not None:
                placements.append(placement)
        return placements

    @staticmethod
    def _check_slot(time_slot: str) -> None:
        if not is_valid_time_slot(time_slot):
            raise StoreError(f"Not a storable time slot: {time_slot!r}", time_slot=time_slot)
