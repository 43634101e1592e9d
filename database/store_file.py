"""
FileSlotStore — JSON file-backed slot store with the same layout as the bucket.

Data layout:
  {data_dir}/
    notifications/slots/
      08-05/
        user12345-dailyreminder.json
      09-10/
        ...

Features:
  - Survives process restarts (unlike InMemorySlotStore)
  - No external dependencies (no bucket, no credentials)
  - Writes go to a temp file and are renamed into place
  - Nothing is cached; every read goes to disk

Best for: small deployments, demos, and inspecting what a downstream
processor will see.
"""
from __future__ import annotations

import os
import structlog
from pathlib import Path
from typing import Optional

from core.errors import StoreError
from database.store_base import (
    BaseSlotStore, SLOTS_PREFIX, notification_id_from_object, object_name,
)

logger = structlog.get_logger()


class FileSlotStore(BaseSlotStore):

    def __init__(self, data_dir: str = "./data", prefix: str = SLOTS_PREFIX):
        self._root = Path(data_dir) / prefix
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create slot directory {self._root}: {e}") from e
        logger.info("file_slot_store_initialized", root=str(self._root))

    def _path(self, time_slot: str, notification_id: str) -> Path:
        path = self._root / time_slot / object_name(notification_id)
        if not path.resolve().is_relative_to(self._root.resolve()):
            raise StoreError(
                f"Placement path escapes the store root: {path}",
                time_slot=time_slot, notification_id=notification_id,
            )
        return path

    async def list_slots(self) -> list[str]:
        try:
            return sorted(
                entry.name for entry in self._root.iterdir()
                if entry.is_dir() and any(self._iter_ids(entry))
            )
        except OSError as e:
            raise StoreError(f"Failed to list slots under {self._root}: {e}") from e

    async def list_keys(self, time_slot: str) -> list[str]:
        slot_dir = self._root / time_slot
        if not slot_dir.is_dir():
            return []
        try:
            return sorted(self._iter_ids(slot_dir))
        except OSError as e:
            raise StoreError(f"Failed to list slot {time_slot}: {e}", time_slot=time_slot) from e

    async def discover(self, notification_id: str) -> list[str]:
        name = object_name(notification_id)
        try:
            return sorted(
                entry.name for entry in self._root.iterdir()
                if entry.is_dir() and (entry / name).is_file()
            )
        except OSError as e:
            raise StoreError(
                f"Failed to discover {notification_id}: {e}", notification_id=notification_id,
            ) from e

    async def get(self, time_slot: str, notification_id: str) -> Optional[str]:
        path = self._path(time_slot, notification_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(
                f"Failed to read {path}: {e}",
                time_slot=time_slot, notification_id=notification_id,
            ) from e

    async def exists(self, time_slot: str, notification_id: str) -> bool:
        return self._path(time_slot, notification_id).is_file()

    async def put(self, time_slot: str, notification_id: str, body: str) -> None:
        self._check_slot(time_slot)
        path = self._path(time_slot, notification_id)
        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(body)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StoreError(
                f"Failed to write {path}: {e}",
                time_slot=time_slot, notification_id=notification_id,
            ) from e

    async def delete(self, time_slot: str, notification_id: str) -> None:
        path = self._path(time_slot, notification_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(
                f"Failed to delete {path}: {e}",
                time_slot=time_slot, notification_id=notification_id,
            ) from e

    @staticmethod
    def _iter_ids(slot_dir: Path):
        for entry in slot_dir.iterdir():
            notification_id = notification_id_from_object(entry.name)
            if notification_id is not None and entry.is_file():
                yield notification_id
