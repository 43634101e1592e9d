"""
Slot store layer — Multi-backend placement persistence.

Backends:
  - In-memory (dict-based, for development/testing)
  - File (JSON files on disk, for small deployments)
  - S3 (production; shared with the downstream processor)

Quick start:
  from database import create_store
  store = create_store({"backend": "memory"})
  slots = await store.discover("user12345-dailyreminder")
"""
from database.store_base import BaseSlotStore, SLOTS_PREFIX
from database.store_memory import InMemorySlotStore
from database.store_file import FileSlotStore
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    # Store interface
    "BaseSlotStore", "SLOTS_PREFIX",
    # Store backends (S3SlotStore lives in database.store_s3, imported on demand)
    "InMemorySlotStore", "FileSlotStore",
    # Factory
    "create_store", "get_store", "reset_store",
]
