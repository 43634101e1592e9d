"""
Store Factory — Create the right slot store backend from configuration.

Configuration in settings.yaml:
    store:
      # Slot store backend
      #   "memory" : In-memory dicts (development, testing)
      #   "file"   : JSON files on disk (small deployments, demos)
      #   "s3"     : S3 bucket (production)
      backend: "s3"

      # For file backend: root directory
      file_dir: "./data"

      # For s3 backend
      bucket: "${NOTIFICATION_BUCKET}"
      region: "${AWS_REGION}"

Usage:
    from database.store_factory import create_store, get_store
    store = create_store(config)     # Create from config dict
    store = get_store()              # Get singleton instance
"""
from __future__ import annotations

import structlog
from typing import Optional

from database.store_base import BaseSlotStore, SLOTS_PREFIX

logger = structlog.get_logger()

_instance: Optional[BaseSlotStore] = None


def create_store(config: dict = None) -> BaseSlotStore:
    """
    Factory: create the appropriate slot store backend.

    Args:
        config: dict with keys:
            backend: "memory" | "file" | "s3"  (default: "memory")
            file_dir: str (for file backend, default: "./data")
            bucket, prefix, region, endpoint_url, connect_timeout,
            read_timeout, max_attempts (for s3 backend)
    """
    global _instance
    if _instance is not None:
        return _instance

    config = config or {}
    backend = config.get("backend", "memory")
    prefix = config.get("prefix") or SLOTS_PREFIX

    if backend == "s3":
        from database.store_s3 import S3SlotStore
        _instance = S3SlotStore(
            bucket=config.get("bucket", ""),
            prefix=prefix,
            region=config.get("region", ""),
            endpoint_url=config.get("endpoint_url", ""),
            connect_timeout=config.get("connect_timeout", 5.0),
            read_timeout=config.get("read_timeout", 10.0),
            max_attempts=config.get("max_attempts", 3),
        )
        logger.info("store_created", backend="s3", bucket=config.get("bucket"))

    elif backend == "file":
        from database.store_file import FileSlotStore
        data_dir = config.get("file_dir", "./data")
        _instance = FileSlotStore(data_dir=data_dir, prefix=prefix)
        logger.info("store_created", backend="file", data_dir=data_dir)

    else:  # "memory" or default
        from database.store_memory import InMemorySlotStore
        _instance = InMemorySlotStore()
        logger.info("store_created", backend="memory")

    return _instance


def get_store() -> BaseSlotStore:
    """Return the singleton store instance, creating a memory store if none exists."""
    global _instance
    if _instance is None:
        _instance = create_store()
    return _instance


def reset_store() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
