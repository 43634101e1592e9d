"""
S3SlotStore — Production slot store backed by an S3 bucket.

Object layout (shared with the downstream processor):
  s3://{bucket}/notifications/slots/{HH-MM}/{notification_id}.json

The boto3 client is synchronous; every call runs in a worker thread via
asyncio.to_thread. Timeouts and retries are the client's own (botocore
Config), the store adds none of its own.

Works with AWS S3 and S3-compatible services (MinIO, LocalStack) through
endpoint_url.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from core.errors import StoreError
from database.store_base import (
    BaseSlotStore, SLOTS_PREFIX, notification_id_from_object, object_name,
)

logger = structlog.get_logger()

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def create_s3_client(
    region: str = "",
    endpoint_url: str = "",
    connect_timeout: float = 5.0,
    read_timeout: float = 10.0,
    max_attempts: int = 3,
):
    import boto3
    from botocore.config import Config

    client_kwargs: dict[str, Any] = {
        "config": Config(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"max_attempts": max_attempts, "mode": "standard"},
        ),
    }
    if region:
        client_kwargs["region_name"] = region
    if endpoint_url:
        client_kwargs["endpoint_url"] = endpoint_url
    return boto3.client("s3", **client_kwargs)


class S3SlotStore(BaseSlotStore):

    def __init__(self, bucket: str, prefix: str = SLOTS_PREFIX, client=None, **client_options):
        if not bucket or not bucket.strip():
            raise StoreError("S3 bucket is empty. Set store.bucket (NOTIFICATION_BUCKET).")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._client = client or create_s3_client(**client_options)
        logger.info("s3_slot_store_initialized", bucket=bucket, prefix=self.prefix)

    def _key(self, time_slot: str, notification_id: str) -> str:
        return f"{self.prefix}/{time_slot}/{object_name(notification_id)}"

    def _uri(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    async def _call(self, operation: str, **kwargs):
        method = getattr(self._client, operation)
        return await asyncio.to_thread(method, Bucket=self.bucket, **kwargs)

    async def _list_objects(self, prefix: str, delimiter: str = "") -> list[dict]:
        def _paginate():
            paginator = self._client.get_paginator("list_objects_v2")
            params = {"Bucket": self.bucket, "Prefix": prefix}
            if delimiter:
                params["Delimiter"] = delimiter
            return list(paginator.paginate(**params))

        try:
            return await asyncio.to_thread(_paginate)
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"Failed to list {self._uri(prefix)}: {e}") from e

    # ── Slots ─────────────────────────────────────────────────

    async def list_slots(self) -> list[str]:
        pages = await self._list_objects(f"{self.prefix}/", delimiter="/")
        slots = set()
        for page in pages:
            for common in page.get("CommonPrefixes", []):
                slot = common["Prefix"][len(self.prefix) + 1:].strip("/")
                if slot:
                    slots.add(slot)
        return sorted(slots)

    async def list_keys(self, time_slot: str) -> list[str]:
        pages = await self._list_objects(f"{self.prefix}/{time_slot}/")
        keys = []
        for page in pages:
            for obj in page.get("Contents", []):
                name = obj["Key"].rsplit("/", 1)[-1]
                notification_id = notification_id_from_object(name)
                if notification_id is not None:
                    keys.append(notification_id)
        return sorted(keys)

    async def discover(self, notification_id: str) -> list[str]:
        """One listing of the whole prefix, matching the object name exactly."""
        wanted = object_name(notification_id)
        pages = await self._list_objects(f"{self.prefix}/")
        slots = set()
        for page in pages:
            for obj in page.get("Contents", []):
                parts = obj["Key"][len(self.prefix) + 1:].split("/")
                if len(parts) == 2 and parts[1] == wanted:
                    slots.add(parts[0])
        return sorted(slots)

    # ── Placements ────────────────────────────────────────────

    async def get(self, time_slot: str, notification_id: str) -> Optional[str]:
        key = self._key(time_slot, notification_id)
        try:
            response = await self._call("get_object", Key=key)
            data = await asyncio.to_thread(response["Body"].read)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise StoreError(f"Failed to read {self._uri(key)}: {e}",
                             time_slot=time_slot, notification_id=notification_id) from e
        except BotoCoreError as e:
            raise StoreError(f"Failed to read {self._uri(key)}: {e}",
                             time_slot=time_slot, notification_id=notification_id) from e
        return data.decode("utf-8")

    async def exists(self, time_slot: str, notification_id: str) -> bool:
        key = self._key(time_slot, notification_id)
        try:
            await self._call("head_object", Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return False
            raise StoreError(f"Failed to check {self._uri(key)}: {e}",
                             time_slot=time_slot, notification_id=notification_id) from e
        except BotoCoreError as e:
            raise StoreError(f"Failed to check {self._uri(key)}: {e}",
                             time_slot=time_slot, notification_id=notification_id) from e
        return True

    async def put(self, time_slot: str, notification_id: str, body: str) -> None:
        self._check_slot(time_slot)
        key = self._key(time_slot, notification_id)
        try:
            await self._call(
                "put_object", Key=key, Body=body.encode("utf-8"),
                ContentType="application/json",
            )
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"Failed to write {self._uri(key)}: {e}",
                             time_slot=time_slot, notification_id=notification_id) from e
        logger.debug("s3_object_written", uri=self._uri(key))

    async def delete(self, time_slot: str, notification_id: str) -> None:
        # S3 DeleteObject succeeds for missing keys
        key = self._key(time_slot, notification_id)
        try:
            await self._call("delete_object", Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"Failed to delete {self._uri(key)}: {e}",
                             time_slot=time_slot, notification_id=notification_id) from e
        logger.debug("s3_object_deleted", uri=self._uri(key))


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))
