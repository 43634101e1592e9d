"""
Tests for all slot store backends.

Covers:
  - InMemorySlotStore
  - FileSlotStore (JSON files in the bucket layout)
  - S3SlotStore (boto3 client replaced with a dict-backed fake)
  - Store factory
"""
import io
import json
import pytest

from botocore.exceptions import ClientError

from core.errors import StoreError


BODY = json.dumps({"sendTimeUtc": "2024-03-01T08:07:00Z", "message": {"title": "t", "body": "b"}})


# ──────────────────────────────────────────────────────────────
#  Fake S3 client
# ──────────────────────────────────────────────────────────────

class FakeS3Client:
    """Just enough of the boto3 S3 client for S3SlotStore."""

    def __init__(self, page_size: int = 1000):
        self.objects: dict[str, bytes] = {}
        self.page_size = page_size
        self.calls: list[str] = []
        self.fail_on: set[str] = set()

    def _maybe_fail(self, operation):
        self.calls.append(operation)
        if operation in self.fail_on:
            raise ClientError({"Error": {"Code": "InternalError", "Message": "boom"}}, operation)

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self._maybe_fail("put_object")
        self.objects[Key] = Body

    def get_object(self, Bucket, Key):
        self._maybe_fail("get_object")
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def head_object(self, Bucket, Key):
        self._maybe_fail("head_object")
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {}

    def delete_object(self, Bucket, Key):
        self._maybe_fail("delete_object")
        self.objects.pop(Key, None)

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return self

    def paginate(self, Bucket, Prefix, Delimiter=None):
        self._maybe_fail("list_objects_v2")
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        if Delimiter:
            prefixes = sorted({
                Prefix + k[len(Prefix):].split(Delimiter, 1)[0] + Delimiter
                for k in keys if Delimiter in k[len(Prefix):]
            })
            yield {"CommonPrefixes": [{"Prefix": p} for p in prefixes]}
            return
        for i in range(0, max(len(keys), 1), self.page_size):
            chunk = keys[i:i + self.page_size]
            page = {"KeyCount": len(chunk)}
            if chunk:
                page["Contents"] = [{"Key": k} for k in chunk]
            yield page


# ──────────────────────────────────────────────────────────────
#  Shared behaviour, run against every backend
# ──────────────────────────────────────────────────────────────

@pytest.fixture(params=["memory", "file", "s3"])
def any_store(request, tmp_path):
    if request.param == "memory":
        from database.store_memory import InMemorySlotStore
        return InMemorySlotStore()
    if request.param == "file":
        from database.store_file import FileSlotStore
        return FileSlotStore(data_dir=str(tmp_path))
    from database.store_s3 import S3SlotStore
    return S3SlotStore(bucket="notifications-test", client=FakeS3Client(page_size=2))


class TestSlotStoreContract:
    @pytest.mark.asyncio
    async def test_put_and_get(self, any_store):
        await any_store.put("08-05", "user12345-dailyreminder", BODY)
        assert await any_store.get("08-05", "user12345-dailyreminder") == BODY

    @pytest.mark.asyncio
    async def test_get_missing_is_none(self, any_store):
        assert await any_store.get("08-05", "user12345-dailyreminder") is None
        assert not await any_store.exists("08-05", "user12345-dailyreminder")

    @pytest.mark.asyncio
    async def test_put_overwrites(self, any_store):
        await any_store.put("08-05", "user12345-a", BODY)
        await any_store.put("08-05", "user12345-a", '{"v": 2}')
        assert await any_store.get("08-05", "user12345-a") == '{"v": 2}'
        assert await any_store.list_keys("08-05") == ["user12345-a"]

    @pytest.mark.asyncio
    async def test_list_keys_and_slots(self, any_store):
        await any_store.put("08-05", "user12345-a", BODY)
        await any_store.put("08-05", "user12345-b", BODY)
        await any_store.put("09-10", "user12345-c", BODY)
        assert await any_store.list_keys("08-05") == ["user12345-a", "user12345-b"]
        assert await any_store.list_keys("10-00") == []
        assert await any_store.list_slots() == ["08-05", "09-10"]

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, any_store):
        await any_store.put("08-05", "user12345-a", BODY)
        await any_store.delete("08-05", "user12345-a")
        await any_store.delete("08-05", "user12345-a")
        await any_store.delete("11-30", "never-stored")
        assert await any_store.get("08-05", "user12345-a") is None
        assert await any_store.list_slots() == []

    @pytest.mark.asyncio
    async def test_discover_all_slots(self, any_store):
        await any_store.put("08-05", "user12345-a", BODY)
        await any_store.put("09-10", "user12345-a", BODY)
        await any_store.put("09-10", "user12345-b", BODY)
        assert await any_store.discover("user12345-a") == ["08-05", "09-10"]
        assert await any_store.discover("user12345-z") == []

    @pytest.mark.asyncio
    async def test_discover_matches_whole_key_only(self, any_store):
        await any_store.put("08-05", "user1-reminder", BODY)
        await any_store.put("09-10", "user12-reminder", BODY)
        await any_store.put("10-15", "user1-reminderdaily", BODY)
        await any_store.put("11-20", "xuser1-reminder", BODY)
        assert await any_store.discover("user1-reminder") == ["08-05"]

    @pytest.mark.asyncio
    async def test_bypass_sentinel_is_never_stored(self, any_store):
        with pytest.raises(StoreError):
            await any_store.put("now", "user12345-a", BODY)

    @pytest.mark.asyncio
    async def test_list_placements(self, any_store):
        await any_store.put("08-05", "user12345-a", BODY)
        placements = await any_store.list_placements("08-05")
        assert len(placements) == 1
        assert placements[0].notification_id == "user12345-a"
        assert placements[0].payload["sendTimeUtc"] == "2024-03-01T08:07:00Z"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("notification_id", [
        "org/user12345-dailyreminder",
        "../../../../escaped-dailyreminder",
        "user%2F12345-dailyreminder",
        "..-dailyreminder",
    ])
    async def test_path_characters_in_user_id(self, any_store, notification_id):
        await any_store.put("08-05", notification_id, BODY)
        assert await any_store.list_slots() == ["08-05"]
        assert await any_store.list_keys("08-05") == [notification_id]
        assert await any_store.discover(notification_id) == ["08-05"]
        assert await any_store.get("08-05", notification_id) == BODY
        assert await any_store.exists("08-05", notification_id)

    @pytest.mark.asyncio
    async def test_reschedule_with_slash_in_user_id_converges(self, any_store):
        from core.migrator import PlacementMigrator
        migrator = PlacementMigrator(any_store)
        await migrator.migrate("org/user12345-dailyreminder", "08-05", BODY)
        result = await migrator.migrate("org/user12345-dailyreminder", "09-10", BODY)
        assert result.removed_from == ["08-05"]
        assert await any_store.discover("org/user12345-dailyreminder") == ["09-10"]
        assert await any_store.list_slots() == ["09-10"]


# ──────────────────────────────────────────────────────────────
#  FileSlotStore
# ──────────────────────────────────────────────────────────────

class TestFileSlotStore:
    @pytest.mark.asyncio
    async def test_bucket_layout_on_disk(self, tmp_path):
        from database.store_file import FileSlotStore
        store = FileSlotStore(data_dir=str(tmp_path))
        await store.put("08-05", "user12345-dailyreminder", BODY)
        path = tmp_path / "notifications" / "slots" / "08-05" / "user12345-dailyreminder.json"
        assert path.read_text() == BODY

    @pytest.mark.asyncio
    async def test_survives_restart(self, tmp_path):
        from database.store_file import FileSlotStore
        await FileSlotStore(data_dir=str(tmp_path)).put("08-05", "user12345-a", BODY)
        reopened = FileSlotStore(data_dir=str(tmp_path))
        assert await reopened.get("08-05", "user12345-a") == BODY

    @pytest.mark.asyncio
    async def test_ignores_non_placement_files(self, tmp_path):
        from database.store_file import FileSlotStore
        store = FileSlotStore(data_dir=str(tmp_path))
        await store.put("08-05", "user12345-a", BODY)
        (tmp_path / "notifications" / "slots" / "08-05" / "notes.txt").write_text("x")
        assert await store.list_keys("08-05") == ["user12345-a"]

    @pytest.mark.asyncio
    async def test_user_id_cannot_escape_root(self, tmp_path):
        from database.store_file import FileSlotStore
        store = FileSlotStore(data_dir=str(tmp_path / "data"))
        await store.put("08-05", "../../../../escaped-dailyreminder", BODY)
        slot_dir = tmp_path / "data" / "notifications" / "slots" / "08-05"
        assert [p.name for p in slot_dir.iterdir()] == ["..%2F..%2F..%2F..%2Fescaped-dailyreminder.json"]
        assert not (tmp_path / "escaped-dailyreminder.json").exists()

    @pytest.mark.asyncio
    async def test_slot_outside_root_rejected(self, tmp_path):
        from database.store_file import FileSlotStore
        store = FileSlotStore(data_dir=str(tmp_path / "data"))
        with pytest.raises(StoreError):
            await store.get("../..", "user12345-a")


# ──────────────────────────────────────────────────────────────
#  S3SlotStore
# ──────────────────────────────────────────────────────────────

class TestS3SlotStore:
    @pytest.fixture
    def client(self):
        return FakeS3Client()

    @pytest.fixture
    def s3_store(self, client):
        from database.store_s3 import S3SlotStore
        return S3SlotStore(bucket="notifications-test", client=client)

    @pytest.mark.asyncio
    async def test_object_key_layout(self, s3_store, client):
        await s3_store.put("08-05", "user12345-dailyreminder", BODY)
        assert "notifications/slots/08-05/user12345-dailyreminder.json" in client.objects

    @pytest.mark.asyncio
    async def test_slash_in_user_id_stays_one_segment(self, s3_store, client):
        await s3_store.put("08-05", "org/user12345-dailyreminder", BODY)
        assert list(client.objects) == ["notifications/slots/08-05/org%2Fuser12345-dailyreminder.json"]

    @pytest.mark.asyncio
    async def test_discover_uses_single_listing(self, s3_store, client):
        await s3_store.put("08-05", "user12345-a", BODY)
        await s3_store.put("09-10", "user12345-a", BODY)
        client.calls.clear()
        assert await s3_store.discover("user12345-a") == ["08-05", "09-10"]
        assert client.calls == ["list_objects_v2"]

    @pytest.mark.asyncio
    async def test_client_error_becomes_store_error(self, s3_store, client):
        client.fail_on.add("delete_object")
        with pytest.raises(StoreError) as exc_info:
            await s3_store.delete("08-05", "user12345-a")
        assert exc_info.value.retryable
        assert exc_info.value.time_slot == "08-05"

    @pytest.mark.asyncio
    async def test_listing_error_becomes_store_error(self, s3_store, client):
        client.fail_on.add("list_objects_v2")
        with pytest.raises(StoreError):
            await s3_store.discover("user12345-a")

    def test_empty_bucket_rejected(self, client):
        from database.store_s3 import S3SlotStore
        with pytest.raises(StoreError):
            S3SlotStore(bucket="", client=client)


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

class TestStoreFactory:
    def test_default_is_memory(self):
        from database.store_factory import create_store
        from database.store_memory import InMemorySlotStore
        assert isinstance(create_store(), InMemorySlotStore)

    def test_file_backend(self, tmp_path):
        from database.store_factory import create_store
        from database.store_file import FileSlotStore
        store = create_store({"backend": "file", "file_dir": str(tmp_path)})
        assert isinstance(store, FileSlotStore)

    def test_singleton(self):
        from database.store_factory import create_store, get_store
        store = create_store({"backend": "memory"})
        assert get_store() is store
        assert create_store({"backend": "file"}) is store

    def test_reset(self):
        from database.store_factory import create_store, reset_store
        first = create_store()
        reset_store()
        assert create_store() is not first
