"""Shared test fixtures for the notification scheduler."""
import copy
import json
import pytest

from core.dispatcher import ImmediateDispatcher
from core.scheduler import NotificationScheduler
from database.store_factory import reset_store
from database.store_memory import InMemorySlotStore
from job_queue.message_queue import InMemoryNotificationBus, Topics, reset_notification_bus
from config.settings import reset_settings


BASE_REQUEST = {
    "uniqueProperties": {
        "userId": "user12345",
        "messageId": "daily reminder!",
    },
    "scheduleType": "one-time",
    "notificationType": "push",
    "message": {
        "title": "Time to check in",
        "body": "Your daily summary is ready.",
    },
    "pushNotificationSettings": {"deviceToken": "abc123", "badge": 1},
    "sendTimeUtc": "2024-03-01T08:07:00Z",
}


@pytest.fixture(autouse=True)
def _reset_singletons():
    reset_store()
    reset_notification_bus()
    reset_settings()
    yield
    reset_store()
    reset_notification_bus()
    reset_settings()


@pytest.fixture
def make_request():
    """Build a request dict; nested keys can be overridden with dotted paths."""
    def _make(**overrides):
        request = copy.deepcopy(BASE_REQUEST)
        for path, value in overrides.items():
            target = request
            *parents, leaf = path.split("__")
            for part in parents:
                target = target.setdefault(part, {})
            if value is None:
                target.pop(leaf, None)
            else:
                target[leaf] = value
        return request
    return _make


@pytest.fixture
def sample_request(make_request) -> dict:
    return make_request()


@pytest.fixture
def sample_body(sample_request) -> str:
    return json.dumps(sample_request)


@pytest.fixture
def store() -> InMemorySlotStore:
    return InMemorySlotStore()


@pytest.fixture
def bus() -> InMemoryNotificationBus:
    return InMemoryNotificationBus()


@pytest.fixture
def scheduler(store, bus) -> NotificationScheduler:
    return NotificationScheduler(store, ImmediateDispatcher(bus, Topics.PROCESSOR))
