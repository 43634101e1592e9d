"""
Scheduler errors. Every fatal outcome of a request raises one of these.

Every error carries `retryable`, which the entry point (HTTP app, SNS
handler, queue consumer) uses to decide on redelivery. The scheduler itself
never retries.
"""
from __future__ import annotations


class SchedulerError(Exception):
    """Base exception for all scheduler operations."""

    retryable: bool = False

    def __init__(self, message: str, retryable: bool = None):
        if retryable is not None:
            self.retryable = retryable
        super().__init__(message)


class RequestValidationError(SchedulerError):
    """Inbound payload failed validation. Nothing was written."""

    def __init__(self, message: str, errors: list = None):
        self.errors = errors or []
        super().__init__(message)


class TimeParseError(SchedulerError):
    """sendTimeUtc could not be parsed as a timestamp."""

    def __init__(self, value: str, reason: str = ""):
        self.value = value
        detail = f": {reason}" if reason else ""
        super().__init__(f"Unable to parse sendTimeUtc {value!r}{detail}")


class TimeSlotFormatError(SchedulerError):
    """A resolved time slot does not have the HH-MM shape."""

    def __init__(self, time_slot: str, source: str = ""):
        self.time_slot = time_slot
        msg = f"Invalid time slot {time_slot!r}"
        if source:
            msg += f" resolved from {source!r}"
        super().__init__(msg)


class StoreError(SchedulerError):
    retryable = True

    def __init__(self, message: str, time_slot: str = "", notification_id: str = ""):
        self.time_slot = time_slot
        self.notification_id = notification_id
        super().__init__(message)


class PublishError(SchedulerError):
    retryable = True

    def __init__(self, message: str, topic: str = ""):
        self.topic = topic
        super().__init__(message)
