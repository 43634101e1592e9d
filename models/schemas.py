"""
Core data models for the notification scheduler.

NotificationRequest mirrors the payload published by calling applications
(and consumed unchanged by the downstream processor). It is used to validate
inbound requests; the raw body is what gets stored and forwarded, so any
change here must be reproduced in the processor service as well.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import (
    AnyUrl, BaseModel, ConfigDict, EmailStr, Field, StrictBool, StrictStr,
    ValidationError, model_validator,
)

from core.errors import RequestValidationError


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class ScheduleType(str, Enum):
    ONE_TIME = "one-time"
    RECURRING = "recurring"


class NotificationType(str, Enum):
    NONE = "none"
    PUSH = "push"
    SMS = "sms"
    EMAIL = "email"


# ──────────────────────────────────────────────────────────────
#  Inbound request
# ──────────────────────────────────────────────────────────────

class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class UniqueProperties(_Strict):
    # should uniquely identify the user from the calling application
    userId: StrictStr = Field(min_length=5)
    # should uniquely identify the message, e.g. 'dailyReminder'
    messageId: StrictStr = Field(min_length=5)


class MessageContent(_Strict):
    title: StrictStr = Field(min_length=1)
    subtitle: Optional[StrictStr] = None
    body: StrictStr = Field(min_length=1)
    messageContentCallbackUrl: Optional[StrictStr] = None


class SmsNotificationSettings(_Strict):
    phoneNumber: StrictStr = Field(min_length=10)
    unsubscribeCallbackUrl: Optional[StrictStr] = None


class EmailNotificationSettings(_Strict):
    emailType: Optional[Literal["html", "text"]] = None
    toEmailAddress: EmailStr
    fromEmailAddress: EmailStr
    unsubscribeUrl: Optional[Union[Literal[""], AnyUrl]] = None


class NotificationRequest(_Strict):
    """A schedule / reschedule request for one notification."""
    uniqueProperties: UniqueProperties
    scheduleType: ScheduleType
    notificationType: NotificationType
    message: MessageContent
    pushNotificationSettings: Optional[dict[str, Any]] = None
    smsNotificationSettings: Optional[SmsNotificationSettings] = None
    emailNotificationSettings: Optional[EmailNotificationSettings] = None
    sendTimeUtc: StrictStr = Field(min_length=1)
    enableAdaptiveTiming: Optional[StrictBool] = None
    adaptiveTimingCallbackUrl: Optional[StrictStr] = None

    @model_validator(mode="after")
    def _email_body_is_s3_uri(self) -> NotificationRequest:
        # email bodies are rendered by the processor from an S3 object
        if self.notificationType == NotificationType.EMAIL and not self.message.body.startswith("s3://"):
            raise ValueError("message.body must be an s3:// URI for email notifications")
        return self

    @property
    def user_id(self) -> str:
        return self.uniqueProperties.userId

    @property
    def message_id(self) -> str:
        return self.uniqueProperties.messageId

    @classmethod
    def parse_payload(cls, payload: Any) -> NotificationRequest:
        """Validate a decoded payload, raising RequestValidationError on failure."""
        if not isinstance(payload, dict):
            raise RequestValidationError(
                f"Notification request must be a JSON object, got {type(payload).__name__}"
            )
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise RequestValidationError(
                f"Invalid notification request: {e.error_count()} error(s)",
                errors=json.loads(e.json(include_url=False)),
            ) from e

    @classmethod
    def parse_body(cls, body: str) -> tuple[NotificationRequest, dict[str, Any]]:
        """Decode and validate a raw JSON body. Returns (request, payload)."""
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as e:
            raise RequestValidationError(f"Notification request is not valid JSON: {e}") from e
        return cls.parse_payload(payload), payload


# ──────────────────────────────────────────────────────────────
#  Placement / results
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Placement:
    """A stored notification: one identity in one time slot."""
    time_slot: str
    notification_id: str
    body: str

    @property
    def payload(self) -> dict[str, Any]:
        return json.loads(self.body)


@dataclass
class ScheduleResult:
    """What a single scheduling request did."""
    notification_id: str
    time_slot: str
    dispatched: bool = False
    removed_from: list[str] = field(default_factory=list)
    already_in_target: bool = False
    message_id: str = ""
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "notification_id": self.notification_id,
            "time_slot": self.time_slot,
            "dispatched": self.dispatched,
            "removed_from": list(self.removed_from),
            "already_in_target": self.already_in_target,
            "message_id": self.message_id,
            "warnings": list(self.warnings),
        }
