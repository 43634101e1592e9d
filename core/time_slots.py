"""
Time-slot resolution: maps a send time to a 5-minute UTC bucket.

Slots are "HH-MM" strings with the minute floored to a multiple of 5. The
literal "now" (any case) is the bypass sentinel: such requests are dispatched
immediately and never stored.

The describe_* helpers render slots and send times in a local timezone for
log readability only.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from core.context import RequestContext, ensure_context
from core.errors import TimeParseError, TimeSlotFormatError

BYPASS_SLOT = "now"
SLOT_MINUTES = 5

_SLOT_PATTERN = re.compile(r"^\d{2}-\d{2}$")


def is_bypass(value: str) -> bool:
    return isinstance(value, str) and value.lower() == BYPASS_SLOT


def is_valid_time_slot(value: str) -> bool:
    """True for a storable "HH-MM" slot. The bypass sentinel is not one."""
    if not isinstance(value, str) or not _SLOT_PATTERN.match(value):
        return False
    hours, minutes = (int(p) for p in value.split("-"))
    return hours < 24 and minutes < 60 and minutes % SLOT_MINUTES == 0


def parse_send_time(value: str) -> datetime:
    """Parse an ISO 8601 timestamp into an aware UTC datetime."""
    if not isinstance(value, str) or not value.strip():
        raise TimeParseError(str(value), "empty value")
    text = value.strip()
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise TimeParseError(value, str(e)) from e
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_time_slot(hour: int, minute: int) -> str:
    floored = (minute // SLOT_MINUTES) * SLOT_MINUTES
    return f"{hour:02d}-{floored:02d}"


def resolve_time_slot(send_time_utc: str, ctx: Optional[RequestContext] = None) -> str:
    """
    Resolve a send time into its slot, or BYPASS_SLOT for "now".

    Raises TimeParseError for unparseable input and TimeSlotFormatError if
    the result does not have the HH-MM shape.
    """
    ctx = ensure_context(ctx)
    if is_bypass(send_time_utc):
        return BYPASS_SLOT

    send_time = parse_send_time(send_time_utc)
    time_slot = format_time_slot(send_time.hour, send_time.minute)

    if send_time.minute % SLOT_MINUTES != 0:
        ctx.warn("send_time_not_on_slot_boundary",
                 send_time_utc=send_time_utc, time_slot=time_slot)

    if not _SLOT_PATTERN.match(time_slot):
        raise TimeSlotFormatError(time_slot, send_time_utc)
    return time_slot


# ── Diagnostics ───────────────────────────────────────────────

def describe_send_time(send_time: datetime, tz_name: str = "America/New_York") -> str:
    """e.g. "03:07 AM EST" for 08:07 UTC in winter."""
    local = send_time.astimezone(ZoneInfo(tz_name))
    return local.strftime("%I:%M %p %Z")


def describe_time_slot(time_slot: str, tz_name: str = "America/New_York") -> str:
    """Local wall-clock label for a slot, taken on today's date."""
    hours, minutes = (int(p) for p in time_slot.split("-"))
    today = datetime.now(timezone.utc).replace(hour=hours, minute=minutes, second=0, microsecond=0)
    return describe_send_time(today, tz_name)
