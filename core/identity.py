"""
Identity derivation for notifications (the dedup key).

The key is "{userId}-{messageId}" with the messageId reduced to [A-Za-z0-9].
It names the stored object in every slot, so it must be a pure function of
its inputs.
"""
from __future__ import annotations

import re
from typing import Optional

from core.context import RequestContext, ensure_context

_WHITESPACE = re.compile(r"\s")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def sanitize_message_id(message_id: str) -> str:
    return _NON_ALNUM.sub("", _WHITESPACE.sub("", message_id))


def derive_notification_id(
    user_id: str, message_id: str, ctx: Optional[RequestContext] = None,
) -> str:
    """
    Build the NotificationId for a (userId, messageId) pair.

    A warning is recorded when characters other than whitespace were stripped
    from the message id.
    """
    ctx = ensure_context(ctx)
    compact = _WHITESPACE.sub("", message_id)
    sanitized = _NON_ALNUM.sub("", compact)
    if sanitized != compact:
        ctx.warn("message_id_special_characters_stripped",
                 message_id=message_id, sanitized=sanitized)
    return f"{user_id}-{sanitized}"
