"""Pure display helpers: chat titles and message timestamps."""
from datetime import datetime, timezone
from typing import Any

from mental_buddy.models.conversation import DEFAULT_CHAT_TITLE

TITLE_WORDS = 5
TITLE_MAX_LENGTH = 35
TITLE_CUT_LENGTH = 32
ELLIPSIS = "..."

TIMESTAMP_PLACEHOLDER = "..."
TIMESTAMP_INVALID = "--:--"


class _PendingTimestamp:
    """Marker for a write whose time the store has not assigned yet."""

    def __repr__(self) -> str:
        return "PENDING_TIMESTAMP"


PENDING_TIMESTAMP = _PendingTimestamp()


def generate_chat_title(text: Any) -> str:
    """
    Derive a short chat label from a message.

    Takes the first five whitespace-separated words. Labels longer than
    35 characters are cut to 32 and get an ellipsis.

    Args:
        text: Message text; anything that is not a string yields the default

    Returns:
        Title string, never empty
    """
    if not isinstance(text, str):
        return DEFAULT_CHAT_TITLE

    title = " ".join(text.split()[:TITLE_WORDS])
    if len(title) > TITLE_MAX_LENGTH:
        title = title[:TITLE_CUT_LENGTH] + ELLIPSIS
    return title or DEFAULT_CHAT_TITLE


def _resolve(value: Any) -> Any:
    """Turn a supported time value into a datetime, or None."""
    if value is None or value is PENDING_TIMESTAMP:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        return datetime.fromisoformat(value) if value else None
    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        return to_datetime()
    return None


def format_timestamp(value: Any) -> str:
    """
    Format a time value as hour:minute with AM/PM, e.g. "2:05 PM".

    Accepts datetimes, epoch seconds, ISO-8601 strings, objects exposing
    to_datetime(), or PENDING_TIMESTAMP. Aware datetimes are shown in the
    local timezone; naive ones as-is. Never raises.

    Returns:
        Formatted time, "..." when the value is absent, pending or
        unresolvable, "--:--" when formatting fails
    """
    try:
        resolved = _resolve(value)
    except (ValueError, TypeError, OverflowError, OSError):
        return TIMESTAMP_PLACEHOLDER
    if not isinstance(resolved, datetime):
        return TIMESTAMP_PLACEHOLDER

    try:
        if resolved.tzinfo is not None:
            resolved = resolved.astimezone()
        return resolved.strftime("%I:%M %p").lstrip("0")
    except (ValueError, TypeError, OverflowError, OSError):
        return TIMESTAMP_INVALID
