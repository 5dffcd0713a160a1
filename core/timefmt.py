"""Time-of-day and playback-clock helpers.

Schedule times are wall-clock values with minute granularity that are
always snapped to a 10-minute grid before they are sent to the backend.
Playback labels are ``M:SS`` strings shown to (and sent by) the assistant.
"""

from __future__ import annotations

import math
import re
from datetime import time

_HHMM = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*$")

_MINUTES_PER_DAY = 24 * 60


def round_to_ten_minutes(value: time) -> time:
    """Snap *value* to the nearest 10-minute boundary (half rounds up).

    Seconds are ignored. Rounding past 23:55 wraps to midnight.

    Examples:
        >>> round_to_ten_minutes(time(8, 5))
        datetime.time(8, 10)
        >>> round_to_ten_minutes(time(9, 55))
        datetime.time(10, 0)
        >>> round_to_ten_minutes(time(23, 58))
        datetime.time(0, 0)
    """
    total = value.hour * 60 + value.minute
    rounded = ((total + 5) // 10) * 10 % _MINUTES_PER_DAY
    return time(rounded // 60, rounded % 60)


def parse_hhmm(text: str) -> time:
    """Parse a ``HH:mm`` (or ``HH:mm:ss``) string.

    Raises:
        ValueError: If *text* is not a valid 24-hour time.
    """
    match = _HHMM.match(text or "")
    if not match:
        raise ValueError(f"Invalid time {text!r}; expected HH:mm.")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time {text!r}; expected HH:mm.")
    return time(hour, minute)


def format_hhmm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def format_clock(seconds: float) -> str:
    """Format a playback offset as ``M:SS``; bad input renders as ``0:00``."""
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "0:00"
    whole = int(round(seconds))
    return f"{whole // 60}:{whole % 60:02d}"


def progress_percent(current: float, duration: float) -> int:
    """Playback progress as a whole percentage (0 when duration is unknown)."""
    if duration is None or not math.isfinite(duration) or duration <= 0:
        return 0
    if current is None or not math.isfinite(current):
        return 0
    return int(round(current / duration * 100))
