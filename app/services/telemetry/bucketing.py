"""
Time Bucketer — Shift windows and the 30-minute local-time bucket grid.

A shift is [06:00 UTC, +18h) of a calendar day. Bucket keys are
"YYYY-MM-DD HH:MM" in local time (fixed UTC+3), one per 30-minute slot.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

from app.models.telemetry import ShiftWindow

logger = logging.getLogger(__name__)

LOCAL_TZ = timezone(timedelta(hours=3))
BUCKET_MINUTES = 30
SHIFT_START_HOUR_UTC = 6
SHIFT_HOURS = 18
MAX_SHIFTS = 31

_BUCKET = timedelta(minutes=BUCKET_MINUTES)


def format_utc(ts: datetime) -> str:
    """ISO-8601 UTC with second precision and a Z suffix."""
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a platform timestamp into an aware UTC datetime.

    Returns None for missing or unparsable values.
    """
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def bucket_key(ts: datetime) -> str:
    """Local-time slot key for a timestamp, truncated to its 30-minute slot."""
    local = ts.astimezone(LOCAL_TZ)
    minute = "30" if local.minute >= 30 else "00"
    return f"{local:%Y-%m-%d} {local:%H}:{minute}"


def build_shift_windows(
    start_date: date,
    end_date: date,
    now: datetime | None = None,
) -> list[ShiftWindow]:
    """One shift per calendar day in [start_date, end_date], at most MAX_SHIFTS.

    Ranges longer than MAX_SHIFTS days are truncated, not rejected.
    """
    now = now or datetime.now(timezone.utc)
    shifts: list[ShiftWindow] = []
    day = start_date

    while day <= end_date and len(shifts) < MAX_SHIFTS:
        start = datetime(
            day.year, day.month, day.day, SHIFT_START_HOUR_UTC, tzinfo=timezone.utc
        )
        end = start + timedelta(hours=SHIFT_HOURS)
        shifts.append(
            ShiftWindow(
                start_utc=start,
                end_utc=end,
                interval=f"{format_utc(start)}/{format_utc(end)}",
                fetch_needed=start < now,
            )
        )
        day += timedelta(days=1)

    if day <= end_date:
        logger.info(
            "Date range %s..%s truncated to %d shifts", start_date, end_date, MAX_SHIFTS
        )
    return shifts


def shift_bucket_keys(shift: ShiftWindow) -> list[str]:
    """Every slot key a shift spans, in chronological order."""
    keys: list[str] = []
    slot = shift.start_utc
    while slot < shift.end_utc:
        keys.append(bucket_key(slot))
        slot += _BUCKET
    return keys
