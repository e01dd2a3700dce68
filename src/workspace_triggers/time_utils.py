"""Shared helpers for working with timezone-aware timestamps and durations."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Union

_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(?P<hours>\d+(?:\.\d+)?)H)?(?:(?P<minutes>\d+(?:\.\d+)?)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Return the current UTC time formatted using ISO 8601 with a trailing Z."""
    return format_timestamp(utc_now())


def format_timestamp(value: datetime) -> str:
    """Format a datetime as a fixed-width, lexicographically sortable UTC string.

    Millisecond precision is kept so the result matches the timestamps the
    Google APIs return (``2026-02-10T12:34:56.123Z``).
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Accepts ``2026-02-10T12:34:56Z``, ``2026-02-10T12:34:56+00:00`` and
    fractional seconds of any precision.
    """
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    match = re.match(r"^(.*T\d{2}:\d{2}:\d{2})\.(\d+)(.*)$", text)
    if match:
        # fromisoformat() on older interpreters only accepts 3 or 6 digits
        fraction = (match.group(2) + "000000")[:6]
        text = f"{match.group(1)}.{fraction}{match.group(3)}"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_timestamp(value: str) -> str:
    """Re-encode any RFC 3339 timestamp into the sortable cursor format."""
    return format_timestamp(parse_timestamp(value))


def timestamp_from_epoch_millis(value: Union[int, str]) -> str:
    """Convert epoch milliseconds (as returned by Gmail ``internalDate``)."""
    millis = int(value)
    moment = datetime.fromtimestamp(millis // 1000, tz=timezone.utc)
    return format_timestamp(moment + timedelta(milliseconds=millis % 1000))


def parse_duration(value: Union[str, int, float, timedelta]) -> timedelta:
    """Parse a duration from seconds or an ISO 8601 string such as ``PT5M``.

    Raises:
        ValueError: If the value cannot be interpreted as a duration.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ValueError(f"Invalid duration: {value!r}")

    text = value.strip().upper()
    try:
        return timedelta(seconds=float(text))
    except OverflowError as exc:
        raise ValueError(f"Invalid duration: {value!r}") from exc
    except ValueError:
        pass

    match = _DURATION_RE.match(text)
    if not match or text in ("P", "PT") or text.endswith("T"):
        raise ValueError(f"Invalid ISO 8601 duration: {value!r}")
    parts = {name: float(amount) for name, amount in match.groupdict().items() if amount}
    return timedelta(**parts)
