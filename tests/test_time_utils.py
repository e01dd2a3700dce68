from datetime import datetime, timedelta, timezone

import pytest

from workspace_triggers.time_utils import (
    format_timestamp,
    normalize_timestamp,
    parse_duration,
    timestamp_from_epoch_millis,
    utc_now_iso,
)


def test_utc_now_iso_returns_timezone_aware_iso_string():
    timestamp = utc_now_iso()

    assert timestamp.endswith("Z"), "timestamp must use Z (UTC) suffix"

    parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    assert parsed.tzinfo == timezone.utc


def test_format_timestamp_is_fixed_width():
    value = datetime(2026, 3, 1, 10, 0, 0, 5000, tzinfo=timezone.utc)

    assert format_timestamp(value) == "2026-03-01T10:00:00.005Z"


def test_normalize_timestamp_handles_offsets_and_precision():
    assert normalize_timestamp("2026-03-01T12:00:00+02:00") == "2026-03-01T10:00:00.000Z"
    assert normalize_timestamp("2026-03-01T10:00:00.123456789Z") == "2026-03-01T10:00:00.123Z"
    assert normalize_timestamp("2026-03-01T10:00:00.5Z") == "2026-03-01T10:00:00.500Z"


def test_normalized_timestamps_sort_chronologically():
    values = ["2026-03-01T10:00:00.5Z", "2026-03-01T09:59:59Z", "2026-03-01T11:00:00+02:00"]

    assert sorted(normalize_timestamp(v) for v in values) == [
        "2026-03-01T09:00:00.000Z",
        "2026-03-01T09:59:59.000Z",
        "2026-03-01T10:00:00.500Z",
    ]


def test_timestamp_from_epoch_millis():
    assert timestamp_from_epoch_millis("1772359260123") == "2026-03-01T10:01:00.123Z"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("PT5M", timedelta(minutes=5)),
        ("PT1H30M", timedelta(hours=1, minutes=30)),
        ("P1D", timedelta(days=1)),
        ("pt45s", timedelta(seconds=45)),
        (90, timedelta(seconds=90)),
        ("120", timedelta(seconds=120)),
    ],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["", "P", "PT", "5 minutes", True, None])
def test_parse_duration_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_duration(value)
