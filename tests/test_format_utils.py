"""Tests for the human-readable formatting helpers."""

from datetime import timedelta

import pytest

from loopcast.utils.format_utils import format_milliseconds, format_timedelta, format_uptime


@pytest.mark.parametrize(
    "value, expected",
    [(7261, "02:01:01"), (timedelta(minutes=5, seconds=3), "00:05:03"), (59.9, "00:00:59"), (-5, "00:00:00"), ("x", "00:00:00")],
)
def test_format_timedelta(value, expected):
    assert format_timedelta(value) == expected


@pytest.mark.parametrize(
    "ms, expected",
    [(45_000, "45s"), (200_000, "3m 20s"), (7_500_000, "2h 5m"), (98_000_000, "1d 3h 13m"), (0, "0s")],
)
def test_format_uptime(ms, expected):
    assert format_uptime(ms) == expected


@pytest.mark.parametrize("ms, expected", [(750, "750ms"), (5_000, "5.0s"), (300_000, "00:05:00")])
def test_format_milliseconds(ms, expected):
    assert format_milliseconds(ms) == expected
