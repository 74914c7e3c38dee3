"""
This module contains helper functions for formatting data into human-readable strings.
They are used in log lines, failure reports and health checks to present
durations and uptimes in a clear and consistent way.
"""

from datetime import timedelta
from typing import Union


def format_timedelta(td_object: Union[timedelta, float, int]) -> str:
    """
    Formats a timedelta (or a number of seconds) into a "HH:MM:SS" string.

    Args:
        td_object: The timedelta object, or seconds as a number.

    Returns:
        A string representing the duration in HH:MM:SS format.
        For example, 7261 seconds becomes "02:01:01".
        Returns "00:00:00" for anything else, including negative values.
    """
    if isinstance(td_object, (int, float)) and not isinstance(td_object, bool):
        td_object = timedelta(seconds=td_object)
    if not isinstance(td_object, timedelta):
        return "00:00:00"

    total_seconds = max(0, int(td_object.total_seconds()))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02}:{minutes:02}:{seconds:02}"


def format_uptime(milliseconds: int) -> str:
    """
    Formats an uptime in milliseconds as a compact string.

    Examples: "45s", "3m 20s", "2h 5m", "1d 3h 12m".
    """
    seconds = max(0, int(milliseconds // 1000))
    minutes, hours, days = seconds // 60, seconds // 3600, seconds // 86400

    if days > 0:
        return f"{days}d {hours % 24}h {minutes % 60}m"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_milliseconds(milliseconds: Union[int, float]) -> str:
    """Formats a delay such as a backoff: "750ms", "5.0s", "02:30:00"."""
    if milliseconds < 1000:
        return f"{int(milliseconds)}ms"
    if milliseconds < 60_000:
        return f"{milliseconds / 1000:.1f}s"
    return format_timedelta(milliseconds / 1000)
