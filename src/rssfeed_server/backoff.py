"""Retry timing for feeds that fail to fetch."""

from datetime import datetime, timedelta

MAX_BACKOFF_MINUTES = 1440  # 24 hours


def backoff_minutes(base_interval_minutes: int, error_count: int) -> int:
    """Minutes to wait after the error_count-th consecutive failure.

    Doubles the base interval with each failure, capped at 24 hours.
    """
    if error_count < 1:
        return base_interval_minutes
    # Stop doubling once past the cap so huge error counts stay cheap.
    exponent = min(error_count - 1, MAX_BACKOFF_MINUTES.bit_length())
    return min(base_interval_minutes * 2**exponent, MAX_BACKOFF_MINUTES)


def next_fetch_time(now: datetime, minutes: int) -> datetime:
    return now + timedelta(minutes=minutes)
