"""Tests for failure backoff timing."""

from datetime import datetime, timedelta, timezone

from rssfeed_server.backoff import MAX_BACKOFF_MINUTES, backoff_minutes, next_fetch_time


def test_doubles_from_base():
    assert backoff_minutes(60, 1) == 60
    assert backoff_minutes(60, 2) == 120
    assert backoff_minutes(60, 3) == 240
    assert backoff_minutes(60, 4) == 480


def test_capped_at_one_day():
    assert backoff_minutes(60, 6) == MAX_BACKOFF_MINUTES
    assert backoff_minutes(60, 10_000) == MAX_BACKOFF_MINUTES
    assert backoff_minutes(2000, 1) == MAX_BACKOFF_MINUTES


def test_non_decreasing():
    delays = [backoff_minutes(15, n) for n in range(1, 40)]
    assert delays == sorted(delays)


def test_no_errors_uses_base():
    assert backoff_minutes(30, 0) == 30


def test_next_fetch_time():
    now = datetime(2026, 2, 13, 12, 0, tzinfo=timezone.utc)
    assert next_fetch_time(now, 240) == now + timedelta(minutes=240)
