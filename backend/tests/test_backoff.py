"""Tests for retry backoff policies."""

from datetime import datetime, timedelta, timezone

import pytest

from hookrelay.services.backoff import next_retry_at, retry_delay

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "attempts,minutes",
    [(0, 1), (1, 5), (2, 15), (3, 60), (4, 360), (5, 1440)],
)
def test_exponential_table(attempts, minutes):
    assert next_retry_at(attempts, "exponential", NOW) == NOW + timedelta(minutes=minutes)


@pytest.mark.parametrize("attempts", [5, 6, 10, 100])
def test_exponential_clamps_at_one_day(attempts):
    assert retry_delay(attempts, "exponential") == timedelta(days=1)


@pytest.mark.parametrize("attempts", [0, 1, 2, 3, 4])
def test_linear_grows_by_a_minute(attempts):
    assert next_retry_at(attempts, "linear", NOW) == NOW + timedelta(minutes=attempts + 1)


def test_linear_is_unbounded():
    assert retry_delay(2000, "linear") == timedelta(minutes=2001)


def test_exponential_is_monotonic():
    delays = [retry_delay(n, "exponential") for n in range(8)]
    assert delays == sorted(delays)


def test_unknown_policy_uses_exponential():
    assert retry_delay(2, "fibonacci") == timedelta(minutes=15)
