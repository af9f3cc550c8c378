"""Retry backoff policies for outgoing deliveries."""

from datetime import datetime, timedelta

BACKOFF_EXPONENTIAL = "exponential"
BACKOFF_LINEAR = "linear"
BACKOFF_POLICIES = (BACKOFF_EXPONENTIAL, BACKOFF_LINEAR)

# 1 min, 5 min, 15 min, 1 h, 6 h, 1 day; the last step repeats forever
EXPONENTIAL_STEPS_MINUTES = [1, 5, 15, 60, 360, 1440]


def retry_delay(attempts: int, policy: str) -> timedelta:
    """Delay before the next attempt.

    ``attempts`` is the number of attempts already made, counting the one
    that just failed.
    """
    if policy == BACKOFF_LINEAR:
        return timedelta(minutes=attempts + 1)
    step = min(max(attempts, 0), len(EXPONENTIAL_STEPS_MINUTES) - 1)
    return timedelta(minutes=EXPONENTIAL_STEPS_MINUTES[step])


def next_retry_at(attempts: int, policy: str, now: datetime) -> datetime:
    return now + retry_delay(attempts, policy)
