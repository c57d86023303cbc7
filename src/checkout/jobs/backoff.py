"""Exponential backoff for job retries."""

from datetime import timedelta


def backoff_delay(attempts: int, base_seconds: float, cap_seconds: float) -> timedelta:
    """Delay before the next try after ``attempts`` failed executions.

    0 failures → run immediately; then base, 2·base, 4·base, … capped at
    ``cap_seconds``.
    """
    if attempts <= 0:
        return timedelta(0)
    seconds = min(cap_seconds, base_seconds * (2 ** (attempts - 1)))
    return timedelta(seconds=seconds)
