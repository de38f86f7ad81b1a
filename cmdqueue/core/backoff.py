"""
Exponential backoff calculation.

Pure functions: the only clock read is utcnow(), and every function accepts
an explicit `now` so results are deterministic under test.
"""

from datetime import UTC, datetime, timedelta

from cmdqueue.constants import MAX_BACKOFF_SECONDS


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the format stored in the database."""
    return datetime.now(UTC).replace(tzinfo=None)


def backoff_delay(attempts: int, base: float) -> timedelta:
    """
    Delay before the next retry.

    Args:
        attempts: Attempt count after the failure that triggered the retry.
        base: Exponential base.

    Returns:
        base ** attempts seconds, clamped to [0, MAX_BACKOFF_SECONDS].
    """
    if attempts < 0:
        raise ValueError(f"attempts must be non-negative, got {attempts}")
    try:
        seconds = base**attempts
    except OverflowError:
        seconds = MAX_BACKOFF_SECONDS
    return timedelta(seconds=min(max(seconds, 0), MAX_BACKOFF_SECONDS))


def next_retry_time(
    attempts: int,
    base: float,
    now: datetime | None = None,
) -> datetime:
    """
    Timestamp at which a failed job becomes claimable again.

    The first retry after attempt 1 waits base seconds, the second base**2, etc.,
    never more than MAX_BACKOFF_SECONDS.

    Args:
        attempts: Attempt count after the failure.
        base: Exponential base.
        now: Reference time, defaults to utcnow().

    Returns:
        now + backoff_delay(attempts, base).
    """
    if now is None:
        now = utcnow()
    return now + backoff_delay(attempts, base)
