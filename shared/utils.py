"""Shared utility functions."""
import calendar
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional


def generate_article_id() -> str:
    """Generate a unique article ID."""
    return f"art_{uuid.uuid4().hex[:12]}"


def generate_queue_item_id() -> str:
    """Generate a unique queue item ID."""
    return f"q_{uuid.uuid4().hex[:12]}"


def get_utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime to ISO format string."""
    if dt is None:
        return None
    return dt.isoformat()


def calculate_exponential_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 60.0) -> float:
    """Calculate exponential backoff delay."""
    delay = base_delay * (2 ** max(attempt, 0))
    return min(delay, max_delay)


def add_months(dt: datetime, months: int) -> datetime:
    """Shift a datetime by whole months, clamping the day to the target month."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def next_occurrence(current: datetime, frequency: str) -> Optional[datetime]:
    """
    Return the next fire time for a recurring schedule.

    Returns None for one-shot ("once") or unknown frequencies.
    """
    if frequency == "daily":
        return current + timedelta(days=1)
    if frequency == "weekly":
        return current + timedelta(weeks=1)
    if frequency == "monthly":
        return add_months(current, 1)
    return None


def next_occurrence_after(current: datetime, frequency: str, now: datetime) -> Optional[datetime]:
    """Advance a recurring schedule until it lands strictly after now."""
    candidate = next_occurrence(current, frequency)
    periods = 1
    while candidate is not None and candidate <= now:
        periods += 1
        if frequency == "monthly":
            # Re-anchor on the original day so clamping does not drift
            candidate = add_months(current, periods)
        else:
            candidate = next_occurrence(candidate, frequency)
    return candidate
