"""
UTC timestamp helpers.

The deployment store keeps instants as ISO-8601 text. Every instant is
normalised to UTC with fixed microsecond precision before it is written so
that lexical comparison in SQL (``next_run_at <= ?``) matches chronological
order and the claim's ``next_run_at = ?`` equality is exact.
"""

import math
from datetime import UTC, datetime, timedelta

# Display heuristic only; never consulted by the state machine or scheduler.
ETA_PERCENT_PER_MINUTE = 10


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to the canonical stored ISO 8601 string."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="microseconds")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware UTC datetime."""
    if s is None:
        return None
    return ensure_utc(datetime.fromisoformat(s))


def format_relative_time(target: datetime, now: datetime | None = None) -> str:
    """Human-friendly distance to a future instant ("in 2 hours", "in 3 days")."""
    now = now or utc_now()
    diff_seconds = (ensure_utc(target) - ensure_utc(now)).total_seconds()

    if diff_seconds < 0:
        return "in the past"

    minutes = int(diff_seconds // 60)
    hours = int(diff_seconds // 3600)
    days = int(diff_seconds // 86400)

    if minutes < 60:
        return f"in {minutes} minute{'s' if minutes != 1 else ''}"
    if hours < 24:
        return f"in {hours} hour{'s' if hours != 1 else ''}"
    if days < 7:
        return f"in {days} day{'s' if days != 1 else ''}"
    weeks = days // 7
    return f"in {weeks} week{'s' if weeks != 1 else ''}"


def estimate_remaining(progress: int) -> timedelta:
    """Rough time left for an imaging run at ``progress`` percent."""
    remaining_percent = max(0, 100 - progress)
    return timedelta(minutes=math.ceil(remaining_percent / ETA_PERCENT_PER_MINUTE))


def estimate_eta(progress: int, now: datetime | None = None) -> datetime | None:
    """Estimated completion instant, or None once progress reaches 100."""
    if progress >= 100:
        return None
    return (now or utc_now()) + estimate_remaining(progress)


def format_eta(progress: int) -> str:
    """Dashboard ETA column text ("Complete", "< 1m", "7m", "2h 5m")."""
    if progress >= 100:
        return "Complete"
    minutes = int(estimate_remaining(progress).total_seconds() // 60)
    if minutes < 1:
        return "< 1m"
    if minutes < 60:
        return f"{minutes}m"
    return f"{minutes // 60}h {minutes % 60}m"
