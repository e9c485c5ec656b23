"""Cron expression evaluation.

Thin, pure wrapper around croniter. Every function here is a pure function
of ``(expression, reference instant)``: the scheduler replays it during
recovery and must get the same answer every time.

Tags:
    pxe-fleet, scheduling, cron, croniter

Doc-Types:
    api-reference

Examples:
    >>> from datetime import datetime, UTC
    >>> validate("0 * * * *")
    CronValidation(valid=True, error=None)
    >>> validate("not-a-pattern").valid
    False
    >>> next_occurrences("0 * * * *", datetime(2024, 1, 1, tzinfo=UTC), 2)
    [datetime(2024, 1, 1, 1, 0, tzinfo=UTC), datetime(2024, 1, 1, 2, 0, tzinfo=UTC)]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from croniter import croniter

from pxe_fleet.core.timestamps import ensure_utc

logger = logging.getLogger(__name__)

EMPTY_PATTERN_ERROR = "Cron pattern cannot be empty"
FIELD_COUNT_ERROR = "Cron pattern must have exactly 5 fields (minute hour day month weekday)"

# Fixed reference used to prove an expression can actually produce an instant
_PROBE_INSTANT = datetime(2000, 1, 1, tzinfo=UTC)

_CRON_ERRORS = (ValueError, KeyError, TypeError, OverflowError)


def _iterator(expression: str, start: datetime) -> croniter:
    # croniter also takes seconds and year fields; a bounded year can run dry
    expression = expression.strip()
    if not expression.startswith("@") and len(expression.split()) != 5:
        raise ValueError(FIELD_COUNT_ERROR)
    return croniter(expression, start)


@dataclass(frozen=True)
class CronValidation:
    """Result of :func:`validate`."""

    valid: bool
    error: str | None = None


def validate(expression: str | None) -> CronValidation:
    """Check that ``expression`` parses and yields at least one occurrence."""
    if not isinstance(expression, str) or not expression.strip():
        return CronValidation(valid=False, error=EMPTY_PATTERN_ERROR)

    try:
        _iterator(expression, _PROBE_INSTANT).get_next(datetime)
    except _CRON_ERRORS as e:
        return CronValidation(valid=False, error=str(e) or "Invalid cron pattern")
    return CronValidation(valid=True)


def next_occurrences(expression: str, from_: datetime, count: int = 3) -> list[datetime]:
    """Up to ``count`` ordered occurrences strictly after ``from_``.

    Never raises: a malformed expression yields ``[]`` and the reason is
    available from :func:`validate`.
    """
    if count <= 0 or not isinstance(expression, str) or not expression.strip():
        return []

    start = ensure_utc(from_)
    try:
        itr = _iterator(expression, start)
        occurrences: list[datetime] = []
        while len(occurrences) < count:
            nxt = ensure_utc(itr.get_next(datetime))
            # croniter truncates sub-minute precision of the start instant
            if nxt <= start:
                continue
            occurrences.append(nxt)
    except _CRON_ERRORS as e:
        logger.debug(f"Cron expression {expression!r} rejected: {e}")
        return []
    return occurrences


def next_occurrence(expression: str, after: datetime) -> datetime | None:
    """First occurrence strictly after ``after``, or None."""
    occurrences = next_occurrences(expression, after, 1)
    return occurrences[0] if occurrences else None


def is_occurrence(expression: str, instant: datetime) -> bool:
    """True when ``instant`` is itself an occurrence of ``expression``."""
    instant = ensure_utc(instant)
    return next_occurrence(expression, instant - timedelta(seconds=1)) == instant


__all__ = [
    "EMPTY_PATTERN_ERROR",
    "FIELD_COUNT_ERROR",
    "CronValidation",
    "validate",
    "next_occurrences",
    "next_occurrence",
    "is_occurrence",
]
