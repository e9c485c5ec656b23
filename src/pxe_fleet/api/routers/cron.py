"""
Cron router — pattern validation and occurrence preview for the schedule dialog.

POST /cron/validate
GET  /cron/preview?pattern=...&count=3
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query

from pxe_fleet.api.schemas.domains import CronPreviewSchema, CronValidateBody, CronValidationSchema
from pxe_fleet.core.scheduling import cron
from pxe_fleet.core.timestamps import ensure_utc, format_relative_time, to_iso8601, utc_now

router = APIRouter(prefix="/cron")


@router.post("/validate", response_model=CronValidationSchema)
def validate_pattern(body: CronValidateBody):
    """Validate a cron pattern. Invalid patterns are a 200 with ``valid: false``."""
    result = cron.validate(body.pattern)
    return CronValidationSchema(valid=result.valid, error=result.error)


@router.get("/preview", response_model=CronPreviewSchema)
def preview_pattern(
    pattern: str = Query(..., description="Cron pattern, e.g. '0 2 * * 1-5'"),
    count: int = Query(3, ge=1, le=20, description="Number of occurrences"),
    start: datetime | None = Query(None, alias="from", description="Reference instant (default: now)"),
):
    """Next ``count`` occurrences strictly after ``from``."""
    now = ensure_utc(start) if start else utc_now()
    result = cron.validate(pattern)
    if not result.valid:
        return CronPreviewSchema(pattern=pattern, valid=False, error=result.error)

    occurrences = cron.next_occurrences(pattern, now, count)
    return CronPreviewSchema(
        pattern=pattern,
        valid=True,
        occurrences=[to_iso8601(o) for o in occurrences],
        relative=[format_relative_time(o, now) for o in occurrences],
    )
