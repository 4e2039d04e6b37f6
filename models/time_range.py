"""Coarse time windows accepted by the reading queries."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class TimeRange(str, Enum):
    day = "24h"
    week = "7d"
    month = "30d"
    quarter = "90d"
    all = "all"


# "all" is capped so a query never scans unbounded history.
MAX_HISTORY = timedelta(days=180)

_WINDOWS = {
    TimeRange.day: timedelta(hours=24),
    TimeRange.week: timedelta(days=7),
    TimeRange.month: timedelta(days=30),
    TimeRange.quarter: timedelta(days=90),
    TimeRange.all: MAX_HISTORY,
}


def resolve_cutoff(
    selector: Optional[TimeRange | str] = None,
    now: Optional[datetime] = None,
) -> datetime:
    """Return the earliest instant included for ``selector``; defaults to 24h."""
    current = now or datetime.now(timezone.utc)
    if selector is None:
        selector = TimeRange.day
    return current - _WINDOWS[TimeRange(selector)]
