"""Range checks applied to a reading before it is stored."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from models.records import ReadingPayload
from models.time_range import MAX_HISTORY
from services.errors import InvalidReading

MAX_CO2_PPM = 1_000_000.0
MIN_TEMPERATURE_C = -90.0
MAX_TEMPERATURE_C = 70.0
MAX_FUTURE_SKEW = timedelta(minutes=5)


def as_utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def validate_reading(payload: ReadingPayload, now: Optional[datetime] = None) -> ReadingPayload:
    """Return ``payload`` with a UTC timestamp, or raise ``InvalidReading``."""
    if not math.isfinite(payload.co2) or payload.co2 < 0:
        raise InvalidReading("Invalid CO2 value")
    if payload.co2 > MAX_CO2_PPM:
        raise InvalidReading("Invalid CO2 value")
    if not math.isfinite(payload.temperature) or not (
        MIN_TEMPERATURE_C <= payload.temperature <= MAX_TEMPERATURE_C
    ):
        raise InvalidReading("Invalid temperature value")

    current = now or datetime.now(timezone.utc)
    timestamp = as_utc(payload.timestamp)
    if timestamp > current + MAX_FUTURE_SKEW:
        raise InvalidReading("Timestamp is in the future")
    if timestamp < current - MAX_HISTORY:
        raise InvalidReading("Timestamp is too old")

    return ReadingPayload(
        sensor_id=payload.sensor_id,
        timestamp=timestamp,
        co2=payload.co2,
        temperature=payload.temperature,
    )
