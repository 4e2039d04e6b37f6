"""Deterministic content digest of a reading.

The canonical text is::

    sensor_id=<int>;timestamp=<unix seconds>;co2=<2 decimals>;temperature=<2 decimals>

hashed with SHA-256 and rendered as 64 lowercase hex characters. Anyone holding
the four field values can re-derive the digest and compare it with the memo
stored on the ledger.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Union

from models.records import Reading, ReadingPayload


def _epoch_seconds(timestamp: datetime) -> int:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return int(timestamp.timestamp() // 1)


def _two_decimals(value: float) -> str:
    rounded = round(float(value), 2)
    if rounded == 0:
        rounded = 0.0  # avoid "-0.00"
    return f"{rounded:.2f}"


def canonical_text(sensor_id: int, timestamp: datetime, co2: float, temperature: float) -> str:
    return ";".join(
        (
            f"sensor_id={int(sensor_id)}",
            f"timestamp={_epoch_seconds(timestamp)}",
            f"co2={_two_decimals(co2)}",
            f"temperature={_two_decimals(temperature)}",
        )
    )


def fingerprint(sensor_id: int, timestamp: datetime, co2: float, temperature: float) -> str:
    text = canonical_text(sensor_id, timestamp, co2, temperature)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def reading_fingerprint(reading: Union[Reading, ReadingPayload]) -> str:
    return fingerprint(reading.sensor_id, reading.timestamp, reading.co2, reading.temperature)
