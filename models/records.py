"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class AnchorStatus(str, Enum):
    """Whether a stored reading has a matching ledger transaction."""

    unanchored = "unanchored"
    anchoring = "anchoring"
    anchored = "anchored"
    anchor_failed = "anchor_failed"


@dataclass(slots=True, frozen=True)
class ReadingPayload:
    """A reading as submitted by a sensor, before it is stored."""

    sensor_id: int
    timestamp: datetime
    co2: float
    temperature: float


@dataclass(slots=True, frozen=True)
class Reading:
    """A persisted reading. Rows are never updated except for anchor bookkeeping."""

    id: int
    sensor_id: int
    timestamp: datetime
    co2: float
    temperature: float
    inserted_at: datetime
    anchor_status: AnchorStatus = AnchorStatus.unanchored
    anchor_signature: Optional[str] = None


@dataclass(slots=True, frozen=True)
class Sensor:
    id: int
    name: str
    location: str
    owner: str


@dataclass(slots=True, frozen=True)
class Claims:
    """Verified content of an identity token."""

    subject: str
    role: str
    expires_at: datetime
