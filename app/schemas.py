"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models.records import AnchorStatus, Reading, ReadingPayload, Sensor
from ledger.anchor import AnchorState


class UserForm(BaseModel):
    """Credentials submitted to the register and login endpoints."""

    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    token: str
    username: str
    role: str


class StatusResponse(BaseModel):
    status: str = "ok"
    detail: Optional[str] = None


class ReadingIn(BaseModel):
    """A reading as posted by a sensor."""

    sensor_id: int
    timestamp: datetime = Field(..., description="ISO 8601 instant; naive values are read as UTC.")
    co2: float = Field(..., description="CO2 concentration in ppm.")
    temperature: float = Field(..., description="Temperature in degrees Celsius.")

    def to_payload(self) -> ReadingPayload:
        return ReadingPayload(
            sensor_id=self.sensor_id,
            timestamp=self.timestamp,
            co2=self.co2,
            temperature=self.temperature,
        )


class IngestResponse(BaseModel):
    """Acknowledgement of a stored and anchored reading."""

    status: str = "accepted"
    reading_id: int
    fingerprint: str
    signature: str = Field(..., description="Ledger transaction carrying the fingerprint memo.")


class ReadingOut(BaseModel):
    id: int
    sensor_id: int
    timestamp: datetime
    co2: float
    temperature: float
    anchor_status: AnchorStatus
    anchor_signature: Optional[str] = None

    @classmethod
    def from_reading(cls, reading: Reading) -> "ReadingOut":
        return cls(
            id=reading.id,
            sensor_id=reading.sensor_id,
            timestamp=reading.timestamp,
            co2=reading.co2,
            temperature=reading.temperature,
            anchor_status=reading.anchor_status,
            anchor_signature=reading.anchor_signature,
        )


class SensorOut(BaseModel):
    id: int
    name: str
    location: str

    @classmethod
    def from_sensor(cls, sensor: Sensor) -> "SensorOut":
        return cls(id=sensor.id, name=sensor.name, location=sensor.location)


class ReadingList(BaseModel):
    sensor_id: int
    readings: List[ReadingOut] = Field(default_factory=list)


class ProofResponse(BaseModel):
    """Outcome of re-deriving a reading's fingerprint and finding it on the ledger."""

    reading: ReadingOut
    fingerprint: str
    signature: Optional[str] = None
    verified: bool
    state: Optional[AnchorState] = None
