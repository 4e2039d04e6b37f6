"""Failure kinds that cross the service boundary.

Every stage maps its internal failure to one of these before returning to the
HTTP layer. Only ``ClientError`` messages are shown to callers; ``StoreError``
and ``AnchorError`` carry internal detail for the server log only.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for all service-level failures."""


class ClientError(ServiceError):
    """The caller can correct the request."""


class InvalidReading(ClientError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class UnknownSensor(ClientError):
    def __init__(self, sensor_id: int) -> None:
        super().__init__("Sensor is not registered")
        self.sensor_id = sensor_id


class Unauthenticated(ClientError):
    """Bad, forged, expired or missing token. The cause is deliberately not kept."""

    def __init__(self) -> None:
        super().__init__("Invalid or expired token")


class InvalidCredentials(ClientError):
    def __init__(self) -> None:
        super().__init__("Invalid credentials")


class Forbidden(ClientError):
    def __init__(self) -> None:
        super().__init__("Not authorized to access this sensor")


class UsernameConflict(ClientError):
    def __init__(self) -> None:
        super().__init__("Username already taken")


class ReadingNotFound(ClientError):
    def __init__(self, reading_id: int) -> None:
        super().__init__(f"Reading {reading_id} not found")
        self.reading_id = reading_id


class StoreError(ServiceError):
    """Database connectivity or constraint failure."""


class AnchorError(ServiceError):
    """Ledger RPC, balance or signing failure."""


class ConfigurationError(ServiceError):
    """Startup preconditions are not met."""
