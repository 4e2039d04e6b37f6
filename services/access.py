"""Ownership checks that run before any sensor data is read or written."""

from __future__ import annotations

import logging

from datastore.sql_store import SqlStore
from services.errors import Forbidden, UnknownSensor

logger = logging.getLogger(__name__)


class AccessGate:
    """Deny-by-default predicates over the sensor registry.

    Store failures propagate as ``StoreError``; nothing here ever defaults to
    "allowed" or "exists".
    """

    def __init__(self, store: SqlStore) -> None:
        self.store = store

    def sensor_registered(self, sensor_id: int) -> bool:
        return self.store.sensor_registered(sensor_id)

    def owns(self, subject: str, sensor_id: int) -> bool:
        return self.store.owns_sensor(subject, sensor_id)

    def require_registered(self, sensor_id: int) -> None:
        if not self.sensor_registered(sensor_id):
            logger.warning(
                "Rejected reading for unregistered sensor",
                extra={"sensor_id": sensor_id},
            )
            raise UnknownSensor(sensor_id)

    def require_owner(self, subject: str, sensor_id: int) -> None:
        if not self.owns(subject, sensor_id):
            logger.warning(
                "Denied access to sensor",
                extra={"sensor_id": sensor_id, "username": subject},
            )
            raise Forbidden()
