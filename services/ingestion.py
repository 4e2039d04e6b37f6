"""Ingestion pipeline and the authorised read paths."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from datastore.sql_store import SqlStore
from datastore.validation import validate_reading
from ledger.anchor import AnchorClient, AnchorState
from models.records import Claims, Reading, ReadingPayload, Sensor
from models.time_range import TimeRange, resolve_cutoff
from services.access import AccessGate
from services.errors import AnchorError, InvalidReading, ReadingNotFound, StoreError
from services.fingerprint import reading_fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionReceipt:
    reading_id: int
    fingerprint: str
    signature: str


@dataclass(frozen=True)
class ProofCheck:
    reading: Reading
    fingerprint: str
    signature: Optional[str]
    verified: bool
    state: Optional[AnchorState] = None


class IngestionService:
    """Runs validate -> sensor check -> persist -> anchor, stopping at the first failure.

    The row is written, already claimed for anchoring, before the ledger is
    contacted and is never rolled back.
    When anchoring fails the row stays, marked ``anchor_failed``, and the caller
    gets a server error; the reconciler picks it up later.
    """

    def __init__(self, store: SqlStore, gate: AccessGate, anchor: AnchorClient) -> None:
        self.store = store
        self.gate = gate
        self.anchor = anchor

    def ingest(self, payload: ReadingPayload) -> IngestionReceipt:
        try:
            reading = validate_reading(payload)
        except InvalidReading as exc:
            logger.warning(
                "Rejected reading",
                extra={"sensor_id": payload.sensor_id, "reason": exc.reason},
            )
            raise

        self.gate.require_registered(reading.sensor_id)

        try:
            stored = self.store.insert_reading(reading, claim=True)
        except StoreError:
            logger.exception("Failed to store reading", extra={"sensor_id": reading.sensor_id})
            raise

        digest = reading_fingerprint(stored)
        try:
            signature = self.anchor.submit(stored)
        except AnchorError as exc:
            logger.error(
                "Anchoring failed; reading kept without proof",
                extra={"reading_id": stored.id, "reason": str(exc)},
            )
            self._record_anchor_failure(stored.id)
            raise

        try:
            self.store.mark_anchored(stored.id, signature)
        except StoreError:
            # The transaction is out; reconciliation may anchor the row a second time.
            logger.exception(
                "Could not record anchor signature",
                extra={"reading_id": stored.id, "signature": signature},
            )

        logger.info(
            "Reading accepted",
            extra={
                "reading_id": stored.id,
                "sensor_id": stored.sensor_id,
                "fingerprint": digest,
                "signature": signature,
            },
        )
        return IngestionReceipt(reading_id=stored.id, fingerprint=digest, signature=signature)

    def _record_anchor_failure(self, reading_id: int) -> None:
        try:
            self.store.mark_anchor_failed(reading_id)
        except StoreError:
            logger.exception("Could not mark reading as anchor_failed", extra={"reading_id": reading_id})

    def list_readings(
        self,
        claims: Claims,
        sensor_id: int,
        selector: Optional[TimeRange] = None,
    ) -> List[Reading]:
        self.gate.require_owner(claims.subject, sensor_id)
        selector = TimeRange(selector or TimeRange.day)
        readings = self.store.fetch_readings(sensor_id, claims.subject, resolve_cutoff(selector))
        logger.info(
            "Readings fetched",
            extra={
                "sensor_id": sensor_id,
                "username": claims.subject,
                "range": selector.value,
            },
        )
        return readings

    def list_sensors(self, claims: Claims) -> List[Sensor]:
        return self.store.fetch_sensors(claims.subject)

    def verify_reading(self, claims: Claims, sensor_id: int, reading_id: int) -> ProofCheck:
        """Re-derive the fingerprint of a stored reading and look for it on the ledger."""
        self.gate.require_owner(claims.subject, sensor_id)
        reading = self.store.get_reading(sensor_id, reading_id, claims.subject)
        if reading is None:
            raise ReadingNotFound(reading_id)

        digest = reading_fingerprint(reading)
        signature = reading.anchor_signature
        if not signature:
            return ProofCheck(reading=reading, fingerprint=digest, signature=None, verified=False)

        verified = self.anchor.verify(reading, signature)
        state = self.anchor.status(signature)
        return ProofCheck(
            reading=reading,
            fingerprint=digest,
            signature=signature,
            verified=verified,
            state=state,
        )
