"""Background re-anchoring of readings that have no ledger transaction yet."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Event, Lock, Thread
from typing import Callable, Optional

from datastore.sql_store import SqlStore
from ledger.anchor import AnchorClient
from services.errors import AnchorError, StoreError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconcileSummary:
    attempted: int = 0
    anchored: int = 0
    failed: int = 0
    skipped: int = 0


class AnchorReconciler:
    """Retries anchoring for ``unanchored`` and ``anchor_failed`` rows.

    Each row is claimed (``anchoring``) before it is submitted, and ingestion
    inserts its rows already claimed, so one row never has two submissions in
    flight. A claim older than ``stale_after`` is assumed abandoned by a
    crashed process and is taken over. Rows younger than ``grace`` are left
    for the ingestion path.
    """

    def __init__(
        self,
        store: SqlStore,
        anchor: AnchorClient,
        interval: float = 60.0,
        grace: timedelta = timedelta(seconds=30),
        batch_size: int = 50,
        stale_after: timedelta = timedelta(minutes=10),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.anchor = anchor
        self.interval = interval
        self.grace = grace
        self.batch_size = batch_size
        self.stale_after = stale_after
        self._clock = clock or _utcnow
        self._stop = Event()
        self._thread: Optional[Thread] = None
        self._run_lock = Lock()

    def run_once(self) -> ReconcileSummary:
        summary = ReconcileSummary()
        with self._run_lock:
            now = self._clock()
            stale_before = now - self.stale_after
            pending = self.store.pending_anchors(
                older_than=now - self.grace,
                limit=self.batch_size,
                stale_before=stale_before,
            )
            for reading in pending:
                if not self.store.claim_anchor(reading.id, stale_before):
                    summary.skipped += 1
                    continue
                summary.attempted += 1
                try:
                    signature = self.anchor.submit(reading)
                except AnchorError as exc:
                    summary.failed += 1
                    logger.warning(
                        "Re-anchoring failed",
                        extra={"reading_id": reading.id, "reason": str(exc)},
                    )
                    self.store.mark_anchor_failed(reading.id)
                    continue
                self.store.mark_anchored(reading.id, signature)
                summary.anchored += 1
                logger.info(
                    "Reading re-anchored",
                    extra={"reading_id": reading.id, "signature": signature},
                )
        return summary

    def start(self) -> None:
        if self.interval <= 0 or self._thread is not None:
            return
        self._stop.clear()
        self._thread = Thread(target=self._loop, name="anchor-reconciler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                summary = self.run_once()
            except StoreError:
                logger.exception("Reconciliation pass aborted")
                continue
            if summary.attempted:
                logger.info(
                    "Reconciliation pass finished",
                    extra={"status": f"{summary.anchored}/{summary.attempted} anchored"},
                )
