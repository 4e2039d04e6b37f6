"""Relational persistence for users, sensors and readings."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Iterator, List, Optional

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    and_,
    create_engine,
    event,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from datastore.validation import as_utc
from models.records import AnchorStatus, Reading, ReadingPayload, Sensor
from services.credentials import hash_password, verify_password
from services.errors import StoreError, UsernameConflict
from settings import get_settings

logger = logging.getLogger(__name__)

# Ids are 32-bit signed integers on every supported backend.
MAX_ROW_ID = 2**31 - 1

_UNCLAIMED = (AnchorStatus.unanchored.value, AnchorStatus.anchor_failed.value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class SensorRow(Base):
    __tablename__ = "sensors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class ReadingRow(Base):
    __tablename__ = "readings"
    __table_args__ = (Index("idx_readings_sensor_timestamp", "sensor_id", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sensor_id: Mapped[int] = mapped_column(ForeignKey("sensors.id"), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    co2: Mapped[float] = mapped_column(Float, nullable=False)
    temperature: Mapped[float] = mapped_column(Float, nullable=False)
    inserted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    anchor_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=AnchorStatus.unanchored.value
    )
    anchor_signature: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    anchor_claimed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


def _to_reading(row: ReadingRow) -> Reading:
    return Reading(
        id=row.id,
        sensor_id=row.sensor_id,
        timestamp=as_utc(row.timestamp),
        co2=row.co2,
        temperature=row.temperature,
        inserted_at=as_utc(row.inserted_at),
        anchor_status=AnchorStatus(row.anchor_status),
        anchor_signature=row.anchor_signature,
    )


def _valid_id(value: int) -> bool:
    return 1 <= value <= MAX_ROW_ID


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_store_engine(url: str) -> Engine:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True)

    database = parsed.database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(
            url, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


class SqlStore:
    """Append-only reading store plus the user and sensor registries."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str) -> "SqlStore":
        store = cls(create_store_engine(url))
        store.create_schema()
        return store

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self._sessions.begin() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def health_check(self) -> None:
        with self._session() as session:
            session.execute(text("SELECT 1"))

    # Users

    def register_user(self, username: str, password: str) -> None:
        password_hash = hash_password(password)
        try:
            with self._sessions.begin() as session:
                session.add(UserRow(username=username, password_hash=password_hash))
        except IntegrityError as exc:
            if self._username_exists(username):
                raise UsernameConflict() from exc
            raise StoreError(str(exc)) from exc
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def login(self, username: str, password: str) -> bool:
        with self._session() as session:
            stored = session.scalar(
                select(UserRow.password_hash).where(UserRow.username == username)
            )
        if stored is None:
            return False
        return verify_password(password, stored)

    def user_role(self, username: str) -> Optional[str]:
        with self._session() as session:
            return session.scalar(select(UserRow.role).where(UserRow.username == username))

    def _username_exists(self, username: str) -> bool:
        with self._session() as session:
            found = session.scalar(select(UserRow.id).where(UserRow.username == username))
        return found is not None

    # Sensors

    def register_sensor(
        self,
        name: str,
        location: str,
        owner: str,
        sensor_id: Optional[int] = None,
    ) -> Sensor:
        if sensor_id is not None and not _valid_id(sensor_id):
            raise ValueError(f"Sensor id must be between 1 and {MAX_ROW_ID}.")
        with self._session() as session:
            user_id = session.scalar(select(UserRow.id).where(UserRow.username == owner))
            if user_id is None:
                raise ValueError(f"Unknown sensor owner {owner!r}.")
            row = SensorRow(id=sensor_id, name=name, location=location, user_id=user_id)
            session.add(row)
            session.flush()
            return Sensor(id=row.id, name=row.name, location=row.location, owner=owner)

    def sensor_registered(self, sensor_id: int) -> bool:
        if not _valid_id(sensor_id):
            return False
        with self._session() as session:
            found = session.scalar(select(SensorRow.id).where(SensorRow.id == sensor_id))
        return found is not None

    def owns_sensor(self, username: str, sensor_id: int) -> bool:
        if not _valid_id(sensor_id):
            return False
        with self._session() as session:
            found = session.scalar(
                select(SensorRow.id)
                .join(UserRow, SensorRow.user_id == UserRow.id)
                .where(SensorRow.id == sensor_id, UserRow.username == username)
            )
        return found is not None

    def fetch_sensors(self, owner: str) -> List[Sensor]:
        with self._session() as session:
            rows = session.execute(
                select(SensorRow)
                .join(UserRow, SensorRow.user_id == UserRow.id)
                .where(UserRow.username == owner)
                .order_by(SensorRow.id)
            ).scalars()
            return [
                Sensor(id=row.id, name=row.name, location=row.location, owner=owner)
                for row in rows
            ]

    # Readings

    def insert_reading(self, payload: ReadingPayload, claim: bool = False) -> Reading:
        """Append a reading; with ``claim`` the row starts out ``anchoring``."""
        now = _utcnow()
        with self._session() as session:
            row = ReadingRow(
                sensor_id=payload.sensor_id,
                timestamp=as_utc(payload.timestamp),
                co2=payload.co2,
                temperature=payload.temperature,
                inserted_at=now,
                anchor_status=(
                    AnchorStatus.anchoring.value if claim else AnchorStatus.unanchored.value
                ),
                anchor_claimed_at=now if claim else None,
            )
            session.add(row)
            session.flush()
            reading = _to_reading(row)
        logger.info(
            "Stored reading",
            extra={"reading_id": reading.id, "sensor_id": reading.sensor_id},
        )
        return reading

    def fetch_readings(self, sensor_id: int, owner: str, cutoff: datetime) -> List[Reading]:
        """Readings at or after ``cutoff``, oldest first, scoped to ``owner``."""
        if not _valid_id(sensor_id):
            return []
        with self._session() as session:
            rows = session.execute(
                select(ReadingRow)
                .join(SensorRow, ReadingRow.sensor_id == SensorRow.id)
                .join(UserRow, SensorRow.user_id == UserRow.id)
                .where(
                    ReadingRow.sensor_id == sensor_id,
                    UserRow.username == owner,
                    ReadingRow.timestamp >= as_utc(cutoff),
                )
                .order_by(ReadingRow.timestamp, ReadingRow.id)
            ).scalars()
            return [_to_reading(row) for row in rows]

    def get_reading(self, sensor_id: int, reading_id: int, owner: str) -> Optional[Reading]:
        if not (_valid_id(sensor_id) and _valid_id(reading_id)):
            return None
        with self._session() as session:
            row = session.scalar(
                select(ReadingRow)
                .join(SensorRow, ReadingRow.sensor_id == SensorRow.id)
                .join(UserRow, SensorRow.user_id == UserRow.id)
                .where(
                    ReadingRow.id == reading_id,
                    ReadingRow.sensor_id == sensor_id,
                    UserRow.username == owner,
                )
            )
            return _to_reading(row) if row is not None else None

    def claim_anchor(self, reading_id: int, stale_before: datetime) -> bool:
        """Move a pending row to ``anchoring``; False when someone else holds it.

        A claim older than ``stale_before`` is treated as abandoned and taken over.
        """
        abandoned = and_(
            ReadingRow.anchor_status == AnchorStatus.anchoring.value,
            ReadingRow.anchor_claimed_at < as_utc(stale_before),
        )
        with self._session() as session:
            result = session.execute(
                update(ReadingRow)
                .where(
                    ReadingRow.id == reading_id,
                    or_(ReadingRow.anchor_status.in_(_UNCLAIMED), abandoned),
                )
                .values(
                    anchor_status=AnchorStatus.anchoring.value,
                    anchor_claimed_at=_utcnow(),
                )
            )
            return result.rowcount == 1

    def mark_anchored(self, reading_id: int, signature: str) -> None:
        with self._session() as session:
            session.execute(
                update(ReadingRow)
                .where(ReadingRow.id == reading_id)
                .values(
                    anchor_status=AnchorStatus.anchored.value,
                    anchor_signature=signature,
                    anchor_claimed_at=None,
                )
            )
        logger.debug(
            "Anchor recorded",
            extra={"reading_id": reading_id, "anchor_status": AnchorStatus.anchored.value},
        )

    def mark_anchor_failed(self, reading_id: int) -> None:
        with self._session() as session:
            session.execute(
                update(ReadingRow)
                .where(ReadingRow.id == reading_id)
                .values(anchor_status=AnchorStatus.anchor_failed.value, anchor_claimed_at=None)
            )
        logger.debug(
            "Anchor failure recorded",
            extra={"reading_id": reading_id, "anchor_status": AnchorStatus.anchor_failed.value},
        )

    def pending_anchors(
        self,
        older_than: datetime,
        limit: int = 50,
        stale_before: Optional[datetime] = None,
    ) -> List[Reading]:
        """Readings without a ledger transaction, inserted before ``older_than``.

        Rows claimed by an in-flight submission are left out unless their claim
        predates ``stale_before``.
        """
        waiting = and_(
            ReadingRow.anchor_status.in_(_UNCLAIMED),
            ReadingRow.inserted_at <= as_utc(older_than),
        )
        if stale_before is not None:
            waiting = or_(
                waiting,
                and_(
                    ReadingRow.anchor_status == AnchorStatus.anchoring.value,
                    ReadingRow.anchor_claimed_at < as_utc(stale_before),
                ),
            )
        with self._session() as session:
            rows = session.execute(
                select(ReadingRow).where(waiting).order_by(ReadingRow.id).limit(limit)
            ).scalars()
            return [_to_reading(row) for row in rows]


@lru_cache
def build_default_store(url: Optional[str] = None) -> SqlStore:
    settings = get_settings()
    return SqlStore.from_url(settings.database_url if url is None else url)
