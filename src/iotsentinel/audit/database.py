"""
Audit Database Operations.

Persists device snapshots and an append-only log of security events.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Generator

from sqlalchemy import create_engine, event, func, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from iotsentinel.audit.models import APPEND_ONLY_TRIGGERS, Base, DeviceRecord, EventRecord
from iotsentinel.registry.models import RiskLevel, normalize_hardware_address

if TYPE_CHECKING:
    from iotsentinel.forwarding.events import SecurityEvent
    from iotsentinel.registry.models import Device


logger = logging.getLogger(__name__)


# Enable SQLite foreign keys
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key support for SQLite."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _naive_utc(value: datetime) -> datetime:
    """SQLite DateTime columns store naive values; keep them in UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class AuditDatabase:
    """
    High-level interface for audit database operations.

    Device rows are upserted by hardware address; event rows can only be
    inserted (triggers reject UPDATE and DELETE).
    """

    def __init__(
        self,
        db_path: str | Path,
        wal_mode: bool = True,
        create_if_missing: bool = True,
    ) -> None:
        """
        Initialize the audit database.

        Args:
            db_path: Path to SQLite database file
            wal_mode: Enable WAL mode for better concurrency
            create_if_missing: Create database if it doesn't exist
        """
        self.db_path = Path(db_path)

        if create_if_missing:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=False,
            pool_pre_ping=True,
        )
        self.Session = sessionmaker(bind=self.engine)

        if create_if_missing or not self.db_path.exists():
            self._init_schema()

        if wal_mode:
            with self.engine.connect() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.commit()

    def _init_schema(self) -> None:
        """Initialize database schema and triggers."""
        Base.metadata.create_all(self.engine)

        with self.engine.connect() as conn:
            for statement in APPEND_ONLY_TRIGGERS:
                conn.execute(text(statement))
            conn.commit()

        logger.info("Audit database initialized: %s", self.db_path)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Get a database session context manager.

        Yields:
            SQLAlchemy Session object
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================================
    # Device Operations
    # =========================================================================

    def upsert_device(self, device: Device) -> DeviceRecord:
        """
        Insert or overwrite the snapshot of a device.

        Args:
            device: Device copy from the registry

        Returns:
            Stored DeviceRecord (detached)
        """
        with self.session() as session:
            record = session.query(DeviceRecord).filter(
                DeviceRecord.hardware_address == device.hardware_address
            ).first()

            if record is None:
                record = DeviceRecord(
                    hardware_address=device.hardware_address,
                    first_seen=_naive_utc(device.first_seen),
                )
                session.add(record)
                logger.debug("Added device %s to audit database", device.hardware_address)

            record.network_address = device.network_address
            record.manufacturer = device.manufacturer
            record.model = device.model
            record.device_type = device.device_type
            record.firmware_version = device.firmware_version
            record.identification_method = device.identification_method.value
            record.authorized = device.authorized
            record.risk_score = device.risk_score
            record.risk_level = device.risk_level.value
            record.applied_policy = device.applied_policy
            record.last_seen = _naive_utc(device.last_seen)
            record.snapshot = json.dumps(device.to_dict())

            session.commit()
            session.refresh(record)
            session.expunge(record)
            return record

    def get_device(self, hardware_address: str) -> DeviceRecord | None:
        """
        Get a device by hardware address.

        Args:
            hardware_address: Device MAC address (any notation)

        Returns:
            DeviceRecord or None if not found
        """
        key = normalize_hardware_address(hardware_address)
        with self.session() as session:
            record = session.query(DeviceRecord).filter(
                DeviceRecord.hardware_address == key
            ).first()
            if record:
                session.expunge(record)
            return record

    def get_all_devices(
        self,
        risk_level: RiskLevel | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[DeviceRecord]:
        """
        Get all devices, optionally filtered by risk level.

        Args:
            risk_level: Filter by risk level
            limit: Maximum number of results
            offset: Number of results to skip

        Returns:
            Devices ordered by risk score, highest first
        """
        with self.session() as session:
            query = session.query(DeviceRecord)

            if risk_level is not None:
                if isinstance(risk_level, RiskLevel):
                    risk_level = risk_level.value
                query = query.filter(DeviceRecord.risk_level == risk_level.lower())

            query = query.order_by(
                DeviceRecord.risk_score.desc(), DeviceRecord.hardware_address
            )
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)

            records = query.all()
            for r in records:
                session.expunge(r)
            return records

    # =========================================================================
    # Event Operations
    # =========================================================================

    def log_event(self, security_event: SecurityEvent) -> EventRecord:
        """
        Append a security event.

        Creates a minimal device row from the event when the device has not
        been snapshotted yet.

        Args:
            security_event: Event to record

        Returns:
            Created EventRecord (detached)
        """
        key = security_event.hardware_address
        timestamp = _naive_utc(security_event.timestamp)

        with self.session() as session:
            record = session.query(DeviceRecord).filter(
                DeviceRecord.hardware_address == key
            ).first()
            if record is None:
                session.add(DeviceRecord(
                    hardware_address=key,
                    network_address=security_event.network_address,
                    manufacturer=security_event.manufacturer,
                    model=security_event.model,
                    device_type=security_event.device_type,
                    identification_method=security_event.identification_method,
                    risk_score=security_event.risk_score,
                    risk_level=security_event.risk_level,
                    applied_policy=security_event.applied_policy,
                    first_seen=timestamp,
                    last_seen=timestamp,
                ))

            record_event = EventRecord(
                timestamp=timestamp,
                hardware_address=key,
                event_type=security_event.event_type.value,
                risk_level=security_event.risk_level,
                risk_score=security_event.risk_score,
                applied_policy=security_event.applied_policy,
                details=json.dumps(security_event.details, default=str),
            )
            session.add(record_event)
            session.commit()
            session.refresh(record_event)

            logger.debug("Logged event: %s %s", record_event.event_type, key)

            session.expunge(record_event)
            return record_event

    def get_events(
        self,
        hardware_address: str | None = None,
        event_type: str | None = None,
        since: datetime | None = None,
        limit: int | None = 100,
        offset: int = 0,
    ) -> list[EventRecord]:
        """
        Query events with filters.

        Args:
            hardware_address: Filter by device
            event_type: Filter by event type
            since: Events at or after this time
            limit: Maximum results
            offset: Skip results

        Returns:
            Matching events, newest first
        """
        with self.session() as session:
            query = session.query(EventRecord)

            if hardware_address:
                key = normalize_hardware_address(hardware_address)
                query = query.filter(EventRecord.hardware_address == key)
            if event_type:
                query = query.filter(EventRecord.event_type == str(event_type))
            if since:
                query = query.filter(EventRecord.timestamp >= _naive_utc(since))

            query = query.order_by(EventRecord.timestamp.desc(), EventRecord.id.desc())

            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)

            events = query.all()
            for e in events:
                session.expunge(e)
            return events

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_statistics(self) -> dict[str, Any]:
        """
        Get database statistics.

        Returns:
            Dictionary with statistics
        """
        with self.session() as session:
            total_devices = session.query(func.count(DeviceRecord.id)).scalar()
            total_events = session.query(func.count(EventRecord.id)).scalar()

            risk_counts = {}
            for level in RiskLevel:
                risk_counts[level.value] = session.query(func.count(DeviceRecord.id)).filter(
                    DeviceRecord.risk_level == level.value
                ).scalar()

            event_counts = dict(
                session.query(EventRecord.event_type, func.count(EventRecord.id))
                .group_by(EventRecord.event_type)
                .all()
            )

            unauthorized = session.query(func.count(DeviceRecord.id)).filter(
                DeviceRecord.authorized.is_(False)
            ).scalar()

            return {
                "total_devices": total_devices,
                "total_events": total_events,
                "risk_levels": risk_counts,
                "event_types": event_counts,
                "unauthorized_devices": unauthorized,
                "database_size_bytes": self.db_path.stat().st_size if self.db_path.exists() else 0,
            }

    def close(self) -> None:
        """Close database connections."""
        self.engine.dispose()
