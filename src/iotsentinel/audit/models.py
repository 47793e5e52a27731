"""
Audit database models.

SQLAlchemy ORM models for device snapshots and security events.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class DeviceRecord(Base):
    """
    Latest known state of a network device.

    One row per hardware address, overwritten on every snapshot.
    """

    __tablename__ = "devices"

    id = Column(Integer, primary_key=True)
    hardware_address = Column(String(17), unique=True, nullable=False, index=True)
    network_address = Column(String(64), nullable=True)
    manufacturer = Column(String(256), nullable=False, default="Unknown")
    model = Column(String(256), nullable=False, default="Unknown")
    device_type = Column(String(64), nullable=False, default="Unknown")
    firmware_version = Column(String(64), nullable=True)
    identification_method = Column(String(32), nullable=False, default="unidentified")
    authorized = Column(Boolean, nullable=False, default=False)
    risk_score = Column(Float, nullable=False, default=0.0)
    risk_level = Column(String(16), nullable=False, default="low", index=True)
    applied_policy = Column(String(256), nullable=True)
    first_seen = Column(DateTime, default=_utc_now, nullable=False)
    last_seen = Column(DateTime, default=_utc_now, nullable=False)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)
    snapshot = Column(Text, nullable=True)  # JSON blob of the report shape

    # Relationships
    events = relationship("EventRecord", back_populates="device")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "hardware_address": self.hardware_address,
            "network_address": self.network_address,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "device_type": self.device_type,
            "firmware_version": self.firmware_version,
            "identification_method": self.identification_method,
            "authorized": self.authorized,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level,
            "applied_policy": self.applied_policy,
            "first_seen": _iso(self.first_seen),
            "last_seen": _iso(self.last_seen),
            "updated_at": _iso(self.updated_at),
        }

    @property
    def snapshot_data(self) -> dict[str, Any]:
        return json.loads(self.snapshot) if self.snapshot else {}


class EventRecord(Base):
    """
    Security event.

    Append-only: no updates or deletes allowed.
    """

    __tablename__ = "events"

    id = Column(Integer, primary_key=True)
    timestamp = Column(DateTime, default=_utc_now, nullable=False, index=True)
    hardware_address = Column(
        String(17),
        ForeignKey("devices.hardware_address"),
        nullable=False,
        index=True,
    )
    event_type = Column(String(32), nullable=False, index=True)
    risk_level = Column(String(16), nullable=True)
    risk_score = Column(Float, nullable=True)
    applied_policy = Column(String(256), nullable=True)
    details = Column(Text, nullable=True)  # JSON blob

    # Relationships
    device = relationship("DeviceRecord", back_populates="events")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "timestamp": _iso(self.timestamp),
            "hardware_address": self.hardware_address,
            "event_type": self.event_type,
            "risk_level": self.risk_level,
            "risk_score": self.risk_score,
            "applied_policy": self.applied_policy,
            "details": json.loads(self.details) if self.details else {},
        }


# Append-only triggers (executed after create_all, one statement each)
APPEND_ONLY_TRIGGERS = (
    """
    CREATE TRIGGER IF NOT EXISTS no_delete_events
    BEFORE DELETE ON events
    BEGIN
        SELECT RAISE(ABORT, 'Deletion not permitted on audit log');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS no_update_events
    BEFORE UPDATE ON events
    BEGIN
        SELECT RAISE(ABORT, 'Updates not permitted on audit log');
    END
    """,
)
