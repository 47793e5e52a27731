"""
Tests for the audit database.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from iotsentinel.audit import AuditDatabase, EventRecord
from iotsentinel.forwarding import SecurityEvent, SecurityEventType
from iotsentinel.registry.models import Device, RiskLevel


CAMERA = "AA:BB:CC:DD:EE:01"
PLUG = "AA:BB:CC:DD:EE:02"


@pytest.fixture
def test_db(temp_dir: Path) -> Generator[AuditDatabase, None, None]:
    db = AuditDatabase(temp_dir / "audit.db")
    yield db
    db.close()


@pytest.fixture
def camera(make_observation) -> Device:
    device = Device.from_observation(make_observation(CAMERA))
    device.manufacturer = "Acme"
    device.model = "Cam1"
    device.device_type = "camera"
    device.risk_score = 0.87
    device.risk_level = RiskLevel.HIGH
    device.applied_policy = "isolate-high-risk-cameras"
    return device


def event_for(device: Device, timestamp, event_type=SecurityEventType.NEW_DEVICE_DISCOVERED,
              **details) -> SecurityEvent:
    return SecurityEvent.for_device(event_type, device, timestamp, **details)


class TestDevices:
    """Device snapshots."""

    def test_create_database(self, temp_dir: Path) -> None:
        db_path = temp_dir / "nested" / "audit.db"
        db = AuditDatabase(db_path)

        assert db_path.exists()
        db.close()

    def test_upsert_overwrites(self, test_db: AuditDatabase, camera: Device, clock) -> None:
        test_db.upsert_device(camera)

        camera.risk_level = RiskLevel.MEDIUM
        camera.risk_score = 0.6
        camera.last_seen = clock.advance(hours=1)
        test_db.upsert_device(camera)

        records = test_db.get_all_devices()
        assert len(records) == 1
        assert records[0].risk_level == "medium"
        assert records[0].first_seen < records[0].last_seen
        assert records[0].snapshot_data["risk_score"] == 0.6

    def test_get_device_any_notation(self, test_db: AuditDatabase, camera: Device) -> None:
        test_db.upsert_device(camera)

        record = test_db.get_device("aa-bb-cc-dd-ee-01")

        assert record is not None
        assert record.manufacturer == "Acme"
        assert record.to_dict()["applied_policy"] == "isolate-high-risk-cameras"

    def test_get_device_not_found(self, test_db: AuditDatabase) -> None:
        assert test_db.get_device(PLUG) is None

    def test_filter_and_order(
        self, test_db: AuditDatabase, camera: Device, make_observation
    ) -> None:
        plug = Device.from_observation(make_observation(PLUG))
        test_db.upsert_device(plug)
        test_db.upsert_device(camera)

        assert [r.hardware_address for r in test_db.get_all_devices()] == [CAMERA, PLUG]
        assert [r.hardware_address for r in test_db.get_all_devices(RiskLevel.LOW)] == [PLUG]
        assert [r.hardware_address for r in test_db.get_all_devices("HIGH")] == [CAMERA]
        assert len(test_db.get_all_devices(limit=1)) == 1


class TestEvents:
    """Append-only event log."""

    def test_log_event_creates_device_row(
        self, test_db: AuditDatabase, camera: Device, clock
    ) -> None:
        record = test_db.log_event(event_for(camera, clock.now(), policy="isolate-high-risk-cameras"))

        assert isinstance(record, EventRecord)
        assert record.to_dict()["details"] == {"policy": "isolate-high-risk-cameras"}
        device = test_db.get_device(CAMERA)
        assert device.risk_level == "high"

    def test_query_filters(self, test_db: AuditDatabase, camera: Device, clock) -> None:
        start = clock.now()
        test_db.log_event(event_for(camera, start))
        test_db.log_event(event_for(
            camera, clock.advance(60), SecurityEventType.VULNERABILITIES_FOUND, max_cvss=9.0,
        ))
        test_db.log_event(event_for(
            camera, clock.advance(60), SecurityEventType.ANOMALY_DETECTED, kind="traffic_spike",
        ))

        events = test_db.get_events()
        assert [e.event_type for e in events] == [
            "anomaly_detected", "vulnerabilities_found", "new_device_discovered",
        ]

        vulns = test_db.get_events(event_type="vulnerabilities_found")
        assert len(vulns) == 1
        assert vulns[0].to_dict()["details"]["max_cvss"] == 9.0

        recent = test_db.get_events(since=start + timedelta(seconds=60))
        assert len(recent) == 2

        assert test_db.get_events(hardware_address=PLUG) == []
        assert len(test_db.get_events(hardware_address="aabb.ccdd.ee01", limit=1)) == 1

    def test_updates_rejected(self, test_db: AuditDatabase, camera: Device, clock) -> None:
        test_db.log_event(event_for(camera, clock.now()))

        with pytest.raises(DBAPIError, match="not permitted"):
            with test_db.session() as session:
                session.execute(text("UPDATE events SET risk_level = 'low'"))

    def test_deletes_rejected(self, test_db: AuditDatabase, camera: Device, clock) -> None:
        test_db.log_event(event_for(camera, clock.now()))

        with pytest.raises(DBAPIError, match="not permitted"):
            with test_db.session() as session:
                session.execute(text("DELETE FROM events"))

        assert len(test_db.get_events()) == 1


class TestStatistics:
    """Database statistics."""

    def test_statistics(self, test_db: AuditDatabase, camera: Device, clock, make_observation) -> None:
        test_db.upsert_device(camera)
        test_db.upsert_device(Device.from_observation(make_observation(PLUG)))
        test_db.log_event(event_for(camera, clock.now()))
        test_db.log_event(event_for(camera, clock.now(), SecurityEventType.ENFORCEMENT_FAILED))

        stats = test_db.get_statistics()

        assert stats["total_devices"] == 2
        assert stats["total_events"] == 2
        assert stats["risk_levels"] == {"low": 1, "medium": 0, "high": 1}
        assert stats["event_types"] == {"new_device_discovered": 1, "enforcement_failed": 1}
        assert stats["unauthorized_devices"] == 2
        assert stats["database_size_bytes"] > 0
