"""
Tests for the command line interface.
"""

from __future__ import annotations

import csv
import io
import json
from pathlib import Path

import pytest
import yaml

from iotsentinel.audit import AuditDatabase
from iotsentinel.cli import main
from iotsentinel.forwarding import SecurityEvent, SecurityEventType
from iotsentinel.registry.models import Device, RiskLevel


CAMERA = "AA:BB:CC:DD:EE:01"


@pytest.fixture
def populated(sample_config: Path, temp_dir: Path, make_observation, clock) -> Path:
    """Audit database at the configured path with one camera and two events."""
    db = AuditDatabase(temp_dir / "audit.db")
    device = Device.from_observation(make_observation())
    device.manufacturer = "Acme"
    device.model = "Cam1"
    device.device_type = "camera"
    device.risk_score = 0.87
    device.risk_level = RiskLevel.HIGH
    device.risk_factors = ["Unauthorized device"]
    device.applied_policy = "isolate-high-risk-cameras"
    db.upsert_device(device)
    db.log_event(SecurityEvent.for_device(
        SecurityEventType.NEW_DEVICE_DISCOVERED, device, clock.now(),
    ))
    db.log_event(SecurityEvent.for_device(
        SecurityEventType.VULNERABILITIES_FOUND, device, clock.advance(60), max_cvss=9.0,
    ))
    db.close()
    return sample_config


def run(capsys: pytest.CaptureFixture, *argv: str) -> tuple[int, str]:
    code = main(list(argv))
    return code, capsys.readouterr().out


class TestGeneral:
    """Top-level behavior."""

    def test_no_command_prints_help(self, capsys) -> None:
        code, out = run(capsys)

        assert code == 0
        assert "identify" in out

    def test_version(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert "iotsentinel" in capsys.readouterr().out

    def test_missing_config(self, temp_dir: Path, capsys) -> None:
        assert main(["-c", str(temp_dir / "absent.yaml"), "status"]) == 1
        assert "not found" in capsys.readouterr().err


class TestStoreCommands:
    """Commands reading the audit store."""

    def test_status(self, populated: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(populated), "--json", "status")

        assert code == 0
        data = json.loads(out)
        assert data["total_devices"] == 1
        assert data["total_events"] == 2
        assert data["risk_levels"]["high"] == 1

    def test_status_without_database(self, sample_config: Path, capsys) -> None:
        assert main(["-c", str(sample_config), "status"]) == 1
        assert "Audit database not found" in capsys.readouterr().err

    def test_devices_list(self, populated: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(populated), "devices", "list")

        assert code == 0
        assert CAMERA in out
        assert "isolate-high-risk-cameras" in out

    def test_devices_list_filtered(self, populated: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(populated), "--json", "devices", "list", "--risk", "low")

        assert code == 0
        assert json.loads(out) == []

    def test_devices_show(self, populated: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(populated), "--json", "devices", "show",
                        "aa:bb:cc:dd:ee:01")

        assert code == 0
        data = json.loads(out)
        assert data["model"] == "Cam1"
        assert data["snapshot"]["risk_factors"] == ["Unauthorized device"]

    def test_devices_show_missing(self, populated: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(populated), "devices", "show", "00:00:00:00:00:01")

        assert code == 1
        assert "Device not found" in out

    def test_events(self, populated: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(populated), "--json", "events",
                        "-t", "vulnerabilities_found")

        assert code == 0
        events = json.loads(out)
        assert len(events) == 1
        assert events[0]["details"] == {"max_cvss": 9.0}

    def test_events_since(self, populated: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(populated), "--json", "events", "--since", "2030-01-01")

        assert code == 0
        assert json.loads(out) == []

    def test_export_events_csv(self, populated: Path, temp_dir: Path, capsys) -> None:
        target = temp_dir / "events.csv"

        code, out = run(capsys, "-c", str(populated), "export", "events",
                        "--format", "csv", "-o", str(target))

        assert code == 0
        assert "Exported to" in out
        rows = list(csv.DictReader(io.StringIO(target.read_text())))
        assert {r["event_type"] for r in rows} == {"new_device_discovered", "vulnerabilities_found"}

    def test_export_devices_json(self, populated: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(populated), "export", "devices")

        assert code == 0
        assert json.loads(out)[0]["hardware_address"] == CAMERA


class TestPolicyCommands:
    """Policy show, validate and test."""

    def test_show(self, sample_config: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(sample_config), "--json", "policy", "show")

        assert code == 0
        assert [r["name"] for r in json.loads(out)["policies"]] == [
            "isolate-high-risk-cameras", "restrict-medium-cameras", "monitor-everything",
        ]

    def test_validate(self, sample_config: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(sample_config), "policy", "validate")

        assert code == 0
        assert "Policy valid: 3 rules loaded" in out

    def test_validate_reports_errors(
        self, sample_config: Path, sample_policy: Path, capsys
    ) -> None:
        with open(sample_policy, "w") as f:
            yaml.dump({"policies": [
                {"name": "dup", "priority": 1, "network_control": "monitor"},
                {"name": "dup", "priority": 2, "network_control": "monitor"},
            ]}, f)

        code, out = run(capsys, "-c", str(sample_config), "policy", "validate")

        assert code == 1
        assert "same name" in out

    def test_validate_parse_error(
        self, sample_config: Path, sample_policy: Path, capsys
    ) -> None:
        sample_policy.write_text("policies:\n  - network_control: explode\n")

        code, out = run(capsys, "-c", str(sample_config), "policy", "validate")

        assert code == 1
        assert "Policy validation failed" in out

    def test_test(self, sample_config: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(sample_config), "--json", "policy", "test",
                        "camera", "medium")

        assert code == 0
        data = json.loads(out)
        assert data["policy"]["name"] == "restrict-medium-cameras"
        assert data["policy"]["allowed_destinations"] == ["nvr.local"]


class TestOfflineCommands:
    """identify, catalogs and check-config."""

    def test_identify(self, sample_config: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(sample_config), "--json", "identify", CAMERA,
                        "-p", "HTTP", "--port", "80")

        assert code == 0
        data = json.loads(out)
        assert data["classification"]["model"] == "Cam1"
        assert data["classification"]["identified_by"] == "signature_match"
        assert data["assessment"]["risk_score"] == 0.87
        assert data["assessment"]["risk_level"] == "high"
        assert data["policy"]["name"] == "isolate-high-risk-cameras"
        assert data["catalogs_degraded"] is False

    def test_identify_by_banner(self, sample_config: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(sample_config), "identify", "AA:BB:CC:DD:EE:09",
                        "-p", "SSDP", "--port", "1900", "--banner", "80=Hikvision-Webs")

        assert code == 0
        assert "Manufacturer:   Hikvision" in out
        assert "banner_grab" in out

    def test_identify_bad_banner(self, sample_config: Path, capsys) -> None:
        assert main(["-c", str(sample_config), "identify", CAMERA, "--banner", "http"]) == 1
        assert "expected PORT=TEXT" in capsys.readouterr().err

    def test_catalogs(self, sample_config: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(sample_config), "--json", "catalogs")

        assert code == 0
        data = json.loads(out)
        assert data["degraded"] is False
        assert data["catalogs"]["fingerprints"]["entries"] == 2

    def test_catalogs_degraded(self, sample_config: Path, catalog_files, capsys) -> None:
        catalog_files["vulnerabilities"].unlink()

        code, out = run(capsys, "-c", str(sample_config), "catalogs")

        assert code == 1
        assert "DEGRADED" in out

    def test_check_config(self, sample_config: Path, capsys) -> None:
        code, out = run(capsys, "-c", str(sample_config), "check-config")

        assert code == 0
        assert "Configuration valid" in out

    def test_check_config_errors(self, temp_dir: Path, capsys) -> None:
        path = temp_dir / "bad.yaml"
        path.write_text("api:\n  port: 0\n")

        code, out = run(capsys, "-c", str(path), "check-config")

        assert code == 1
        assert "Invalid API port: 0" in out
