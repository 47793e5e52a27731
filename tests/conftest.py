"""
Pytest configuration and shared fixtures for IoT Sentinel tests.
"""

from __future__ import annotations

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Generator

import pytest
import yaml

from iotsentinel.catalog.models import (
    AuthorizedDevices,
    CatalogSet,
    FingerprintCatalog,
    FingerprintEntry,
    VulnerabilityCatalog,
)
from iotsentinel.clock import ManualClock
from iotsentinel.registry.models import Observation, TrafficStats, VulnerabilityRecord


START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

CAMERA_MAC = "AA:BB:CC:DD:EE:01"
AUTHORIZED_MAC = "AA:BB:CC:00:00:01"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock starting at a fixed instant."""
    return ManualClock(START)


@pytest.fixture
def make_observation(clock: ManualClock) -> Callable[..., Observation]:
    """Factory for observations stamped with the manual clock."""

    def _make(
        hardware_address: str = CAMERA_MAC,
        protocols: set[str] | None = None,
        ports: set[int] | None = None,
        **kwargs: Any,
    ) -> Observation:
        kwargs.setdefault("network_address", "192.168.1.50")
        kwargs.setdefault("timestamp", clock.now())
        return Observation(
            hardware_address=hardware_address,
            protocols={"HTTP"} if protocols is None else protocols,
            ports={80} if ports is None else ports,
            **kwargs,
        )

    return _make


@pytest.fixture
def catalogs() -> CatalogSet:
    """In-memory catalogs with one camera signature and one Acme/Cam1 vulnerability."""
    return CatalogSet(
        fingerprints=FingerprintCatalog(signatures={
            "HTTP|80": FingerprintEntry("Acme", "Cam1", "camera"),
            "HTTPS|MQTT|443|1883": FingerprintEntry("Acme", "Plug2", "smart_plug"),
        }),
        vulnerabilities=VulnerabilityCatalog(records=[
            VulnerabilityRecord("Acme", "Cam1", cvss=9.0, cve="CVE-2023-0001"),
        ]),
        authorized=AuthorizedDevices.of([AUTHORIZED_MAC]),
    )


@pytest.fixture
def catalog_files(temp_dir: Path) -> dict[str, Path]:
    """Catalog files on disk matching the ``catalogs`` fixture."""
    documents = {
        "fingerprints": {
            "signatures": {
                "HTTP|80": {"manufacturer": "Acme", "model": "Cam1", "device_type": "camera"},
                "443|1883|MQTT|HTTPS": {
                    "manufacturer": "Acme", "model": "Plug2", "device_type": "smart_plug",
                },
            },
        },
        "vulnerabilities": {
            "vulnerabilities": [
                {"manufacturer": "Acme", "model": "Cam1", "cvss": 9.0, "cve": "CVE-2023-0001"},
            ],
        },
        "authorized": {"authorized": [AUTHORIZED_MAC]},
    }
    paths = {}
    for name, document in documents.items():
        path = temp_dir / f"{name}.yaml"
        with open(path, "w") as f:
            yaml.dump(document, f)
        paths[name] = path
    return paths


@pytest.fixture
def sample_policy(temp_dir: Path) -> Path:
    """Create a sample policy file."""
    policy_path = temp_dir / "policy.yaml"
    policy_data = {
        "policies": [
            {
                "name": "isolate-high-risk-cameras",
                "priority": 1,
                "device_types": ["camera"],
                "risk_levels": ["high"],
                "network_control": "isolate",
                "enhanced_monitoring": True,
                "remediation": "notify_admin",
            },
            {
                "name": "restrict-medium-cameras",
                "priority": 5,
                "device_types": ["camera"],
                "risk_levels": ["medium"],
                "network_control": "restrict",
                "allowed_destinations": ["nvr.local"],
            },
            {
                "name": "monitor-everything",
                "priority": 100,
                "network_control": "monitor",
            },
        ]
    }
    with open(policy_path, "w") as f:
        yaml.dump(policy_data, f)
    return policy_path


@pytest.fixture
def sample_config(temp_dir: Path, sample_policy: Path, catalog_files: dict[str, Path]) -> Path:
    """Create a sample configuration file."""
    config_path = temp_dir / "sentinel.yaml"
    config_data = {
        "daemon": {"log_level": "debug"},
        "capture": {"interfaces": ["eth0", "wlan0"], "queue_size": 50},
        "catalogs": {
            "fingerprints": str(catalog_files["fingerprints"]),
            "vulnerabilities": str(catalog_files["vulnerabilities"]),
            "authorized_devices": str(catalog_files["authorized"]),
        },
        "policy": {"rules_file": str(sample_policy)},
        "database": {"enabled": True, "path": str(temp_dir / "audit.db")},
        "api": {"enabled": False, "port": 8080},
        "risk": {"type_profiles": {"camera": 2}},
    }
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
def heavy_traffic() -> TrafficStats:
    """Traffic delta large enough to trip the default spike threshold."""
    return TrafficStats(bytes_in=8_000_000, bytes_out=4_000_000, packets_in=9000, packets_out=5000)
