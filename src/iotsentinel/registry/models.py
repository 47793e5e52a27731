"""
Device registry data models.

Defines observations delivered by the capture layer and the device records
built from them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


UNKNOWN = "Unknown"

_HEX_ONLY = re.compile(r"[^0-9A-Fa-f]")


def normalize_hardware_address(address: str) -> str:
    """
    Normalize a MAC address to upper-case colon form.

    Accepts colon, dash, dot or bare hex notation. Values that do not contain
    exactly 12 hex digits are returned stripped and upper-cased.
    """
    digits = _HEX_ONLY.sub("", address)
    if len(digits) != 12:
        return address.strip().upper()
    digits = digits.upper()
    return ":".join(digits[i:i + 2] for i in range(0, 12, 2))


class IdentificationMethod(str, Enum):
    """How a device classification was obtained."""

    SIGNATURE_MATCH = "signature_match"
    MAC_LOOKUP = "mac_lookup"
    BANNER_GRAB = "banner_grab"
    UNIDENTIFIED = "unidentified"

    def __str__(self) -> str:
        return self.value


class RiskLevel(str, Enum):
    """Categorical risk level derived from the risk score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    def __str__(self) -> str:
        return self.value


@dataclass
class TrafficStats:
    """Byte and packet counters (either a delta or a cumulative total)."""

    bytes_in: int = 0
    bytes_out: int = 0
    packets_in: int = 0
    packets_out: int = 0

    @property
    def total_bytes(self) -> int:
        return self.bytes_in + self.bytes_out

    @property
    def total_packets(self) -> int:
        return self.packets_in + self.packets_out

    def add(self, other: TrafficStats) -> None:
        """Accumulate another set of counters into this one."""
        self.bytes_in += other.bytes_in
        self.bytes_out += other.bytes_out
        self.packets_in += other.packets_in
        self.packets_out += other.packets_out

    def to_dict(self) -> dict[str, int]:
        return {
            "bytes_in": self.bytes_in,
            "bytes_out": self.bytes_out,
            "packets_in": self.packets_in,
            "packets_out": self.packets_out,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TrafficStats:
        data = data or {}
        return cls(
            bytes_in=int(data.get("bytes_in", 0)),
            bytes_out=int(data.get("bytes_out", 0)),
            packets_in=int(data.get("packets_in", 0)),
            packets_out=int(data.get("packets_out", 0)),
        )


@dataclass
class Observation:
    """
    Normalized observation event from the capture layer.

    The capture backend decodes frames and protocol payloads; the pipeline
    only ever sees this shape.
    """

    hardware_address: str
    network_address: str | None
    timestamp: datetime
    protocols: set[str] = field(default_factory=set)
    ports: set[int] = field(default_factory=set)
    traffic_delta: TrafficStats = field(default_factory=TrafficStats)
    destinations: set[str] = field(default_factory=set)
    banners: dict[int, str] = field(default_factory=dict)
    interface: str | None = None

    def __post_init__(self) -> None:
        self.hardware_address = normalize_hardware_address(self.hardware_address)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Observation:
        """Create from a capture backend's dictionary payload."""
        timestamp = data["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            hardware_address=data["hardware_address"],
            network_address=data.get("network_address"),
            timestamp=timestamp,
            protocols=set(data.get("protocols", ())),
            ports={int(p) for p in data.get("ports", ())},
            traffic_delta=TrafficStats.from_dict(data.get("traffic_delta")),
            destinations=set(data.get("destinations", ())),
            banners={int(k): v for k, v in (data.get("banners") or {}).items()},
            interface=data.get("interface"),
        )


@dataclass(frozen=True)
class VulnerabilityRecord:
    """Known vulnerability catalog entry."""

    manufacturer: str
    model: str
    cvss: float
    firmware: str | None = None
    cve: str | None = None
    description: str = ""

    @property
    def key(self) -> str:
        """Stable identity used to tell newly found entries from known ones."""
        if self.cve:
            return self.cve
        return f"{self.manufacturer}|{self.model}|{self.firmware or '*'}|{self.cvss}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "manufacturer": self.manufacturer,
            "model": self.model,
            "firmware": self.firmware,
            "cvss": self.cvss,
            "cve": self.cve,
            "description": self.description,
        }


@dataclass
class Device:
    """
    One physical network endpoint.

    The hardware address is the identity key and never changes after
    creation. Everything else is mutated by the pipeline and the periodic
    workers, always through the registry.
    """

    hardware_address: str
    network_address: str | None
    first_seen: datetime
    last_seen: datetime

    # Classification
    manufacturer: str = UNKNOWN
    model: str = UNKNOWN
    device_type: str = UNKNOWN
    firmware_version: str | None = None
    identification_method: IdentificationMethod = IdentificationMethod.UNIDENTIFIED

    # Observation state
    protocols: set[str] = field(default_factory=set)
    ports: set[int] = field(default_factory=set)
    traffic: TrafficStats = field(default_factory=TrafficStats)
    connection_targets: set[str] = field(default_factory=set)
    banners: dict[int, str] = field(default_factory=dict)
    observation_count: int = 0

    # Active scan results
    open_ports: set[int] = field(default_factory=set)
    services: dict[int, str] = field(default_factory=dict)
    default_credentials: bool | None = None
    last_active_scan: datetime | None = None

    # Risk state
    authorized: bool = False
    risk_score: float = 0.0
    risk_level: RiskLevel = RiskLevel.LOW
    risk_factors: list[str] = field(default_factory=list)
    vulnerabilities: list[VulnerabilityRecord] = field(default_factory=list)
    last_vulnerability_check: datetime | None = None

    # Policy state
    applied_policy: str | None = None
    last_enforcement: datetime | None = None

    @property
    def is_identified(self) -> bool:
        return self.identification_method != IdentificationMethod.UNIDENTIFIED

    @property
    def all_ports(self) -> set[int]:
        """Passively observed ports plus ports found by active scans."""
        return self.ports | self.open_ports

    @property
    def max_cvss(self) -> float | None:
        if not self.vulnerabilities:
            return None
        return max(v.cvss for v in self.vulnerabilities)

    def apply_observation(self, observation: Observation) -> None:
        """Merge a subsequent observation into the observation state."""
        if observation.network_address:
            self.network_address = observation.network_address
        if observation.timestamp > self.last_seen:
            self.last_seen = observation.timestamp
        self.protocols.update(observation.protocols)
        self.ports.update(observation.ports)
        self.traffic.add(observation.traffic_delta)
        self.connection_targets.update(observation.destinations)
        self.banners.update(observation.banners)
        self.observation_count += 1

    @classmethod
    def from_observation(cls, observation: Observation) -> Device:
        """Create a device record from its first observation."""
        device = cls(
            hardware_address=observation.hardware_address,
            network_address=observation.network_address,
            first_seen=observation.timestamp,
            last_seen=observation.timestamp,
        )
        device.apply_observation(observation)
        return device

    def to_dict(self) -> dict[str, Any]:
        """Convert to the report/export shape."""
        return {
            "hardware_address": self.hardware_address,
            "network_address": self.network_address,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "device_type": self.device_type,
            "firmware_version": self.firmware_version,
            "identification_method": self.identification_method.value,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "protocols": sorted(self.protocols),
            "ports": sorted(self.all_ports),
            "traffic": self.traffic.to_dict(),
            "authorized": self.authorized,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "risk_factors": list(self.risk_factors),
            "vulnerabilities": [v.to_dict() for v in self.vulnerabilities],
            "last_vulnerability_check": (
                self.last_vulnerability_check.isoformat()
                if self.last_vulnerability_check else None
            ),
            "last_active_scan": (
                self.last_active_scan.isoformat() if self.last_active_scan else None
            ),
            "applied_policy": self.applied_policy,
            "last_enforcement": (
                self.last_enforcement.isoformat() if self.last_enforcement else None
            ),
        }
