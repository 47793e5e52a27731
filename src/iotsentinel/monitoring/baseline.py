"""
Behavioral baseline tracking.

Keeps a rolling window of traffic and connection snapshots per device and
flags deviations from it. A device moves through three states:

    unseen      no samples yet
    baselining  one sample, nothing to compare against
    monitored   two or more samples; every new sample is checked

Baselines are used for anomaly detection only, never for identification.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from iotsentinel.registry.models import Device


logger = logging.getLogger(__name__)


class BaselineState(str, Enum):
    """Per-device baseline state."""

    UNSEEN = "unseen"
    BASELINING = "baselining"
    MONITORED = "monitored"


class AnomalyKind(str, Enum):
    TRAFFIC_SPIKE = "traffic_spike"
    NEW_CONNECTION_TARGET = "new_connection_target"


@dataclass(frozen=True)
class TrafficSnapshot:
    """Cumulative traffic counters at a sampling tick."""

    timestamp: datetime
    bytes_in: int
    bytes_out: int
    packets_in: int
    packets_out: int

    @property
    def total_bytes(self) -> int:
        return self.bytes_in + self.bytes_out

    @classmethod
    def of(cls, device: Device, timestamp: datetime) -> TrafficSnapshot:
        return cls(
            timestamp=timestamp,
            bytes_in=device.traffic.bytes_in,
            bytes_out=device.traffic.bytes_out,
            packets_in=device.traffic.packets_in,
            packets_out=device.traffic.packets_out,
        )


@dataclass(frozen=True)
class ConnectionSnapshot:
    """Connection targets known at a sampling tick."""

    timestamp: datetime
    targets: frozenset[str]


@dataclass
class Anomaly:
    """Deviation from a device's baseline."""

    hardware_address: str
    timestamp: datetime
    kind: AnomalyKind
    detail: str
    value: float | None = None
    threshold: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "hardware_address": self.hardware_address,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "detail": self.detail,
            "value": self.value,
            "threshold": self.threshold,
        }


@dataclass
class DeviceBaseline:
    """Rolling sample windows for one device (oldest evicted first)."""

    window_size: int
    traffic: deque[TrafficSnapshot] = field(init=False)
    connections: deque[ConnectionSnapshot] = field(init=False)

    def __post_init__(self) -> None:
        self.traffic = deque(maxlen=self.window_size)
        self.connections = deque(maxlen=self.window_size)

    @property
    def sample_count(self) -> int:
        return len(self.traffic)

    @property
    def known_targets(self) -> frozenset[str]:
        known: set[str] = set()
        for snapshot in self.connections:
            known.update(snapshot.targets)
        return frozenset(known)


@dataclass
class MonitoringSettings:
    """Per-device monitoring configuration set by enforcement."""

    enhanced: bool = False
    alert_threshold: int | None = None


class BaselineTracker:
    """
    Tracks per-device behavioral baselines.

    Enhanced monitoring tightens the traffic threshold for a device by
    ``enhanced_factor``; it does not change the state machine.
    """

    def __init__(
        self,
        window_size: int = 10,
        traffic_threshold: int = 10_000_000,
        enhanced_factor: float = 0.5,
    ) -> None:
        """
        Initialize the tracker.

        Args:
            window_size: Samples kept per device
            traffic_threshold: Default bytes-per-sample delta that counts as a spike
            enhanced_factor: Threshold multiplier for enhanced-monitoring devices
        """
        if window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        self.window_size = window_size
        self.traffic_threshold = traffic_threshold
        self.enhanced_factor = enhanced_factor
        self._baselines: dict[str, DeviceBaseline] = {}
        self._settings: dict[str, MonitoringSettings] = {}

    def state(self, hardware_address: str) -> BaselineState:
        baseline = self._baselines.get(hardware_address)
        if baseline is None or baseline.sample_count == 0:
            return BaselineState.UNSEEN
        if baseline.sample_count == 1:
            return BaselineState.BASELINING
        return BaselineState.MONITORED

    def configure(
        self,
        hardware_address: str,
        enhanced: bool = False,
        alert_threshold: int | None = None,
    ) -> None:
        """Set monitoring options for a device (idempotent)."""
        self._settings[hardware_address] = MonitoringSettings(
            enhanced=enhanced,
            alert_threshold=alert_threshold,
        )
        logger.debug(
            "Monitoring for %s: enhanced=%s threshold=%s",
            hardware_address, enhanced, self.threshold_for(hardware_address),
        )

    def settings(self, hardware_address: str) -> MonitoringSettings:
        return self._settings.get(hardware_address, MonitoringSettings())

    def is_enhanced(self, hardware_address: str) -> bool:
        return self.settings(hardware_address).enhanced

    def threshold_for(self, hardware_address: str) -> float:
        """Effective traffic-spike threshold in bytes per sample."""
        settings = self.settings(hardware_address)
        threshold = float(
            settings.alert_threshold
            if settings.alert_threshold is not None
            else self.traffic_threshold
        )
        if settings.enhanced:
            threshold *= self.enhanced_factor
        return threshold

    def get_baseline(self, hardware_address: str) -> DeviceBaseline | None:
        return self._baselines.get(hardware_address)

    def sample(self, device: Device, timestamp: datetime) -> list[Anomaly]:
        """
        Record a sampling tick for a device and check it against the baseline.

        Args:
            device: Current device state (traffic counters are cumulative)
            timestamp: Sampling time

        Returns:
            Anomalies found (empty while the baseline is being established)
        """
        key = device.hardware_address
        traffic = TrafficSnapshot.of(device, timestamp)
        connections = ConnectionSnapshot(timestamp, frozenset(device.connection_targets))

        baseline = self._baselines.get(key)
        if baseline is None:
            baseline = DeviceBaseline(window_size=self.window_size)
            self._baselines[key] = baseline

        anomalies: list[Anomaly] = []
        if baseline.sample_count > 0:
            anomalies = self._check(key, baseline, traffic, connections)

        baseline.traffic.append(traffic)
        baseline.connections.append(connections)

        for anomaly in anomalies:
            logger.warning("Anomaly on %s: %s", key, anomaly.detail)
        return anomalies

    def _check(
        self,
        key: str,
        baseline: DeviceBaseline,
        traffic: TrafficSnapshot,
        connections: ConnectionSnapshot,
    ) -> list[Anomaly]:
        anomalies = []

        previous = baseline.traffic[-1]
        delta = traffic.total_bytes - previous.total_bytes
        threshold = self.threshold_for(key)
        if delta > threshold:
            anomalies.append(Anomaly(
                hardware_address=key,
                timestamp=traffic.timestamp,
                kind=AnomalyKind.TRAFFIC_SPIKE,
                detail=f"Traffic delta {delta} bytes exceeds threshold {threshold:.0f}",
                value=float(delta),
                threshold=threshold,
            ))

        for target in sorted(connections.targets - baseline.known_targets):
            anomalies.append(Anomaly(
                hardware_address=key,
                timestamp=connections.timestamp,
                kind=AnomalyKind.NEW_CONNECTION_TARGET,
                detail=f"New connection target {target}",
            ))

        return anomalies

    def forget(self, hardware_address: str) -> None:
        """Drop all baseline state for a device."""
        self._baselines.pop(hardware_address, None)
        self._settings.pop(hardware_address, None)

    def get_statistics(self) -> dict[str, int]:
        counts = {state.value: 0 for state in BaselineState}
        for key in self._baselines:
            counts[self.state(key).value] += 1
        counts["enhanced"] = sum(1 for s in self._settings.values() if s.enhanced)
        return counts
