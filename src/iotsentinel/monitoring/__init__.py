"""
Behavioral Monitoring.

Rolling per-device baselines and anomaly detection.
"""

from iotsentinel.monitoring.baseline import (
    Anomaly,
    AnomalyKind,
    BaselineState,
    BaselineTracker,
    ConnectionSnapshot,
    DeviceBaseline,
    MonitoringSettings,
    TrafficSnapshot,
)

__all__ = [
    "Anomaly",
    "AnomalyKind",
    "BaselineState",
    "BaselineTracker",
    "ConnectionSnapshot",
    "DeviceBaseline",
    "MonitoringSettings",
    "TrafficSnapshot",
]
