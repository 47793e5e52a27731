"""
Device Registry.

In-memory store of every device seen on the monitored networks.
"""

from iotsentinel.registry.models import (
    UNKNOWN,
    Device,
    IdentificationMethod,
    Observation,
    RiskLevel,
    TrafficStats,
    VulnerabilityRecord,
    normalize_hardware_address,
)
from iotsentinel.registry.store import DeviceRegistry, UnknownDeviceError

__all__ = [
    "UNKNOWN",
    "Device",
    "DeviceRegistry",
    "IdentificationMethod",
    "Observation",
    "RiskLevel",
    "TrafficStats",
    "UnknownDeviceError",
    "VulnerabilityRecord",
    "normalize_hardware_address",
]
