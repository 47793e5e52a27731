"""
Active probing boundary.

The prober itself (port scan, service identification, web-interface
analysis) is an external collaborator. This module defines its interface
and how its findings are merged into a device record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from iotsentinel.registry.models import Device, IdentificationMethod


@dataclass
class ProbeResult:
    """Findings of one active probe of a device."""

    open_ports: set[int] = field(default_factory=set)
    services: dict[int, str] = field(default_factory=dict)
    banners: dict[int, str] = field(default_factory=dict)
    default_credentials: bool | None = None

    def apply_to(self, device: Device, scanned_at: datetime) -> None:
        """
        Merge findings into a device record.

        Open ports replace the previous scan's set; services and banners are
        merged. ``default_credentials`` is only overwritten when the probe
        actually tested for it.
        """
        device.open_ports = set(self.open_ports)
        device.services.update(self.services)
        device.banners.update(self.banners)
        if self.default_credentials is not None:
            device.default_credentials = self.default_credentials
        device.last_active_scan = scanned_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "open_ports": sorted(self.open_ports),
            "services": {str(k): v for k, v in sorted(self.services.items())},
            "banners": {str(k): v for k, v in sorted(self.banners.items())},
            "default_credentials": self.default_credentials,
        }


class ActiveProber(Protocol):
    """Interface for active-probe backends."""

    async def probe(self, device: Device) -> ProbeResult:
        ...


def needs_reidentification(device: Device) -> bool:
    """
    True if new banner data could change the device's classification.

    OUI lookup runs before banner analysis, so only devices that matched
    nothing at all can be reclassified from probe banners.
    """
    return device.identification_method == IdentificationMethod.UNIDENTIFIED
