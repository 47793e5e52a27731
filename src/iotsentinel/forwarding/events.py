"""
Security event schemas.

Structured events emitted by the pipeline for external forwarding
(SIEM, audit store, dashboards).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from iotsentinel.registry.models import Device, normalize_hardware_address


class SecurityEventType(str, Enum):
    """Event types emitted by the pipeline."""

    NEW_DEVICE_DISCOVERED = "new_device_discovered"
    VULNERABILITIES_FOUND = "vulnerabilities_found"
    ANOMALY_DETECTED = "anomaly_detected"
    ENFORCEMENT_FAILED = "enforcement_failed"


class SecurityEvent(BaseModel):
    """Event carrying device identity, classification and risk level."""

    event_type: SecurityEventType
    timestamp: datetime
    hardware_address: str
    network_address: str | None = None
    manufacturer: str
    model: str
    device_type: str
    identification_method: str
    risk_level: str
    risk_score: float = Field(..., ge=0.0, le=1.0)
    applied_policy: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("hardware_address", mode="before")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        return normalize_hardware_address(v) if v else v

    @classmethod
    def for_device(
        cls,
        event_type: SecurityEventType,
        device: Device,
        timestamp: datetime,
        **details: Any,
    ) -> SecurityEvent:
        """Build an event from a device record."""
        return cls(
            event_type=event_type,
            timestamp=timestamp,
            hardware_address=device.hardware_address,
            network_address=device.network_address,
            manufacturer=device.manufacturer,
            model=device.model,
            device_type=device.device_type,
            identification_method=device.identification_method.value,
            risk_level=device.risk_level.value,
            risk_score=device.risk_score,
            applied_policy=device.applied_policy,
            details=details,
        )
