"""
Pydantic schemas for the inventory report.

The same models back the read API responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from iotsentinel.registry.models import Device


# ============================================================================
# Device Schemas
# ============================================================================


class TrafficSchema(BaseModel):
    """Cumulative traffic counters."""

    bytes_in: int = 0
    bytes_out: int = 0
    packets_in: int = 0
    packets_out: int = 0


class VulnerabilitySchema(BaseModel):
    """Matched vulnerability catalog entry."""

    manufacturer: str
    model: str
    firmware: str | None = None
    cvss: float = Field(..., ge=0.0, le=10.0)
    cve: str | None = None
    description: str = ""


class DeviceReport(BaseModel):
    """One device in the report/export shape."""

    hardware_address: str
    network_address: str | None = None
    manufacturer: str
    model: str
    device_type: str
    firmware_version: str | None = None
    identification_method: str
    first_seen: datetime
    last_seen: datetime
    protocols: list[str] = Field(default_factory=list)
    ports: list[int] = Field(default_factory=list)
    traffic: TrafficSchema = Field(default_factory=TrafficSchema)
    authorized: bool = False
    risk_score: float = Field(..., ge=0.0, le=1.0)
    risk_level: str
    risk_factors: list[str] = Field(default_factory=list)
    vulnerabilities: list[VulnerabilitySchema] = Field(default_factory=list)
    last_vulnerability_check: datetime | None = None
    last_active_scan: datetime | None = None
    applied_policy: str | None = None
    last_enforcement: datetime | None = None

    @classmethod
    def from_device(cls, device: Device) -> DeviceReport:
        return cls.model_validate(device.to_dict())


# ============================================================================
# Report Schemas
# ============================================================================


class ReportSummary(BaseModel):
    """Aggregate counts over the inventory."""

    total_devices: int = 0
    by_risk_level: dict[str, int] = Field(default_factory=dict)
    unauthorized: int = 0
    vulnerable: int = 0
    unidentified: int = 0
    unencrypted: int = 0
    default_credentials: int = 0
    without_policy: int = 0
    average_risk_score: float | None = None

    @property
    def high_risk(self) -> int:
        return self.by_risk_level.get("high", 0)


class InventoryReport(BaseModel):
    """Full inventory snapshot with aggregates and recommendations."""

    generated_at: datetime
    summary: ReportSummary
    devices: list[DeviceReport] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    catalogs: dict[str, dict[str, Any]] = Field(default_factory=dict)
