"""
Pydantic schemas for API responses.

Device and report shapes come from ``iotsentinel.reporting``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from iotsentinel.reporting.schemas import DeviceReport


# ============================================================================
# Device Schemas
# ============================================================================


class DeviceListResponse(BaseModel):
    """Device list response."""

    items: list[DeviceReport]
    total: int


# ============================================================================
# Catalog Schemas
# ============================================================================


class CatalogStatus(BaseModel):
    """Load status of one catalog."""

    catalog_loaded: bool
    entries: int
    error: str | None = None


class CatalogStatusResponse(BaseModel):
    """Load status of all catalogs."""

    degraded: bool
    catalogs: dict[str, CatalogStatus]


# ============================================================================
# Policy Schemas
# ============================================================================


class PolicyRuleSchema(BaseModel):
    """Policy rule schema."""

    name: str
    priority: int
    device_types: list[str]
    risk_levels: list[str]
    network_control: str | None = None
    allowed_destinations: list[str] = Field(default_factory=list)
    enhanced_monitoring: bool = False
    alert_threshold: int | None = None
    remediation: str | None = None
    comment: str = ""


class PolicyResponse(BaseModel):
    """Loaded policy with selection statistics."""

    rules: list[PolicyRuleSchema]
    rule_count: int
    statistics: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Health Check Schemas
# ============================================================================


class HealthCheck(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    uptime_seconds: float
    devices: int
    catalogs_degraded: bool
    statistics: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Error Schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
