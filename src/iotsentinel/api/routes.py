"""
REST API routes for IoT Sentinel.

Read-only views over the device registry, the inventory report, catalog
load status and the loaded policy.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from iotsentinel import __version__
from iotsentinel.api.schemas import (
    CatalogStatus,
    CatalogStatusResponse,
    DeviceListResponse,
    ErrorResponse,
    HealthCheck,
    PolicyResponse,
    PolicyRuleSchema,
)
from iotsentinel.core.pipeline import PipelineOrchestrator
from iotsentinel.registry.models import RiskLevel
from iotsentinel.reporting.schemas import DeviceReport, InventoryReport

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Dependencies
# ============================================================================


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    """Get the pipeline orchestrator attached to the application."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline not initialized",
        )
    return orchestrator


# ============================================================================
# Health Check Endpoints
# ============================================================================


@router.get("/health", response_model=HealthCheck, tags=["Health"])
async def health_check(
    request: Request,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> HealthCheck:
    """Pipeline status, uptime and statistics."""
    started = getattr(request.app.state, "start_time", time.time())
    return HealthCheck(
        status="degraded" if orchestrator.catalogs.degraded else "healthy",
        version=__version__,
        uptime_seconds=time.time() - started,
        devices=len(orchestrator.registry),
        catalogs_degraded=orchestrator.catalogs.degraded,
        statistics=orchestrator.get_statistics(),
    )


# ============================================================================
# Device Endpoints
# ============================================================================


@router.get("/devices", response_model=DeviceListResponse, tags=["Devices"])
async def list_devices(
    risk_level: RiskLevel | None = Query(None, description="Filter by risk level"),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> DeviceListResponse:
    """List all known devices, highest risk first."""
    devices = await orchestrator.devices(risk_level.value if risk_level else None)
    devices.sort(key=lambda d: (-d.risk_score, d.hardware_address))
    return DeviceListResponse(
        items=[DeviceReport.from_device(d) for d in devices],
        total=len(devices),
    )


@router.get(
    "/devices/{hardware_address}",
    response_model=DeviceReport,
    tags=["Devices"],
    responses={404: {"model": ErrorResponse}},
)
async def get_device(
    hardware_address: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> DeviceReport:
    """Get one device by hardware address (any MAC notation)."""
    device = await orchestrator.get_device(hardware_address)
    if device is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Device not found: {hardware_address}",
        )
    return DeviceReport.from_device(device)


# ============================================================================
# Report Endpoints
# ============================================================================


@router.get("/report", response_model=InventoryReport, tags=["Report"])
async def get_report(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> InventoryReport:
    """Inventory snapshot with aggregate counts and recommendations."""
    return await orchestrator.report()


@router.get("/catalogs", response_model=CatalogStatusResponse, tags=["Report"])
async def get_catalogs(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> CatalogStatusResponse:
    """Load status of every catalog."""
    catalogs = orchestrator.catalogs
    return CatalogStatusResponse(
        degraded=catalogs.degraded,
        catalogs={
            name: CatalogStatus(**state) for name, state in catalogs.status().items()
        },
    )


# ============================================================================
# Policy Endpoints
# ============================================================================


@router.get("/policies", response_model=PolicyResponse, tags=["Policy"])
async def get_policies(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> PolicyResponse:
    """Loaded policy rules in catalog order."""
    engine = orchestrator.policy_engine
    rules = [PolicyRuleSchema(**rule.to_dict()) for rule in engine.policy.rules]
    return PolicyResponse(
        rules=rules,
        rule_count=len(rules),
        statistics=engine.get_statistics(),
    )
