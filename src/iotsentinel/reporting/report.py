"""
Inventory reporting.

Builds the report snapshot from registry copies: every device in the export
shape, aggregate counts and recommendations derived from simple thresholds.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from iotsentinel.catalog.models import CatalogSet
from iotsentinel.registry.models import Device, RiskLevel
from iotsentinel.reporting.schemas import DeviceReport, InventoryReport, ReportSummary
from iotsentinel.risk.assessor import FACTOR_UNENCRYPTED


DEFAULT_SEGMENTATION_THRESHOLD = 3


def summarize(devices: list[Device]) -> ReportSummary:
    """Aggregate counts over a device list."""
    by_level = {level.value: 0 for level in RiskLevel}
    for device in devices:
        by_level[device.risk_level.value] += 1

    average = None
    if devices:
        average = round(sum(d.risk_score for d in devices) / len(devices), 4)

    return ReportSummary(
        total_devices=len(devices),
        by_risk_level=by_level,
        unauthorized=sum(1 for d in devices if not d.authorized),
        vulnerable=sum(1 for d in devices if d.vulnerabilities),
        unidentified=sum(1 for d in devices if not d.is_identified),
        unencrypted=sum(1 for d in devices if FACTOR_UNENCRYPTED in d.risk_factors),
        default_credentials=sum(1 for d in devices if d.default_credentials),
        without_policy=sum(1 for d in devices if d.applied_policy is None),
        average_risk_score=average,
    )


def recommend(
    summary: ReportSummary,
    segmentation_threshold: int = DEFAULT_SEGMENTATION_THRESHOLD,
    catalogs: CatalogSet | None = None,
) -> list[str]:
    """
    Derive recommendations from the summary counts.

    Args:
        summary: Aggregate counts
        segmentation_threshold: High-risk count above which segmentation is advised
        catalogs: Catalog set, to flag catalogs that failed to load

    Returns:
        Recommendations, most severe first
    """
    recommendations = []

    if summary.high_risk > segmentation_threshold:
        recommendations.append(
            f"Segment the network: {summary.high_risk} high-risk devices detected; "
            "move IoT devices to a dedicated VLAN"
        )
    if summary.vulnerable:
        recommendations.append(
            f"Update firmware on {summary.vulnerable} device(s) with known vulnerabilities"
        )
    if summary.default_credentials:
        recommendations.append(
            f"Change default credentials on {summary.default_credentials} device(s)"
        )
    if summary.unauthorized:
        recommendations.append(
            f"Review {summary.unauthorized} unauthorized device(s) and add legitimate "
            "ones to the authorized device list"
        )
    if summary.unencrypted:
        recommendations.append(
            f"Enable encrypted protocols on {summary.unencrypted} device(s) "
            "communicating in clear text"
        )
    if summary.unidentified:
        recommendations.append(
            f"Investigate {summary.unidentified} unidentified device(s)"
        )
    if summary.without_policy:
        recommendations.append(
            f"Add policy coverage for {summary.without_policy} device(s) matched by no policy"
        )
    if catalogs is not None:
        failed = sorted(
            name for name, status in catalogs.status().items() if not status["catalog_loaded"]
        )
        if failed:
            recommendations.append(f"Fix catalog loading: {', '.join(failed)}")

    return recommendations


def build_report(
    devices: Iterable[Device],
    generated_at: datetime,
    catalogs: CatalogSet | None = None,
    segmentation_threshold: int = DEFAULT_SEGMENTATION_THRESHOLD,
) -> InventoryReport:
    """
    Build the inventory report.

    Args:
        devices: Device copies (not modified)
        generated_at: Report timestamp
        catalogs: Catalog set whose load status is included
        segmentation_threshold: High-risk count above which segmentation is advised

    Returns:
        InventoryReport
    """
    devices = sorted(devices, key=lambda d: (-d.risk_score, d.hardware_address))
    summary = summarize(devices)
    return InventoryReport(
        generated_at=generated_at,
        summary=summary,
        devices=[DeviceReport.from_device(d) for d in devices],
        recommendations=recommend(summary, segmentation_threshold, catalogs),
        catalogs=catalogs.status() if catalogs is not None else {},
    )
