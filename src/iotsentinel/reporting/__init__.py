"""
Reporting.

Inventory snapshot/export with aggregate counts and recommendations.
"""

from iotsentinel.reporting.report import (
    DEFAULT_SEGMENTATION_THRESHOLD,
    build_report,
    recommend,
    summarize,
)
from iotsentinel.reporting.schemas import (
    DeviceReport,
    InventoryReport,
    ReportSummary,
    TrafficSchema,
    VulnerabilitySchema,
)

__all__ = [
    # Report
    "DEFAULT_SEGMENTATION_THRESHOLD",
    "build_report",
    "recommend",
    "summarize",
    # Schemas
    "DeviceReport",
    "InventoryReport",
    "ReportSummary",
    "TrafficSchema",
    "VulnerabilitySchema",
]
