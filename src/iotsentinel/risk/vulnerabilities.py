"""
Known-vulnerability lookup.

Matches a device's manufacturer, model and firmware against the
vulnerability catalog. This is a catalog lookup only; nothing is probed.
"""

from __future__ import annotations

from typing import Iterable

from iotsentinel.catalog.models import VulnerabilityCatalog
from iotsentinel.registry.models import UNKNOWN, VulnerabilityRecord


def firmware_matches(record: VulnerabilityRecord, firmware_version: str | None) -> bool:
    """A record with no firmware constraint applies to every firmware version."""
    if record.firmware is None:
        return True
    return firmware_version is not None and record.firmware == firmware_version


def match_vulnerabilities(
    catalog: VulnerabilityCatalog,
    manufacturer: str,
    model: str,
    firmware_version: str | None,
) -> list[VulnerabilityRecord]:
    """
    Find catalog entries that apply to a device.

    Args:
        catalog: Vulnerability catalog
        manufacturer: Device manufacturer
        model: Device model
        firmware_version: Device firmware version, if known

    Returns:
        Matching records in catalog order
    """
    if manufacturer == UNKNOWN or model == UNKNOWN:
        return []
    return [
        record for record in catalog.for_model(manufacturer, model)
        if firmware_matches(record, firmware_version)
    ]


def max_cvss(records: Iterable[VulnerabilityRecord]) -> float | None:
    scores = [r.cvss for r in records]
    return max(scores) if scores else None


def new_vulnerabilities(
    previous: Iterable[VulnerabilityRecord],
    current: Iterable[VulnerabilityRecord],
) -> list[VulnerabilityRecord]:
    """Records in ``current`` that were not in ``previous``."""
    known = {r.key for r in previous}
    return [r for r in current if r.key not in known]
