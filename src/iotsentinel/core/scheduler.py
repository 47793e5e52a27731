"""
Assessment Scheduler.

Periodic re-evaluation of registered devices. Each cycle walks every device
but only re-assesses the ones whose own window has elapsed, so the outer
tick and the per-device interval are independent.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from iotsentinel.clock import Clock, SystemClock
from iotsentinel.fingerprint.matcher import FingerprintMatcher
from iotsentinel.forwarding.events import SecurityEvent, SecurityEventType
from iotsentinel.forwarding.forwarder import EventForwarder, forward_safely
from iotsentinel.registry.models import Device, RiskLevel, VulnerabilityRecord
from iotsentinel.registry.store import DeviceRegistry, UnknownDeviceError
from iotsentinel.risk.assessor import RiskAssessment, RiskAssessor
from iotsentinel.risk.vulnerabilities import max_cvss, new_vulnerabilities
from iotsentinel.scanner.probe import ActiveProber, ProbeResult, needs_reidentification


logger = logging.getLogger(__name__)

# Called with the updated device copy when its risk level changes
ReenforceHook = Callable[[Device], Awaitable[Any]]


def is_due(last: datetime | None, interval: float, now: datetime) -> bool:
    """True if a per-device window has elapsed (or never started)."""
    if last is None:
        return True
    return now - last >= timedelta(seconds=interval)


@dataclass
class CycleResult:
    """Outcome of one scheduler cycle."""

    cycle: str
    started_at: datetime
    checked: int = 0
    skipped: int = 0
    failed: int = 0
    level_changes: list[str] = field(default_factory=list)
    events: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle": self.cycle,
            "started_at": self.started_at.isoformat(),
            "checked": self.checked,
            "skipped": self.skipped,
            "failed": self.failed,
            "level_changes": list(self.level_changes),
            "events": self.events,
        }


class AssessmentScheduler:
    """
    Drives the vulnerability re-check and active-scan refresh cycles.

    Cycles are plain coroutines; the daemon decides when to call them.
    Failures are isolated to the device they happened on.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        assessor: RiskAssessor,
        clock: Clock | None = None,
        forwarder: EventForwarder | None = None,
        prober: ActiveProber | None = None,
        matcher: FingerprintMatcher | None = None,
        vulnerability_interval: float = 86400,
        active_scan_enabled: bool = False,
        active_scan_interval: float = 86400,
        probe_timeout: float = 60.0,
        reenforce: ReenforceHook | None = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            registry: Shared device registry
            assessor: Risk assessor
            clock: Time source for windows and timestamps
            forwarder: Sink for vulnerability events
            prober: Active-probe backend
            matcher: Fingerprint matcher for reclassifying probed devices
            vulnerability_interval: Seconds between re-checks of one device
            active_scan_enabled: Whether the active-scan cycle runs at all
            active_scan_interval: Seconds between probes of one device
            probe_timeout: Seconds allowed per probe
            reenforce: Called when a device's risk level changes
        """
        self.registry = registry
        self.assessor = assessor
        self.clock = clock or SystemClock()
        self.forwarder = forwarder
        self.prober = prober
        self.matcher = matcher
        self.vulnerability_interval = vulnerability_interval
        self.active_scan_enabled = active_scan_enabled
        self.active_scan_interval = active_scan_interval
        self.probe_timeout = probe_timeout
        self.reenforce = reenforce

        # Statistics
        self._vulnerability_cycles = 0
        self._scan_cycles = 0
        self._probes = 0
        self._probe_failures = 0
        self._vulnerability_events = 0

    @property
    def active_scan_available(self) -> bool:
        return self.active_scan_enabled and self.prober is not None

    async def run_vulnerability_cycle(self) -> CycleResult:
        """
        Re-check vulnerabilities for every device whose window has elapsed.

        The full risk assessment is re-run so the score never drifts from
        the device's current state. Newly matched catalog entries are
        forwarded as a ``vulnerabilities_found`` event.
        """
        now = self.clock.now()
        result = CycleResult(cycle="vulnerability", started_at=now)
        self._vulnerability_cycles += 1

        for key in self.registry.addresses():
            try:
                await self._recheck(key, now, result)
            except UnknownDeviceError:
                continue
            except Exception as e:
                result.failed += 1
                logger.error("Vulnerability re-check failed for %s: %s", key, e, exc_info=True)

        logger.info(
            "Vulnerability cycle: %d checked, %d skipped, %d failed",
            result.checked, result.skipped, result.failed,
        )
        return result

    async def _recheck(self, key: str, now: datetime, result: CycleResult) -> None:
        def reassess(
            stored: Device,
        ) -> tuple[list[VulnerabilityRecord], RiskLevel, RiskAssessment] | None:
            if not is_due(stored.last_vulnerability_check, self.vulnerability_interval, now):
                return None
            previous = list(stored.vulnerabilities)
            previous_level = stored.risk_level
            assessment = self.assessor.assess(stored)
            assessment.apply_to(stored, checked_at=now)
            return previous, previous_level, assessment

        device, outcome = await self.registry.update(key, reassess)
        if outcome is None:
            result.skipped += 1
            return

        result.checked += 1
        previous, previous_level, assessment = outcome

        await self._report_new_vulnerabilities(
            device, previous, assessment.vulnerabilities, now, result
        )
        if assessment.level != previous_level:
            await self._level_changed(device, previous_level, result)

    async def run_active_scan_cycle(self) -> CycleResult:
        """
        Probe every device whose active-scan window has elapsed.

        Does nothing unless active scanning is enabled and a prober is set.
        A failed or timed-out probe leaves the device's scan timestamp
        untouched so it is retried on the next tick.
        """
        now = self.clock.now()
        result = CycleResult(cycle="active_scan", started_at=now)
        if not self.active_scan_available:
            return result
        self._scan_cycles += 1

        for key in self.registry.addresses():
            device = await self.registry.get(key)
            if device is None:
                continue
            if not is_due(device.last_active_scan, self.active_scan_interval, now):
                result.skipped += 1
                continue

            try:
                probe = await asyncio.wait_for(
                    self.prober.probe(device), timeout=self.probe_timeout
                )
            except asyncio.TimeoutError:
                self._probe_failures += 1
                result.failed += 1
                logger.warning("Active probe of %s timed out after %ss", key, self.probe_timeout)
                continue
            except Exception as e:
                self._probe_failures += 1
                result.failed += 1
                logger.warning("Active probe of %s failed: %s", key, e)
                continue

            self._probes += 1
            try:
                await self._merge_probe(key, probe, now, result)
            except UnknownDeviceError:
                continue
            except Exception as e:
                result.failed += 1
                logger.error("Merging probe results for %s failed: %s", key, e, exc_info=True)

        logger.info(
            "Active-scan cycle: %d probed, %d skipped, %d failed",
            result.checked, result.skipped, result.failed,
        )
        return result

    async def _merge_probe(
        self,
        key: str,
        probe: ProbeResult,
        now: datetime,
        result: CycleResult,
    ) -> None:
        def merge(stored: Device) -> tuple[list[VulnerabilityRecord], RiskLevel]:
            previous = list(stored.vulnerabilities)
            previous_level = stored.risk_level
            probe.apply_to(stored, now)
            if self.matcher is not None and needs_reidentification(stored):
                classification = self.matcher.identify_device(stored)
                if classification.is_identified:
                    classification.apply_to(stored)
                    logger.info(
                        "Reclassified %s via %s after active probe",
                        key, classification.identified_by.value,
                    )
            self.assessor.assess(stored).apply_to(stored, checked_at=now)
            return previous, previous_level

        device, (previous, previous_level) = await self.registry.update(key, merge)
        result.checked += 1
        await self._report_new_vulnerabilities(
            device, previous, device.vulnerabilities, now, result
        )
        if device.risk_level != previous_level:
            await self._level_changed(device, previous_level, result)

    async def _report_new_vulnerabilities(
        self,
        device: Device,
        previous: list[VulnerabilityRecord],
        current: list[VulnerabilityRecord],
        now: datetime,
        result: CycleResult,
    ) -> None:
        found = new_vulnerabilities(previous, current)
        if not found:
            return
        logger.warning(
            "New vulnerabilities for %s (%s %s): %s",
            device.hardware_address, device.manufacturer, device.model,
            ", ".join(v.cve or v.key for v in found),
        )
        event = SecurityEvent.for_device(
            SecurityEventType.VULNERABILITIES_FOUND,
            device,
            now,
            vulnerabilities=[v.to_dict() for v in found],
            max_cvss=max_cvss(found),
        )
        self._vulnerability_events += 1
        result.events += 1
        await forward_safely(self.forwarder, event)

    async def _level_changed(
        self,
        device: Device,
        previous_level: RiskLevel,
        result: CycleResult,
    ) -> None:
        logger.info(
            "Risk level of %s changed %s -> %s (score=%.2f)",
            device.hardware_address, previous_level.value,
            device.risk_level.value, device.risk_score,
        )
        result.level_changes.append(device.hardware_address)
        if self.reenforce is None:
            return
        try:
            await self.reenforce(device)
        except Exception as e:
            logger.error(
                "Re-enforcement for %s failed: %s", device.hardware_address, e, exc_info=True
            )

    def get_statistics(self) -> dict[str, Any]:
        return {
            "vulnerability_cycles": self._vulnerability_cycles,
            "vulnerability_events": self._vulnerability_events,
            "active_scan_enabled": self.active_scan_available,
            "active_scan_cycles": self._scan_cycles,
            "probes": self._probes,
            "probe_failures": self._probe_failures,
        }
