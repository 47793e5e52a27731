"""
Pipeline Orchestrator.

Runs each newly seen device through identification, risk assessment,
policy selection and enforcement exactly once, and routes the periodic
baseline and re-assessment work.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from iotsentinel.catalog.models import CatalogSet
from iotsentinel.clock import Clock, SystemClock
from iotsentinel.enforcement.dispatcher import EnforcementDispatcher, EnforcementResult
from iotsentinel.fingerprint.matcher import Classification, FingerprintMatcher
from iotsentinel.forwarding.events import SecurityEvent, SecurityEventType
from iotsentinel.forwarding.forwarder import EventForwarder, forward_safely
from iotsentinel.monitoring.baseline import Anomaly, BaselineTracker
from iotsentinel.policy.engine import PolicyEngine
from iotsentinel.policy.models import PolicyRule
from iotsentinel.registry.models import Device, Observation, normalize_hardware_address
from iotsentinel.registry.store import DeviceRegistry
from iotsentinel.reporting.report import DEFAULT_SEGMENTATION_THRESHOLD, build_report
from iotsentinel.reporting.schemas import InventoryReport
from iotsentinel.risk.assessor import RiskAssessment, RiskAssessor

if TYPE_CHECKING:
    from iotsentinel.audit.database import AuditDatabase
    from iotsentinel.core.scheduler import AssessmentScheduler, CycleResult


logger = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    """
    Result of handling one observation.

    Only the observation that onboarded a device carries classification,
    assessment and enforcement details. That is the one that created it,
    or a later one retrying after a failed onboarding.
    """

    hardware_address: str
    created: bool
    retried: bool = False
    classification: Classification | None = None
    assessment: RiskAssessment | None = None
    policy: PolicyRule | None = None
    enforcement: EnforcementResult | None = None
    processing_time_ms: float = 0.0
    error: str | None = None

    @property
    def onboarded(self) -> bool:
        return (
            (self.created or self.retried)
            and self.assessment is not None
            and self.error is None
        )

    @property
    def policy_gap(self) -> bool:
        """True if onboarding completed but no policy matched the device."""
        return self.onboarded and self.policy is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/API."""
        return {
            "hardware_address": self.hardware_address,
            "created": self.created,
            "retried": self.retried,
            "classification": self.classification.to_dict() if self.classification else None,
            "assessment": self.assessment.to_dict() if self.assessment else None,
            "policy": self.policy.name if self.policy else None,
            "enforcement": self.enforcement.to_dict() if self.enforcement else None,
            "processing_time_ms": self.processing_time_ms,
            "error": self.error,
        }


class PipelineOrchestrator:
    """
    Wires observations through the device pipeline.

    The registry decides which caller created a device; only that caller
    onboards it, so concurrent observations of an unseen address produce a
    single identify/assess/enforce run.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        matcher: FingerprintMatcher,
        assessor: RiskAssessor,
        policy_engine: PolicyEngine,
        dispatcher: EnforcementDispatcher,
        tracker: BaselineTracker | None = None,
        scheduler: AssessmentScheduler | None = None,
        forwarder: EventForwarder | None = None,
        audit_db: AuditDatabase | None = None,
        catalogs: CatalogSet | None = None,
        clock: Clock | None = None,
        segmentation_threshold: int = DEFAULT_SEGMENTATION_THRESHOLD,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            registry: Shared device registry
            matcher: Fingerprint matcher
            assessor: Risk assessor
            policy_engine: Policy engine
            dispatcher: Enforcement dispatcher
            tracker: Baseline tracker for the sampling cycle
            scheduler: Assessment scheduler for the re-assessment cycles
            forwarder: Sink for security events
            audit_db: Audit store for device snapshots (optional)
            catalogs: Loaded catalogs, reported in status and reports
            clock: Time source
            segmentation_threshold: High-risk count that triggers a segmentation recommendation
        """
        self.registry = registry
        self.matcher = matcher
        self.assessor = assessor
        self.policy_engine = policy_engine
        self.dispatcher = dispatcher
        self.tracker = tracker
        self.scheduler = scheduler
        self.forwarder = forwarder
        self.audit_db = audit_db
        self.catalogs = catalogs or CatalogSet()
        self.clock = clock or SystemClock()
        self.segmentation_threshold = segmentation_threshold

        # Level changes found by the scheduler re-run policy selection here
        if self.scheduler is not None and self.scheduler.reenforce is None:
            self.scheduler.reenforce = self.apply_policy

        # Statistics
        self._observations = 0
        self._onboarded = 0
        self._policy_gaps = 0
        self._enforcement_failures = 0
        self._anomalies = 0
        self._errors = 0
        # Devices whose onboarding raised; retried on their next observation
        self._pending: set[str] = set()

    async def handle_observation(self, observation: Observation) -> ProcessingResult:
        """
        Record an observation and onboard the device if it is new.

        Never raises for per-device failures; they are logged and returned
        in ``ProcessingResult.error``.

        Args:
            observation: Normalized observation from a capture backend

        Returns:
            ProcessingResult
        """
        start = time.perf_counter()
        self._observations += 1

        device, created = await self.registry.observe(observation)
        key = device.hardware_address
        # Claimed before the first await so only one observation retries
        retried = not created and key in self._pending
        self._pending.discard(key)
        result = ProcessingResult(hardware_address=key, created=created, retried=retried)
        if created:
            logger.info(
                "New device %s (%s) on %s",
                key, device.network_address or "no address",
                observation.interface or "unknown interface",
            )
        elif retried:
            logger.info("Retrying onboarding of %s", key)
        if created or retried:
            try:
                await self._onboard(device, result)
            except Exception as e:
                self._errors += 1
                result.error = str(e) or type(e).__name__
                if key in self.registry:
                    self._pending.add(key)
                logger.error("Onboarding %s failed: %s", key, e, exc_info=True)

        result.processing_time_ms = (time.perf_counter() - start) * 1000
        return result

    async def _onboard(self, device: Device, result: ProcessingResult) -> None:
        key = device.hardware_address
        now = self.clock.now()

        def classify_and_assess(stored: Device) -> tuple[Classification, RiskAssessment]:
            classification = self.matcher.identify_device(stored)
            classification.apply_to(stored)
            assessment = self.assessor.assess(stored)
            assessment.apply_to(stored, checked_at=now)
            return classification, assessment

        device, (classification, assessment) = await self.registry.update(
            key, classify_and_assess
        )
        result.classification = classification
        result.assessment = assessment
        logger.info(
            "Device %s: %s %s (%s) via %s, risk %s (%.2f)",
            key, device.manufacturer, device.model, device.device_type,
            classification.identified_by.value, assessment.level.value, assessment.score,
        )

        rule, enforcement, device = await self._select_and_enforce(device)
        result.policy = rule
        result.enforcement = enforcement
        self._onboarded += 1

        await self._emit(
            SecurityEventType.NEW_DEVICE_DISCOVERED,
            device,
            identified_by=classification.identified_by.value,
            risk_factors=list(assessment.factors),
            policy=rule.name if rule else None,
        )
        if assessment.vulnerabilities:
            await self._emit(
                SecurityEventType.VULNERABILITIES_FOUND,
                device,
                vulnerabilities=[v.to_dict() for v in assessment.vulnerabilities],
                max_cvss=device.max_cvss,
            )
        self._persist(device)

    async def apply_policy(self, device: Device) -> EnforcementResult | None:
        """
        Select and enforce the policy for a device's current type and level.

        Used for onboarding and whenever a re-assessment changes the risk level.

        Returns:
            EnforcementResult, or None if no policy matched
        """
        _, enforcement, device = await self._select_and_enforce(device)
        self._persist(device)
        return enforcement

    async def _select_and_enforce(
        self,
        device: Device,
    ) -> tuple[PolicyRule | None, EnforcementResult | None, Device]:
        key = device.hardware_address
        rule = self.policy_engine.select_for(device)
        if rule is None:
            self._policy_gaps += 1
            logger.warning(
                "No policy matches %s (type=%s, level=%s); enforcement skipped",
                key, device.device_type, device.risk_level.value,
            )
            return None, None, device

        enforcement = await self.dispatcher.enforce(device, rule)
        device, _ = await self.registry.update(key, enforcement.apply_to)

        if not enforcement.success:
            self._enforcement_failures += 1
            await self._emit(
                SecurityEventType.ENFORCEMENT_FAILED,
                device,
                policy=rule.name,
                errors=list(enforcement.errors),
            )
        return rule, enforcement, device

    async def run_baseline_cycle(self) -> list[Anomaly]:
        """
        Take one baseline sample of every device.

        Returns:
            All anomalies found in this cycle
        """
        if self.tracker is None:
            return []

        now = self.clock.now()
        anomalies: list[Anomaly] = []
        for key in self.registry.addresses():
            device = await self.registry.get(key)
            if device is None:
                continue
            try:
                found = self.tracker.sample(device, now)
            except Exception as e:
                self._errors += 1
                logger.error("Baseline sampling failed for %s: %s", key, e, exc_info=True)
                continue

            for anomaly in found:
                self._anomalies += 1
                await self._emit(
                    SecurityEventType.ANOMALY_DETECTED,
                    device,
                    kind=anomaly.kind.value,
                    detail=anomaly.detail,
                    value=anomaly.value,
                    threshold=anomaly.threshold,
                )
            anomalies.extend(found)

        logger.debug(
            "Baseline cycle: %d devices, %d anomalies", len(self.registry), len(anomalies)
        )
        return anomalies

    async def run_vulnerability_cycle(self) -> CycleResult | None:
        if self.scheduler is None:
            return None
        return await self.scheduler.run_vulnerability_cycle()

    async def run_active_scan_cycle(self) -> CycleResult | None:
        if self.scheduler is None:
            return None
        return await self.scheduler.run_active_scan_cycle()

    async def _emit(self, event_type: SecurityEventType, device: Device, **details: Any) -> None:
        if self.forwarder is None:
            return
        try:
            event = SecurityEvent.for_device(event_type, device, self.clock.now(), **details)
        except ValueError as e:
            logger.error(
                "Could not build %s event for %s: %s",
                event_type.value, device.hardware_address, e,
            )
            return
        await forward_safely(self.forwarder, event)

    def _persist(self, device: Device) -> None:
        """Write a device snapshot to the audit store."""
        if self.audit_db is None:
            return
        try:
            self.audit_db.upsert_device(device)
        except Exception as e:
            logger.error("Failed to write %s to audit database: %s", device.hardware_address, e)

    async def devices(self, risk_level: str | None = None) -> list[Device]:
        """Copies of all devices, optionally filtered by risk level."""
        devices = await self.registry.snapshot()
        if risk_level:
            devices = [d for d in devices if d.risk_level.value == risk_level.lower()]
        return devices

    async def get_device(self, hardware_address: str) -> Device | None:
        return await self.registry.get(hardware_address)

    async def report(self) -> InventoryReport:
        """Snapshot of the whole inventory with aggregates and recommendations."""
        return build_report(
            await self.registry.snapshot(),
            generated_at=self.clock.now(),
            catalogs=self.catalogs,
            segmentation_threshold=self.segmentation_threshold,
        )

    async def forget(self, hardware_address: str) -> bool:
        """Prune a device (operator action). Returns True if it existed."""
        removed = await self.registry.remove(hardware_address)
        self._pending.discard(normalize_hardware_address(hardware_address))
        if removed and self.tracker is not None:
            self.tracker.forget(normalize_hardware_address(hardware_address))
        return removed

    def get_statistics(self) -> dict[str, Any]:
        """Get pipeline statistics."""
        stats: dict[str, Any] = {
            "observations": self._observations,
            "devices": len(self.registry),
            "onboarded": self._onboarded,
            "policy_gaps": self._policy_gaps,
            "enforcement_failures": self._enforcement_failures,
            "anomalies": self._anomalies,
            "errors": self._errors,
            "pending_onboarding": len(self._pending),
            "identification": self.matcher.get_statistics(),
            "policy": self.policy_engine.get_statistics(),
            "enforcement": self.dispatcher.get_statistics(),
        }
        if self.tracker is not None:
            stats["baseline"] = self.tracker.get_statistics()
        if self.scheduler is not None:
            stats["scheduler"] = self.scheduler.get_statistics()
        return stats
