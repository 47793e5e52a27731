"""
End-to-end tests for the pipeline orchestrator.

External collaborators (network controller, remediation) are mocks;
catalogs, policy and registry are real.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from iotsentinel.audit import AuditDatabase
from iotsentinel.core import AssessmentScheduler, PipelineOrchestrator
from iotsentinel.enforcement import (
    EnforcementDispatcher,
    InMemoryNetworkController,
    LoggingRemediationHandler,
)
from iotsentinel.fingerprint import FingerprintMatcher
from iotsentinel.forwarding import MemoryForwarder
from iotsentinel.monitoring import AnomalyKind, BaselineTracker
from iotsentinel.policy import NetworkAction, PolicyBuilder, PolicyEngine
from iotsentinel.registry import (
    DeviceRegistry,
    IdentificationMethod,
    RiskLevel,
    TrafficStats,
    VulnerabilityRecord,
)
from iotsentinel.risk import RiskAssessor


CAMERA = "AA:BB:CC:DD:EE:01"
THERMOSTAT = "AA:BB:CC:DD:EE:07"
AUTHORIZED = "AA:BB:CC:00:00:01"


@pytest.fixture
def network() -> AsyncMock:
    return AsyncMock(spec=InMemoryNetworkController)


@pytest.fixture
def remediator() -> AsyncMock:
    return AsyncMock(spec=LoggingRemediationHandler)


@pytest.fixture
def forwarder() -> MemoryForwarder:
    return MemoryForwarder()


@pytest.fixture
def build(catalogs, clock, network, remediator, forwarder, sample_policy):
    """Factory for an orchestrator wired like the daemon wires it."""

    def _build(policy_engine: PolicyEngine | None = None, audit_db=None) -> PipelineOrchestrator:
        registry = DeviceRegistry()
        tracker = BaselineTracker()
        assessor = RiskAssessor(catalogs.authorized, catalogs.vulnerabilities)
        matcher = FingerprintMatcher(catalogs.fingerprints, catalogs.oui, catalogs.banners)
        scheduler = AssessmentScheduler(
            registry, assessor, clock=clock, forwarder=forwarder, matcher=matcher,
        )
        return PipelineOrchestrator(
            registry=registry,
            matcher=matcher,
            assessor=assessor,
            policy_engine=policy_engine or PolicyEngine.from_file(sample_policy),
            dispatcher=EnforcementDispatcher(network, tracker, remediator, clock=clock),
            tracker=tracker,
            scheduler=scheduler,
            forwarder=forwarder,
            audit_db=audit_db,
            catalogs=catalogs,
            clock=clock,
        )

    return _build


class TestOnboarding:
    """First observation of a device runs the whole pipeline once."""

    @pytest.mark.asyncio
    async def test_vulnerable_camera_is_isolated(
        self, build, make_observation, network, remediator, forwarder, clock
    ) -> None:
        orchestrator = build()

        result = await orchestrator.handle_observation(make_observation())

        assert result.created
        assert result.onboarded
        assert result.classification.identified_by == IdentificationMethod.SIGNATURE_MATCH
        assert result.assessment.score == 0.87
        assert result.assessment.level == RiskLevel.HIGH
        assert result.policy.name == "isolate-high-risk-cameras"
        network.isolate.assert_awaited_once_with(CAMERA)
        remediator.notify_admin.assert_awaited_once()

        device = await orchestrator.get_device(CAMERA)
        assert device.manufacturer == "Acme"
        assert device.applied_policy == "isolate-high-risk-cameras"
        assert device.last_enforcement == clock.now()
        assert orchestrator.tracker.is_enhanced(CAMERA)

        assert [e.event_type.value for e in forwarder.events] == [
            "new_device_discovered", "vulnerabilities_found",
        ]
        assert forwarder.events[0].details["policy"] == "isolate-high-risk-cameras"

    @pytest.mark.asyncio
    async def test_concurrent_first_observations_onboard_once(
        self, build, make_observation, network
    ) -> None:
        orchestrator = build()

        results = await asyncio.gather(
            *(orchestrator.handle_observation(make_observation()) for _ in range(10))
        )

        assert sum(r.created for r in results) == 1
        assert len(orchestrator.registry) == 1
        assert network.isolate.await_count == 1
        assert orchestrator.get_statistics()["onboarded"] == 1

        device = await orchestrator.get_device(CAMERA)
        assert device.observation_count == 10

    @pytest.mark.asyncio
    async def test_later_observations_only_merge(
        self, build, make_observation, network, clock
    ) -> None:
        orchestrator = build()
        await orchestrator.handle_observation(make_observation())

        clock.advance(60)
        result = await orchestrator.handle_observation(make_observation(
            protocols={"RTSP"}, ports={554}, traffic_delta=TrafficStats(bytes_in=100),
        ))

        assert not result.created
        assert result.assessment is None
        assert network.isolate.await_count == 1
        device = await orchestrator.get_device(CAMERA)
        assert device.protocols == {"HTTP", "RTSP"}
        assert device.last_seen == clock.now()
        # Classification is not redone by later observations
        assert device.model == "Cam1"

    @pytest.mark.asyncio
    async def test_authorized_device_is_monitored(
        self, build, make_observation, network, remediator
    ) -> None:
        orchestrator = build()

        result = await orchestrator.handle_observation(
            make_observation(AUTHORIZED, protocols={"HTTPS"}, ports={443})
        )

        assert result.assessment.level == RiskLevel.LOW
        assert result.policy.name == "monitor-everything"
        network.monitor.assert_awaited_once_with(AUTHORIZED)
        remediator.notify_admin.assert_not_called()

    @pytest.mark.asyncio
    async def test_medium_camera_is_restricted(
        self, build, make_observation, network, catalogs
    ) -> None:
        catalogs.vulnerabilities.records.clear()
        orchestrator = build()

        result = await orchestrator.handle_observation(make_observation())

        # unauthorized + unencrypted
        assert result.assessment.score == 0.6
        assert result.policy.network_control == NetworkAction.RESTRICT
        network.restrict.assert_awaited_once_with(CAMERA, ["nvr.local"])


class TestPolicyGaps:
    """Devices matched by no rule are recorded but not enforced."""

    @pytest.mark.asyncio
    async def test_gap_is_reported(self, build, make_observation, network, forwarder) -> None:
        engine = PolicyBuilder().isolate("cams", device_types="camera").build_engine()
        orchestrator = build(policy_engine=engine)

        result = await orchestrator.handle_observation(
            make_observation(THERMOSTAT, protocols={"SSH"}, ports={22})
        )

        assert result.onboarded
        assert result.policy_gap
        assert result.enforcement is None
        network.isolate.assert_not_called()
        device = await orchestrator.get_device(THERMOSTAT)
        assert device.applied_policy is None
        assert orchestrator.get_statistics()["policy_gaps"] == 1
        assert forwarder.events[0].details["policy"] is None


class TestEnforcementFailures:
    """Enforcement failures are reported and never abort onboarding."""

    @pytest.mark.asyncio
    async def test_failed_isolation_emits_event(
        self, build, make_observation, network, forwarder
    ) -> None:
        network.isolate.side_effect = ConnectionError("controller unreachable")
        orchestrator = build()

        result = await orchestrator.handle_observation(make_observation())

        assert result.onboarded
        assert not result.enforcement.success
        failed = forwarder.of_type("enforcement_failed")
        assert len(failed) == 1
        assert "controller unreachable" in failed[0].details["errors"][0]
        # The attempt is still recorded on the device
        device = await orchestrator.get_device(CAMERA)
        assert device.applied_policy == "isolate-high-risk-cameras"
        assert orchestrator.get_statistics()["enforcement_failures"] == 1

    @pytest.mark.asyncio
    async def test_onboarding_error_is_contained(self, build, make_observation) -> None:
        orchestrator = build()
        orchestrator.matcher.identify_device = lambda device: 1 / 0

        result = await orchestrator.handle_observation(make_observation())

        assert result.created
        assert not result.onboarded
        assert "division by zero" in result.error
        assert CAMERA in orchestrator.registry
        assert orchestrator.get_statistics()["errors"] == 1

    @pytest.mark.asyncio
    async def test_failed_onboarding_retried_on_next_observation(
        self, build, make_observation, network, clock
    ) -> None:
        orchestrator = build()
        orchestrator.matcher.identify_device = lambda device: 1 / 0
        await orchestrator.handle_observation(make_observation())
        assert orchestrator.get_statistics()["pending_onboarding"] == 1
        network.isolate.assert_not_awaited()

        del orchestrator.matcher.identify_device
        clock.advance(60)
        results = await asyncio.gather(
            orchestrator.handle_observation(make_observation()),
            orchestrator.handle_observation(make_observation()),
        )

        assert [r.retried for r in results].count(True) == 1
        assert any(r.onboarded for r in results)
        network.isolate.assert_awaited_once_with(CAMERA)
        device = await orchestrator.get_device(CAMERA)
        assert device.model == "Cam1"
        assert device.applied_policy == "isolate-high-risk-cameras"
        assert orchestrator.get_statistics()["pending_onboarding"] == 0

        later = await orchestrator.handle_observation(make_observation())
        assert not later.retried
        assert network.isolate.await_count == 1

    @pytest.mark.asyncio
    async def test_forwarder_failure_is_contained(
        self, build, make_observation, network
    ) -> None:
        orchestrator = build()
        orchestrator.forwarder = AsyncMock()
        orchestrator.forwarder.forward.side_effect = RuntimeError("SIEM down")

        result = await orchestrator.handle_observation(make_observation())

        assert result.onboarded
        network.isolate.assert_awaited_once()


class TestReassessment:
    """Periodic cycles feed back into enforcement."""

    @pytest.mark.asyncio
    async def test_new_vulnerability_escalates_enforcement(
        self, build, make_observation, network, catalogs, forwarder, clock
    ) -> None:
        catalogs.vulnerabilities.records.clear()
        orchestrator = build()
        await orchestrator.handle_observation(make_observation())
        network.restrict.assert_awaited_once()

        catalogs.vulnerabilities.records.append(
            VulnerabilityRecord("Acme", "Cam1", cvss=9.0, cve="CVE-2023-0001")
        )
        clock.advance(days=1)
        result = await orchestrator.run_vulnerability_cycle()

        assert result.level_changes == [CAMERA]
        network.isolate.assert_awaited_once_with(CAMERA)
        device = await orchestrator.get_device(CAMERA)
        assert device.risk_level == RiskLevel.HIGH
        assert device.applied_policy == "isolate-high-risk-cameras"
        assert len(forwarder.of_type("vulnerabilities_found")) == 1

    @pytest.mark.asyncio
    async def test_unchanged_level_does_not_reenforce(
        self, build, make_observation, network, clock
    ) -> None:
        orchestrator = build()
        await orchestrator.handle_observation(make_observation())

        clock.advance(days=1)
        result = await orchestrator.run_vulnerability_cycle()

        assert result.checked == 1
        assert result.level_changes == []
        assert network.isolate.await_count == 1


class TestBaselineCycle:
    """Baseline sampling through the orchestrator."""

    @pytest.mark.asyncio
    async def test_traffic_spike_is_forwarded(
        self, build, make_observation, forwarder, heavy_traffic, clock
    ) -> None:
        orchestrator = build()
        await orchestrator.handle_observation(
            make_observation(AUTHORIZED, protocols={"HTTPS"}, ports={443})
        )

        assert await orchestrator.run_baseline_cycle() == []

        await orchestrator.handle_observation(
            make_observation(AUTHORIZED, protocols={"HTTPS"}, ports={443},
                             traffic_delta=heavy_traffic)
        )
        clock.advance(300)
        anomalies = await orchestrator.run_baseline_cycle()

        assert [a.kind for a in anomalies] == [AnomalyKind.TRAFFIC_SPIKE]
        events = forwarder.of_type("anomaly_detected")
        assert len(events) == 1
        assert events[0].details["kind"] == "traffic_spike"
        assert orchestrator.get_statistics()["anomalies"] == 1

    @pytest.mark.asyncio
    async def test_without_tracker(self, build) -> None:
        orchestrator = build()
        orchestrator.tracker = None

        assert await orchestrator.run_baseline_cycle() == []


class TestQueries:
    """Read-side operations."""

    @pytest.mark.asyncio
    async def test_report(self, build, make_observation) -> None:
        orchestrator = build()
        await orchestrator.handle_observation(make_observation())
        await orchestrator.handle_observation(
            make_observation(AUTHORIZED, protocols={"HTTPS"}, ports={443})
        )

        report = await orchestrator.report()

        assert report.summary.total_devices == 2
        assert report.summary.by_risk_level == {"low": 1, "medium": 0, "high": 1}
        assert [d.hardware_address for d in report.devices] == [CAMERA, AUTHORIZED]
        assert any("firmware" in r for r in report.recommendations)
        assert report.catalogs["fingerprints"]["entries"] == 2

    @pytest.mark.asyncio
    async def test_devices_filter(self, build, make_observation) -> None:
        orchestrator = build()
        await orchestrator.handle_observation(make_observation())
        await orchestrator.handle_observation(
            make_observation(AUTHORIZED, protocols={"HTTPS"}, ports={443})
        )

        high = await orchestrator.devices(risk_level="HIGH")

        assert [d.hardware_address for d in high] == [CAMERA]

    @pytest.mark.asyncio
    async def test_forget(self, build, make_observation) -> None:
        orchestrator = build()
        await orchestrator.handle_observation(make_observation())

        assert await orchestrator.forget("aa-bb-cc-dd-ee-01")
        assert await orchestrator.get_device(CAMERA) is None
        assert not orchestrator.tracker.is_enhanced(CAMERA)
        assert not await orchestrator.forget(CAMERA)

    @pytest.mark.asyncio
    async def test_snapshot_persisted(self, build, make_observation, temp_dir) -> None:
        db = AuditDatabase(temp_dir / "audit.db")
        orchestrator = build(audit_db=db)

        await orchestrator.handle_observation(make_observation())

        record = db.get_device(CAMERA)
        assert record.applied_policy == "isolate-high-risk-cameras"
        assert record.risk_level == "high"
        assert record.snapshot_data["manufacturer"] == "Acme"
        db.close()
