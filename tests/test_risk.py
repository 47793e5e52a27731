"""
Tests for risk assessment and vulnerability matching.
"""

from __future__ import annotations

import pytest

from iotsentinel.catalog.models import AuthorizedDevices, VulnerabilityCatalog
from iotsentinel.registry.models import Device, RiskLevel, VulnerabilityRecord
from iotsentinel.risk import (
    ExcessiveAccessCheck,
    RiskAssessor,
    clamp_score,
    get_risk_level,
    match_vulnerabilities,
    new_vulnerabilities,
)
from iotsentinel.risk.assessor import (
    FACTOR_DEFAULT_CREDENTIALS,
    FACTOR_EXCESSIVE_ACCESS,
    FACTOR_UNAUTHORIZED,
    FACTOR_UNENCRYPTED,
)


def classified(device: Device, manufacturer: str, model: str, device_type: str,
               firmware: str | None = None) -> Device:
    device.manufacturer = manufacturer
    device.model = model
    device.device_type = device_type
    device.firmware_version = firmware
    return device


class TestRiskLevel:
    """Level thresholds at their exact boundaries."""

    @pytest.mark.parametrize("score, level", [
        (0.0, RiskLevel.LOW),
        (0.3999, RiskLevel.LOW),
        (0.4, RiskLevel.MEDIUM),
        (0.6999, RiskLevel.MEDIUM),
        (0.7, RiskLevel.HIGH),
        (1.0, RiskLevel.HIGH),
    ])
    def test_boundaries(self, score: float, level: RiskLevel) -> None:
        assert get_risk_level(score) == level

    def test_clamp(self) -> None:
        assert clamp_score(1.5) == 1.0
        assert clamp_score(-0.2) == 0.0
        assert clamp_score(0.4 + 0.27 + 0.2) == 0.87


class TestVulnerabilityMatching:
    """Manufacturer, model and optional firmware constraint."""

    @pytest.fixture
    def catalog(self) -> VulnerabilityCatalog:
        return VulnerabilityCatalog(records=[
            VulnerabilityRecord("Acme", "Cam1", cvss=5.0, cve="CVE-A"),
            VulnerabilityRecord("Acme", "Cam1", cvss=7.5, firmware="1.0", cve="CVE-B"),
            VulnerabilityRecord("Acme", "Cam1", cvss=9.8, firmware="2.0", cve="CVE-C"),
            VulnerabilityRecord("Acme", "Cam2", cvss=4.0, cve="CVE-D"),
        ])

    def test_firmware_constraint(self, catalog: VulnerabilityCatalog) -> None:
        matches = match_vulnerabilities(catalog, "Acme", "Cam1", "1.0")

        assert [r.cve for r in matches] == ["CVE-A", "CVE-B"]

    def test_unknown_firmware_matches_unconstrained_only(self, catalog) -> None:
        matches = match_vulnerabilities(catalog, "Acme", "Cam1", None)

        assert [r.cve for r in matches] == ["CVE-A"]

    def test_unknown_model_never_matches(self, catalog) -> None:
        assert match_vulnerabilities(catalog, "Acme", "Unknown", None) == []

    def test_new_vulnerabilities(self, catalog) -> None:
        previous = catalog.records[:1]
        current = catalog.records[:2]

        assert [r.cve for r in new_vulnerabilities(previous, current)] == ["CVE-B"]
        assert new_vulnerabilities(current, current) == []


class TestRiskAssessor:
    """Tests for additive scoring."""

    def test_end_to_end_camera_score(self, catalogs, make_observation) -> None:
        """Unauthorized + CVSS 9.0 + unencrypted = 0.87, high."""
        assessor = RiskAssessor(catalogs.authorized, catalogs.vulnerabilities)
        device = classified(
            Device.from_observation(make_observation()), "Acme", "Cam1", "camera",
        )

        assessment = assessor.assess(device)

        assert assessment.score == 0.87
        assert assessment.level == RiskLevel.HIGH
        assert assessment.factors == [
            FACTOR_UNAUTHORIZED,
            "Known vulnerabilities (max CVSS 9.0)",
            FACTOR_UNENCRYPTED,
        ]
        assert [v.cve for v in assessment.vulnerabilities] == ["CVE-2023-0001"]
        assert assessment.authorized is False

    def test_authorized_encrypted_device_is_low(self, make_observation) -> None:
        assessor = RiskAssessor(authorized=AuthorizedDevices.of(["AA:BB:CC:DD:EE:01"]))
        device = Device.from_observation(make_observation(protocols={"HTTPS"}, ports={443}))

        assessment = assessor.assess(device)

        assert assessment.score == 0.0
        assert assessment.level == RiskLevel.LOW
        assert assessment.factors == []
        assert assessment.authorized is True

    def test_unauthorized_only_is_medium_boundary(self, make_observation) -> None:
        device = Device.from_observation(make_observation(protocols={"SSH"}, ports={22}))

        assessment = RiskAssessor().assess(device)

        assert assessment.score == 0.4
        assert assessment.level == RiskLevel.MEDIUM

    def test_exact_high_boundary(self, make_observation) -> None:
        """Unauthorized + default credentials lands exactly on 0.7."""
        device = Device.from_observation(make_observation(protocols={"SSH"}, ports={22}))
        device.default_credentials = True

        assessment = RiskAssessor().assess(device)

        assert assessment.score == 0.7
        assert assessment.level == RiskLevel.HIGH
        assert assessment.factors == [FACTOR_UNAUTHORIZED, FACTOR_DEFAULT_CREDENTIALS]

    def test_score_clamped(self, catalogs, make_observation) -> None:
        assessor = RiskAssessor(
            catalogs.authorized,
            catalogs.vulnerabilities,
            excessive_access=lambda d: True,
        )
        device = classified(
            Device.from_observation(make_observation()), "Acme", "Cam1", "camera",
        )
        device.default_credentials = True

        assessment = assessor.assess(device)

        assert assessment.score == 1.0
        assert assessment.factors[-1] == FACTOR_EXCESSIVE_ACCESS

    def test_failing_predicate_is_not_a_factor(self, make_observation) -> None:
        def broken(device: Device) -> bool:
            raise RuntimeError("detector offline")

        assessor = RiskAssessor(default_credentials=broken)
        device = Device.from_observation(make_observation(protocols={"SSH"}, ports={22}))

        assessment = assessor.assess(device)

        assert FACTOR_DEFAULT_CREDENTIALS not in assessment.factors

    def test_recomputed_from_scratch(self, catalogs, make_observation) -> None:
        """A second assessment does not accumulate on the first."""
        assessor = RiskAssessor(catalogs.authorized, catalogs.vulnerabilities)
        device = classified(
            Device.from_observation(make_observation()), "Acme", "Cam1", "camera",
        )

        first = assessor.assess(device)
        first.apply_to(device)
        second = assessor.assess(device)

        assert second.score == first.score
        assert second.factors == first.factors

    def test_apply_to(self, catalogs, make_observation, clock) -> None:
        assessor = RiskAssessor(catalogs.authorized, catalogs.vulnerabilities)
        device = classified(
            Device.from_observation(make_observation()), "Acme", "Cam1", "camera",
        )

        assessor.assess(device).apply_to(device, checked_at=clock.now())

        assert device.risk_level == RiskLevel.HIGH
        assert device.risk_score == 0.87
        assert device.max_cvss == 9.0
        assert device.last_vulnerability_check == clock.now()

    def test_empty_catalog_is_shared(self, make_observation) -> None:
        """Records added to a catalog that started empty are seen by the assessor."""
        vulnerabilities = VulnerabilityCatalog()
        authorized = AuthorizedDevices()
        assessor = RiskAssessor(authorized, vulnerabilities)
        device = classified(
            Device.from_observation(make_observation()), "Acme", "Cam1", "camera",
        )

        assert assessor.vulnerabilities is vulnerabilities
        assert assessor.authorized is authorized

        vulnerabilities.records.append(
            VulnerabilityRecord("Acme", "Cam1", cvss=9.0, cve="CVE-2023-0001")
        )

        assert assessor.assess(device).score == 0.87


class TestExcessiveAccessCheck:
    """Tests for the type-profile predicate."""

    def test_over_profile(self, make_observation) -> None:
        check = ExcessiveAccessCheck({"Camera": 1})
        device = classified(
            Device.from_observation(make_observation(destinations={"a", "b"})),
            "Acme", "Cam1", "camera",
        )

        assert check(device) is True

    def test_within_profile(self, make_observation) -> None:
        check = ExcessiveAccessCheck({"camera": 2})
        device = classified(
            Device.from_observation(make_observation(destinations={"a", "b"})),
            "Acme", "Cam1", "camera",
        )

        assert check(device) is False

    def test_no_profile(self, make_observation) -> None:
        check = ExcessiveAccessCheck({"camera": 0})
        device = Device.from_observation(make_observation(destinations={"a"}))

        assert check(device) is False
