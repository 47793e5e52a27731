"""
Risk Assessor.

Computes a bounded risk score, a categorical level and the ordered list of
contributing factors for a device. The score is rebuilt from scratch on
every assessment; nothing is carried over from earlier runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Mapping

from iotsentinel.catalog.models import AuthorizedDevices, VulnerabilityCatalog
from iotsentinel.registry.models import Device, RiskLevel, VulnerabilityRecord
from iotsentinel.risk.vulnerabilities import match_vulnerabilities, max_cvss


logger = logging.getLogger(__name__)


# Factor weights
WEIGHT_UNAUTHORIZED = 0.4
WEIGHT_VULNERABILITY = 0.3  # scaled by max CVSS / 10
WEIGHT_DEFAULT_CREDENTIALS = 0.3
WEIGHT_UNENCRYPTED = 0.2
WEIGHT_EXCESSIVE_ACCESS = 0.2

# Level thresholds (score >= threshold)
THRESHOLD_MEDIUM = 0.4
THRESHOLD_HIGH = 0.7

ENCRYPTED_PROTOCOLS = frozenset({
    "HTTPS",
    "SSH",
    "MQTTS",
    "TLS",
    "DTLS",
    "SFTP",
    "FTPS",
    "IPSEC",
    "WIREGUARD",
    "COAPS",
})

FACTOR_UNAUTHORIZED = "Unauthorized device"
FACTOR_DEFAULT_CREDENTIALS = "Default credentials"
FACTOR_UNENCRYPTED = "Unencrypted communications"
FACTOR_EXCESSIVE_ACCESS = "Excessive network access"


# A risk predicate inspects a device and reports whether a factor applies.
RiskPredicate = Callable[[Device], bool]


def get_risk_level(score: float) -> RiskLevel:
    """
    Map a score to a level.

    Score ranges:
        [0.7, 1.0]: HIGH
        [0.4, 0.7): MEDIUM
        [0.0, 0.4): LOW
    """
    if score >= THRESHOLD_HIGH:
        return RiskLevel.HIGH
    if score >= THRESHOLD_MEDIUM:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def clamp_score(score: float) -> float:
    """Clamp to [0, 1] and round away float noise."""
    return round(max(0.0, min(1.0, score)), 4)


def reported_default_credentials(device: Device) -> bool:
    """Default credentials were reported by an external check (e.g. an active scan)."""
    return device.default_credentials is True


def never(device: Device) -> bool:
    return False


class ExcessiveAccessCheck:
    """
    Flags devices reaching more destinations than their type profile allows.

    Devices whose type has no configured profile are never flagged.
    """

    def __init__(self, profiles: Mapping[str, int] | None = None) -> None:
        self.profiles = {k.lower(): int(v) for k, v in (profiles or {}).items()}

    def __call__(self, device: Device) -> bool:
        limit = self.profiles.get(device.device_type.lower())
        if limit is None:
            return False
        return len(device.connection_targets) > limit


@dataclass
class RiskAssessment:
    """Result of a risk assessment."""

    score: float
    level: RiskLevel
    factors: list[str] = field(default_factory=list)
    vulnerabilities: list[VulnerabilityRecord] = field(default_factory=list)
    authorized: bool = False

    def apply_to(self, device: Device, checked_at: datetime | None = None) -> None:
        """Write the assessment onto a device record."""
        device.risk_score = self.score
        device.risk_level = self.level
        device.risk_factors = list(self.factors)
        device.vulnerabilities = list(self.vulnerabilities)
        device.authorized = self.authorized
        if checked_at is not None:
            device.last_vulnerability_check = checked_at

    def to_dict(self) -> dict:
        return {
            "risk_score": self.score,
            "risk_level": self.level.value,
            "risk_factors": list(self.factors),
            "vulnerabilities": [v.to_dict() for v in self.vulnerabilities],
            "authorized": self.authorized,
        }


class RiskAssessor:
    """
    Stateless risk scorer over immutable catalogs.

    Factors are evaluated in a fixed order so the factor list is
    reproducible. The default-credential and excessive-access factors are
    pluggable predicates.
    """

    def __init__(
        self,
        authorized: AuthorizedDevices | None = None,
        vulnerabilities: VulnerabilityCatalog | None = None,
        default_credentials: RiskPredicate | None = None,
        excessive_access: RiskPredicate | None = None,
        encrypted_protocols: frozenset[str] = ENCRYPTED_PROTOCOLS,
    ) -> None:
        self.authorized = authorized if authorized is not None else AuthorizedDevices()
        self.vulnerabilities = (
            vulnerabilities if vulnerabilities is not None else VulnerabilityCatalog()
        )
        self.default_credentials = default_credentials or reported_default_credentials
        self.excessive_access = excessive_access or never
        self.encrypted_protocols = frozenset(p.upper() for p in encrypted_protocols)

    def find_vulnerabilities(self, device: Device) -> list[VulnerabilityRecord]:
        """Vulnerability catalog matches for a device."""
        return match_vulnerabilities(
            self.vulnerabilities,
            device.manufacturer,
            device.model,
            device.firmware_version,
        )

    def assess(self, device: Device) -> RiskAssessment:
        """
        Assess a device.

        Args:
            device: Device to score (not modified)

        Returns:
            RiskAssessment with clamped score, level and factors
        """
        score = 0.0
        factors: list[str] = []

        authorized = device.hardware_address in self.authorized
        if not authorized:
            score += WEIGHT_UNAUTHORIZED
            factors.append(FACTOR_UNAUTHORIZED)

        vulnerabilities = self.find_vulnerabilities(device)
        highest = max_cvss(vulnerabilities)
        if highest is not None:
            score += (highest / 10.0) * WEIGHT_VULNERABILITY
            factors.append(f"Known vulnerabilities (max CVSS {highest:.1f})")

        if self._check(self.default_credentials, device, FACTOR_DEFAULT_CREDENTIALS):
            score += WEIGHT_DEFAULT_CREDENTIALS
            factors.append(FACTOR_DEFAULT_CREDENTIALS)

        if not self.uses_encryption(device):
            score += WEIGHT_UNENCRYPTED
            factors.append(FACTOR_UNENCRYPTED)

        if self._check(self.excessive_access, device, FACTOR_EXCESSIVE_ACCESS):
            score += WEIGHT_EXCESSIVE_ACCESS
            factors.append(FACTOR_EXCESSIVE_ACCESS)

        score = clamp_score(score)
        return RiskAssessment(
            score=score,
            level=get_risk_level(score),
            factors=factors,
            vulnerabilities=vulnerabilities,
            authorized=authorized,
        )

    def uses_encryption(self, device: Device) -> bool:
        return any(p.upper() in self.encrypted_protocols for p in device.protocols)

    def _check(self, predicate: RiskPredicate, device: Device, name: str) -> bool:
        try:
            return bool(predicate(device))
        except Exception as e:
            logger.error(
                "Risk predicate '%s' failed for %s: %s",
                name, device.hardware_address, e,
            )
            return False
