"""
Policy data models.

Defines security policy rules and the enforcement directives they carry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from iotsentinel.registry.models import RiskLevel


WILDCARD = "any"


class NetworkAction(Enum):
    """Network-control directive."""

    ISOLATE = "isolate"
    RESTRICT = "restrict"
    MONITOR = "monitor"

    def __str__(self) -> str:
        return self.value


class RemediationAction(Enum):
    """Remediation directive, applied only to high-risk devices."""

    PATCH = "patch"
    CREDENTIAL_RESET = "credential_reset"
    NOTIFY_ADMIN = "notify_admin"

    def __str__(self) -> str:
        return self.value


def _normalize_set(values: Iterable[str] | str | None) -> frozenset[str]:
    if values is None:
        return frozenset({WILDCARD})
    if isinstance(values, str):
        values = [values]
    normalized = frozenset(str(v).strip().lower() for v in values)
    return normalized or frozenset({WILDCARD})


@dataclass(frozen=True)
class PolicyRule:
    """
    A single security policy.

    A rule applies to a device when its device type is in ``device_types``
    and its risk level is in ``risk_levels`` (``any`` matches everything).
    Lower ``priority`` wins.
    """

    name: str
    priority: int = 100
    device_types: frozenset[str] = frozenset({WILDCARD})
    risk_levels: frozenset[str] = frozenset({WILDCARD})
    network_control: NetworkAction | None = None
    allowed_destinations: tuple[str, ...] = ()
    enhanced_monitoring: bool = False
    alert_threshold: int | None = None  # bytes per baseline sample
    remediation: RemediationAction | None = None
    comment: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "device_types", _normalize_set(self.device_types))
        object.__setattr__(self, "risk_levels", _normalize_set(self.risk_levels))
        object.__setattr__(self, "allowed_destinations", tuple(self.allowed_destinations))

    def matches_type(self, device_type: str) -> bool:
        return WILDCARD in self.device_types or device_type.lower() in self.device_types

    def matches_level(self, risk_level: RiskLevel | str) -> bool:
        level = risk_level.value if isinstance(risk_level, RiskLevel) else str(risk_level)
        return WILDCARD in self.risk_levels or level.lower() in self.risk_levels

    def matches(self, device_type: str, risk_level: RiskLevel | str) -> bool:
        return self.matches_type(device_type) and self.matches_level(risk_level)

    @property
    def is_catch_all(self) -> bool:
        return WILDCARD in self.device_types and WILDCARD in self.risk_levels

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "priority": self.priority,
            "device_types": sorted(self.device_types),
            "risk_levels": sorted(self.risk_levels),
            "network_control": str(self.network_control) if self.network_control else None,
            "allowed_destinations": list(self.allowed_destinations),
            "enhanced_monitoring": self.enhanced_monitoring,
            "alert_threshold": self.alert_threshold,
            "remediation": str(self.remediation) if self.remediation else None,
            "comment": self.comment,
        }


@dataclass
class Policy:
    """
    Complete policy set, in catalog order.

    Catalog order breaks priority ties.
    """

    rules: list[PolicyRule] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"policies": [rule.to_dict() for rule in self.rules]}
