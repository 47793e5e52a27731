"""
Policy Engine.

Selects the single best-matching security policy for a device.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from iotsentinel.policy.models import (
    WILDCARD,
    NetworkAction,
    Policy,
    PolicyRule,
    RemediationAction,
)
from iotsentinel.policy.parser import load_policy, validate_policy
from iotsentinel.registry.models import Device, RiskLevel


logger = logging.getLogger(__name__)


class PolicyEngine:
    """
    Stateless policy selector over an immutable rule set.

    Among the rules whose device types and risk levels match, the one with
    the lowest priority value is chosen; equal priorities are resolved by
    catalog order (first rule wins). No match is a valid outcome.
    """

    def __init__(self, policy: Policy | None = None) -> None:
        """
        Initialize the policy engine.

        Args:
            policy: Policy set to select from
        """
        self.policy = policy or Policy()

        # Statistics
        self._selections = 0
        self._gaps = 0
        self._rule_hits: dict[str, int] = {}

    @classmethod
    def from_file(cls, policy_path: str | Path) -> PolicyEngine:
        """
        Create engine from policy file.

        Args:
            policy_path: Path to policy YAML file

        Returns:
            Configured PolicyEngine
        """
        policy = load_policy(policy_path)
        for error in validate_policy(policy):
            logger.warning("Policy validation: %s", error)
        return cls(policy=policy)

    def candidates(self, device_type: str, risk_level: RiskLevel | str) -> list[PolicyRule]:
        """All rules matching a device type and level, in catalog order."""
        return [rule for rule in self.policy.rules if rule.matches(device_type, risk_level)]

    def select(self, device_type: str, risk_level: RiskLevel | str) -> PolicyRule | None:
        """
        Select the policy for a device type and risk level.

        Args:
            device_type: Device type (case-insensitive)
            risk_level: Risk level

        Returns:
            The winning PolicyRule, or None if no rule matches
        """
        best: PolicyRule | None = None
        for rule in self.candidates(device_type, risk_level):
            # Strict comparison keeps the earliest rule on ties
            if best is None or rule.priority < best.priority:
                best = rule

        if best is None:
            self._gaps += 1
            logger.debug("No policy for type=%s level=%s", device_type, risk_level)
            return None

        self._selections += 1
        self._rule_hits[best.name] = self._rule_hits.get(best.name, 0) + 1
        return best

    def select_for(self, device: Device) -> PolicyRule | None:
        """Select the policy for a device record."""
        return self.select(device.device_type, device.risk_level)

    def get_rule(self, name: str) -> PolicyRule | None:
        for rule in self.policy.rules:
            if rule.name == name:
                return rule
        return None

    def get_statistics(self) -> dict:
        """Get selection statistics."""
        return {
            "total_selections": self._selections,
            "coverage_gaps": self._gaps,
            "rule_hits": dict(self._rule_hits),
            "rule_count": len(self.policy.rules),
        }

    def reset_statistics(self) -> None:
        self._selections = 0
        self._gaps = 0
        self._rule_hits = {}


@dataclass
class PolicyBuilder:
    """
    Fluent builder for creating policies programmatically.
    """

    rules: list[PolicyRule] = field(default_factory=list)

    def add(
        self,
        name: str,
        priority: int = 100,
        device_types: Iterable[str] | str = WILDCARD,
        risk_levels: Iterable[str] | str = WILDCARD,
        **kwargs,
    ) -> PolicyBuilder:
        """Add a rule."""
        self.rules.append(PolicyRule(
            name=name,
            priority=priority,
            device_types=frozenset([device_types] if isinstance(device_types, str) else device_types),
            risk_levels=frozenset([risk_levels] if isinstance(risk_levels, str) else risk_levels),
            **kwargs,
        ))
        return self

    def isolate(self, name: str, priority: int = 100, **kwargs) -> PolicyBuilder:
        """Add an isolating rule."""
        return self.add(name, priority, network_control=NetworkAction.ISOLATE, **kwargs)

    def restrict(
        self,
        name: str,
        allowed_destinations: Iterable[str],
        priority: int = 100,
        **kwargs,
    ) -> PolicyBuilder:
        """Add a restricting rule."""
        return self.add(
            name,
            priority,
            network_control=NetworkAction.RESTRICT,
            allowed_destinations=tuple(allowed_destinations),
            **kwargs,
        )

    def monitor(self, name: str, priority: int = 100, **kwargs) -> PolicyBuilder:
        """Add a monitoring rule."""
        return self.add(name, priority, network_control=NetworkAction.MONITOR, **kwargs)

    def build(self) -> Policy:
        """Build the policy."""
        return Policy(rules=list(self.rules))

    def build_engine(self) -> PolicyEngine:
        """Build a PolicyEngine with this policy."""
        return PolicyEngine(policy=self.build())


def create_default_policy() -> Policy:
    """
    Create a sensible default policy.

    Returns:
        Default Policy: isolate high-risk devices, restrict medium-risk
        cameras and watch everything else.
    """
    return (
        PolicyBuilder()
        .isolate(
            "isolate-high-risk",
            priority=10,
            risk_levels="high",
            enhanced_monitoring=True,
            remediation=RemediationAction.NOTIFY_ADMIN,
            comment="Quarantine high-risk devices",
        )
        .restrict(
            "restrict-medium-risk-cameras",
            allowed_destinations=["nvr.local"],
            priority=20,
            device_types=["camera", "nvr"],
            risk_levels="medium",
            enhanced_monitoring=True,
            comment="Cameras may only reach the recorder",
        )
        .monitor(
            "monitor-medium-risk",
            priority=30,
            risk_levels="medium",
            enhanced_monitoring=True,
            comment="Watch medium-risk devices closely",
        )
        .monitor(
            "baseline-monitoring",
            priority=1000,
            comment="Default: monitor everything else",
        )
        .build()
    )
