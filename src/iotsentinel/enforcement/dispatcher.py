"""
Enforcement Dispatcher.

Turns a selected policy into calls against the network-control,
monitoring and remediation collaborators. The three steps run
independently: a failure in one is recorded and the others still run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any, Awaitable, Callable

from iotsentinel.clock import Clock, SystemClock
from iotsentinel.enforcement.controllers import NetworkController, RemediationHandler
from iotsentinel.monitoring.baseline import BaselineTracker
from iotsentinel.policy.models import NetworkAction, PolicyRule, RemediationAction
from iotsentinel.registry.models import Device, RiskLevel


logger = logging.getLogger(__name__)


@dataclass
class EnforcementResult:
    """
    Outcome of enforcing a policy against one device.

    ``network_dispatched`` is False when the directive was already in
    effect and the call was skipped.
    """

    hardware_address: str
    policy_name: str
    timestamp: datetime
    network_action: NetworkAction | None = None
    network_dispatched: bool = False
    monitoring_configured: bool = False
    remediation: RemediationAction | None = None
    remediation_done: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def apply_to(self, device: Device) -> None:
        """Record the enforcement attempt on the device (even after partial failure)."""
        device.applied_policy = self.policy_name
        device.last_enforcement = self.timestamp

    def to_dict(self) -> dict[str, Any]:
        return {
            "hardware_address": self.hardware_address,
            "policy": self.policy_name,
            "timestamp": self.timestamp.isoformat(),
            "network_action": str(self.network_action) if self.network_action else None,
            "network_dispatched": self.network_dispatched,
            "monitoring_configured": self.monitoring_configured,
            "remediation": str(self.remediation) if self.remediation else None,
            "remediation_done": self.remediation_done,
            "errors": list(self.errors),
        }


class EnforcementDispatcher:
    """
    Dispatches policy directives to external collaborators.

    Network directives are remembered per device so repeating the same
    directive is a no-op. Each external call is bounded by ``call_timeout``.
    """

    def __init__(
        self,
        network: NetworkController,
        tracker: BaselineTracker | None = None,
        remediator: RemediationHandler | None = None,
        call_timeout: float = 10.0,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            network: Network-control backend
            tracker: Baseline tracker receiving monitoring settings
            remediator: Remediation backend (remediation skipped if None)
            call_timeout: Seconds allowed per external call
            clock: Time source for enforcement timestamps
        """
        self.network = network
        self.tracker = tracker
        self.remediator = remediator
        self.call_timeout = call_timeout
        self.clock = clock or SystemClock()

        self._applied: dict[str, tuple[NetworkAction, tuple[str, ...]]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

        # Statistics
        self._dispatched = 0
        self._skipped = 0
        self._failures = 0

    async def enforce(self, device: Device, rule: PolicyRule) -> EnforcementResult:
        """
        Enforce a policy against a device.

        Args:
            device: Device copy (not modified)
            rule: Selected policy

        Returns:
            EnforcementResult describing what was done and what failed
        """
        key = device.hardware_address
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            result = EnforcementResult(
                hardware_address=key,
                policy_name=rule.name,
                timestamp=self.clock.now(),
            )
            await self._network_step(device, rule, result)
            self._monitoring_step(device, rule, result)
            await self._remediation_step(device, rule, result)

        if result.errors:
            self._failures += 1
            logger.warning(
                "Enforcement of '%s' on %s completed with errors: %s",
                rule.name, key, "; ".join(result.errors),
            )
        else:
            logger.info(
                "Enforced policy '%s' on %s (network=%s, remediation=%s)",
                rule.name, key,
                result.network_action.value if result.network_action else "none",
                result.remediation.value if result.remediation_done else "none",
            )
        return result

    async def _network_step(
        self,
        device: Device,
        rule: PolicyRule,
        result: EnforcementResult,
    ) -> None:
        action = rule.network_control
        result.network_action = action
        if action is None:
            return

        key = device.hardware_address
        directive = (action, tuple(sorted(rule.allowed_destinations)))
        if self._applied.get(key) == directive:
            self._skipped += 1
            logger.debug("Network directive %s already applied to %s", action.value, key)
            return

        if action == NetworkAction.ISOLATE:
            call = partial(self.network.isolate, key)
        elif action == NetworkAction.RESTRICT:
            call = partial(self.network.restrict, key, list(directive[1]))
        else:
            call = partial(self.network.monitor, key)

        error = await self._call(call, f"network {action.value}")
        if error:
            result.errors.append(error)
            return

        self._applied[key] = directive
        self._dispatched += 1
        result.network_dispatched = True

    def _monitoring_step(
        self,
        device: Device,
        rule: PolicyRule,
        result: EnforcementResult,
    ) -> None:
        if self.tracker is None:
            return
        try:
            self.tracker.configure(
                device.hardware_address,
                enhanced=rule.enhanced_monitoring,
                alert_threshold=rule.alert_threshold,
            )
            result.monitoring_configured = True
        except Exception as e:
            result.errors.append(f"monitoring: {e}")

    async def _remediation_step(
        self,
        device: Device,
        rule: PolicyRule,
        result: EnforcementResult,
    ) -> None:
        if rule.remediation is None or device.risk_level != RiskLevel.HIGH:
            return
        result.remediation = rule.remediation
        if self.remediator is None:
            logger.debug("No remediation backend; skipping %s", rule.remediation.value)
            return

        if rule.remediation == RemediationAction.PATCH:
            call = partial(self.remediator.patch, device)
        elif rule.remediation == RemediationAction.CREDENTIAL_RESET:
            call = partial(self.remediator.credential_reset, device)
        else:
            reason = f"High-risk device under policy '{rule.name}': " + (
                ", ".join(device.risk_factors) or "no factors"
            )
            call = partial(self.remediator.notify_admin, device, reason)

        error = await self._call(call, f"remediation {rule.remediation.value}")
        if error:
            result.errors.append(error)
        else:
            result.remediation_done = True

    async def _call(self, call: Callable[[], Awaitable[Any]], label: str) -> str | None:
        """Run an external call with a timeout; return an error string on failure."""
        try:
            await asyncio.wait_for(call(), timeout=self.call_timeout)
        except asyncio.TimeoutError:
            return f"{label}: timed out after {self.call_timeout}s"
        except Exception as e:
            return f"{label}: {e}"
        return None

    def applied_action(self, hardware_address: str) -> NetworkAction | None:
        directive = self._applied.get(hardware_address)
        return directive[0] if directive else None

    def get_statistics(self) -> dict[str, int]:
        return {
            "dispatched": self._dispatched,
            "skipped_duplicates": self._skipped,
            "failures": self._failures,
        }
