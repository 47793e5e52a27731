"""
Enforcement collaborators.

Interfaces for the network-control backend (VLAN/ACL isolation) and the
remediation backend, plus dry-run implementations that only record and
log what they were asked to do.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, Sequence

from iotsentinel.policy.models import NetworkAction
from iotsentinel.registry.models import Device


logger = logging.getLogger(__name__)


class NetworkController(Protocol):
    """
    Network-control backend.

    Every call is idempotent and keyed by device identity.
    """

    async def isolate(self, device_id: str) -> None:
        ...

    async def restrict(self, device_id: str, allowed_destinations: Sequence[str]) -> None:
        ...

    async def monitor(self, device_id: str) -> None:
        ...


class RemediationHandler(Protocol):
    """Remediation backend (firmware patching, credential rotation, paging)."""

    async def patch(self, device: Device) -> None:
        ...

    async def credential_reset(self, device: Device) -> None:
        ...

    async def notify_admin(self, device: Device, reason: str) -> None:
        ...


@dataclass(frozen=True)
class NetworkState:
    """Network-control state applied to one device."""

    action: NetworkAction
    allowed_destinations: tuple[str, ...] = ()
    applied_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )


class InMemoryNetworkController:
    """
    Dry-run network controller.

    Keeps the last directive per device. Re-applying the same directive
    leaves the state untouched.
    """

    def __init__(self) -> None:
        self.state: dict[str, NetworkState] = {}
        self.calls: list[tuple[str, str]] = []

    def _apply(self, device_id: str, new_state: NetworkState) -> None:
        self.calls.append((new_state.action.value, device_id))
        if self.state.get(device_id) == new_state:
            logger.debug("Device %s already in state %s", device_id, new_state.action.value)
            return
        self.state[device_id] = new_state
        logger.info("Network control: %s %s", new_state.action.value, device_id)

    async def isolate(self, device_id: str) -> None:
        self._apply(device_id, NetworkState(NetworkAction.ISOLATE))

    async def restrict(self, device_id: str, allowed_destinations: Sequence[str]) -> None:
        self._apply(
            device_id,
            NetworkState(NetworkAction.RESTRICT, tuple(sorted(allowed_destinations))),
        )

    async def monitor(self, device_id: str) -> None:
        self._apply(device_id, NetworkState(NetworkAction.MONITOR))

    def action_for(self, device_id: str) -> NetworkAction | None:
        state = self.state.get(device_id)
        return state.action if state else None


class LoggingRemediationHandler:
    """Remediation backend that only logs the requested actions."""

    async def patch(self, device: Device) -> None:
        logger.warning(
            "REMEDIATION: firmware update required for %s (%s %s, firmware %s)",
            device.hardware_address, device.manufacturer, device.model,
            device.firmware_version or "unknown",
        )

    async def credential_reset(self, device: Device) -> None:
        logger.warning(
            "REMEDIATION: credential reset required for %s (%s)",
            device.hardware_address, device.network_address or "no address",
        )

    async def notify_admin(self, device: Device, reason: str) -> None:
        logger.warning("ALERT: %s - %s", device.hardware_address, reason)
