"""
Event forwarders.

Delivery is best-effort: a forwarder failure is logged and never reaches
the pipeline, and nothing is retried synchronously.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol, Sequence

from iotsentinel.forwarding.events import SecurityEvent

if TYPE_CHECKING:
    from iotsentinel.audit.database import AuditDatabase


logger = logging.getLogger(__name__)


class EventForwarder(Protocol):
    """Sink for security events."""

    async def forward(self, event: SecurityEvent) -> None:
        ...


class LoggingForwarder:
    """Writes events to the ``iotsentinel.events`` logger as JSON."""

    def __init__(self, logger_name: str = "iotsentinel.events") -> None:
        self._logger = logging.getLogger(logger_name)

    async def forward(self, event: SecurityEvent) -> None:
        self._logger.info("%s %s", event.event_type.value, event.model_dump_json())


class AuditForwarder:
    """Persists events (and the device snapshot they carry) to the audit store."""

    def __init__(self, db: AuditDatabase) -> None:
        self.db = db

    async def forward(self, event: SecurityEvent) -> None:
        self.db.log_event(event)


class MemoryForwarder:
    """Keeps forwarded events in memory (tooling and tests)."""

    def __init__(self) -> None:
        self.events: list[SecurityEvent] = []

    async def forward(self, event: SecurityEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[SecurityEvent]:
        return [e for e in self.events if e.event_type.value == event_type]


class CompositeForwarder:
    """
    Fans events out to several forwarders.

    Sinks are isolated from each other: one failing or timing out does
    not stop delivery to the rest.
    """

    def __init__(self, forwarders: Sequence[EventForwarder], timeout: float = 5.0) -> None:
        self.forwarders = list(forwarders)
        self.timeout = timeout
        self._failures = 0

    async def forward(self, event: SecurityEvent) -> None:
        for forwarder in self.forwarders:
            if not await forward_safely(forwarder, event, self.timeout):
                self._failures += 1

    @property
    def failures(self) -> int:
        return self._failures


async def forward_safely(
    forwarder: EventForwarder | None,
    event: SecurityEvent,
    timeout: float = 5.0,
) -> bool:
    """
    Deliver an event, logging instead of raising on failure.

    Returns:
        True if the event was delivered
    """
    if forwarder is None:
        return False
    try:
        await asyncio.wait_for(forwarder.forward(event), timeout=timeout)
    except Exception as e:
        logger.warning(
            "Forwarding %s via %s failed: %s",
            event.event_type.value, type(forwarder).__name__, str(e) or type(e).__name__,
        )
        return False
    return True
