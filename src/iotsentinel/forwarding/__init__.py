"""
Event Forwarding.

Structured security events and the sinks they are delivered to.
"""

from iotsentinel.forwarding.events import SecurityEvent, SecurityEventType
from iotsentinel.forwarding.forwarder import (
    AuditForwarder,
    CompositeForwarder,
    EventForwarder,
    LoggingForwarder,
    MemoryForwarder,
    forward_safely,
)

__all__ = [
    "AuditForwarder",
    "CompositeForwarder",
    "EventForwarder",
    "LoggingForwarder",
    "MemoryForwarder",
    "SecurityEvent",
    "SecurityEventType",
    "forward_safely",
]
