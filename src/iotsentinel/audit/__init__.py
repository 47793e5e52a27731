"""
Audit Store.

Persistent storage for device snapshots and an append-only security
event log.
"""

from iotsentinel.audit.database import AuditDatabase
from iotsentinel.audit.models import (
    APPEND_ONLY_TRIGGERS,
    Base,
    DeviceRecord,
    EventRecord,
)

__all__ = [
    # Database
    "AuditDatabase",
    # Models
    "APPEND_ONLY_TRIGGERS",
    "Base",
    "DeviceRecord",
    "EventRecord",
]
