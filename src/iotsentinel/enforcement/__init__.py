"""
Policy Enforcement.

Applies network-control, monitoring and remediation directives to devices.
"""

from iotsentinel.enforcement.controllers import (
    InMemoryNetworkController,
    LoggingRemediationHandler,
    NetworkController,
    NetworkState,
    RemediationHandler,
)
from iotsentinel.enforcement.dispatcher import EnforcementDispatcher, EnforcementResult

__all__ = [
    "EnforcementDispatcher",
    "EnforcementResult",
    "InMemoryNetworkController",
    "LoggingRemediationHandler",
    "NetworkController",
    "NetworkState",
    "RemediationHandler",
]
