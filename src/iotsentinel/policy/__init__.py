"""
Policy Engine.

Implements deterministic, priority-based selection of the security policy
to enforce against each device.
"""

from iotsentinel.policy.engine import PolicyBuilder, PolicyEngine, create_default_policy
from iotsentinel.policy.models import (
    WILDCARD,
    NetworkAction,
    Policy,
    PolicyRule,
    RemediationAction,
)
from iotsentinel.policy.parser import (
    PolicyParseError,
    load_policy,
    parse_policy,
    parse_rule,
    validate_policy,
)

__all__ = [
    # Engine
    "PolicyBuilder",
    "PolicyEngine",
    "create_default_policy",
    # Models
    "WILDCARD",
    "NetworkAction",
    "Policy",
    "PolicyRule",
    "RemediationAction",
    # Parser
    "PolicyParseError",
    "load_policy",
    "parse_policy",
    "parse_rule",
    "validate_policy",
]
