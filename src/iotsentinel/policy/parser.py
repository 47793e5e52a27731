"""
Policy file parser.

Parses YAML policy files into Policy objects.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from iotsentinel.policy.models import (
    WILDCARD,
    NetworkAction,
    Policy,
    PolicyRule,
    RemediationAction,
)
from iotsentinel.registry.models import RiskLevel


class PolicyParseError(Exception):
    """Error parsing policy file."""

    pass


VALID_RISK_LEVELS = {level.value for level in RiskLevel} | {WILDCARD}


def load_policy(path: str | Path) -> Policy:
    """
    Load policy from YAML file.

    Args:
        path: Path to policy YAML file

    Returns:
        Policy object with parsed rules

    Raises:
        FileNotFoundError: If file doesn't exist
        PolicyParseError: If file contains invalid policy
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise PolicyParseError(f"Invalid YAML: {e}") from e
        except UnicodeDecodeError as e:
            raise PolicyParseError(f"Policy file is not valid UTF-8: {e}") from e

    if data is None:
        return Policy(rules=[])

    return parse_policy(data)


def parse_policy(data: dict[str, Any]) -> Policy:
    """
    Parse policy from dictionary.

    Accepts the rule list under ``policies`` or ``rules``.
    """
    if not isinstance(data, dict):
        raise PolicyParseError("Policy must be a dictionary")

    rules_data = data.get("policies", data.get("rules", []))
    if not isinstance(rules_data, list):
        raise PolicyParseError("'policies' must be a list")

    rules = []
    for i, rule_data in enumerate(rules_data):
        try:
            rules.append(parse_rule(rule_data))
        except Exception as e:
            raise PolicyParseError(f"Error parsing policy {i}: {e}") from e

    return Policy(rules=rules)


def _parse_enum(enum_cls: type, value: Any, field_name: str) -> Any:
    if value is None or (isinstance(value, str) and value.lower() in ("", "none")):
        return None
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        raise PolicyParseError(f"Invalid {field_name}: {value}")


def _parse_list(value: Any, field_name: str) -> list[str]:
    if value is None:
        return [WILDCARD]
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise PolicyParseError(f"'{field_name}' must be a list or string")
    return [str(v) for v in value]


def parse_rule(data: dict[str, Any]) -> PolicyRule:
    """
    Parse a single policy rule from dictionary.

    Args:
        data: Dictionary with rule data

    Returns:
        PolicyRule object
    """
    if not isinstance(data, dict):
        raise PolicyParseError("Policy must be a dictionary")

    name = data.get("name")
    if not name:
        raise PolicyParseError("Policy must have 'name' field")

    priority = data.get("priority", 100)
    if not isinstance(priority, int) or isinstance(priority, bool):
        raise PolicyParseError(f"Invalid priority: {priority}")

    risk_levels = [level.lower() for level in _parse_list(data.get("risk_levels"), "risk_levels")]
    for level in risk_levels:
        if level not in VALID_RISK_LEVELS:
            raise PolicyParseError(f"Invalid risk level: {level}")

    alert_threshold = data.get("alert_threshold")
    if alert_threshold is not None:
        try:
            alert_threshold = int(alert_threshold)
        except (TypeError, ValueError):
            raise PolicyParseError(f"Invalid alert_threshold: {alert_threshold}")

    destinations = data.get("allowed_destinations") or []
    if not isinstance(destinations, list):
        raise PolicyParseError("'allowed_destinations' must be a list")

    return PolicyRule(
        name=str(name),
        priority=priority,
        device_types=frozenset(_parse_list(data.get("device_types"), "device_types")),
        risk_levels=frozenset(risk_levels),
        network_control=_parse_enum(NetworkAction, data.get("network_control"), "network_control"),
        allowed_destinations=tuple(str(d) for d in destinations),
        enhanced_monitoring=bool(data.get("enhanced_monitoring", False)),
        alert_threshold=alert_threshold,
        remediation=_parse_enum(RemediationAction, data.get("remediation"), "remediation"),
        comment=data.get("comment", ""),
    )


def validate_policy(policy: Policy) -> list[str]:
    """
    Validate a policy and return list of errors/warnings.

    Args:
        policy: Policy to validate

    Returns:
        List of error/warning messages
    """
    errors: list[str] = []

    if not policy.rules:
        errors.append("Warning: Policy has no rules")
        return errors

    seen_names: dict[str, int] = {}
    for i, rule in enumerate(policy.rules):
        if rule.name in seen_names:
            errors.append(
                f"Policy {i} ('{rule.name}') has the same name as policy {seen_names[rule.name]}"
            )
        seen_names.setdefault(rule.name, i)

    # Equal priorities with overlapping scope fall back to catalog order
    for i, rule in enumerate(policy.rules):
        for j in range(i + 1, len(policy.rules)):
            other = policy.rules[j]
            if rule.priority != other.priority:
                continue
            if _overlaps(rule.device_types, other.device_types) and _overlaps(
                rule.risk_levels, other.risk_levels
            ):
                errors.append(
                    f"Warning: Policies '{rule.name}' and '{other.name}' share priority "
                    f"{rule.priority}; '{rule.name}' wins by catalog order"
                )

    for rule in policy.rules:
        if rule.network_control == NetworkAction.RESTRICT and not rule.allowed_destinations:
            errors.append(
                f"Warning: Policy '{rule.name}' restricts without allowed_destinations "
                "(device will be cut off from all destinations)"
            )
        if rule.alert_threshold is not None and rule.alert_threshold <= 0:
            errors.append(f"Policy '{rule.name}': alert_threshold must be positive")

    if not any(rule.is_catch_all for rule in policy.rules):
        errors.append("Warning: No catch-all policy; some devices may have no policy")

    return errors


def _overlaps(a: frozenset[str], b: frozenset[str]) -> bool:
    return WILDCARD in a or WILDCARD in b or bool(a & b)
