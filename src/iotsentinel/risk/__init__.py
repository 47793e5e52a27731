"""
Risk Assessment.

Scores devices from authorization status, known vulnerabilities and
observed behaviour.
"""

from iotsentinel.risk.assessor import (
    ENCRYPTED_PROTOCOLS,
    THRESHOLD_HIGH,
    THRESHOLD_MEDIUM,
    ExcessiveAccessCheck,
    RiskAssessment,
    RiskAssessor,
    RiskPredicate,
    clamp_score,
    get_risk_level,
    reported_default_credentials,
)
from iotsentinel.risk.vulnerabilities import (
    firmware_matches,
    match_vulnerabilities,
    max_cvss,
    new_vulnerabilities,
)

__all__ = [
    # Assessor
    "ENCRYPTED_PROTOCOLS",
    "THRESHOLD_HIGH",
    "THRESHOLD_MEDIUM",
    "ExcessiveAccessCheck",
    "RiskAssessment",
    "RiskAssessor",
    "RiskPredicate",
    "clamp_score",
    "get_risk_level",
    "reported_default_credentials",
    # Vulnerabilities
    "firmware_matches",
    "match_vulnerabilities",
    "max_cvss",
    "new_vulnerabilities",
]
