"""
Configuration management for IoT Sentinel.

Handles loading, validation, and access to daemon configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/iot-sentinel/sentinel.yaml")
DEFAULT_POLICY_PATH = Path("/etc/iot-sentinel/policy.yaml")
DEFAULT_DB_PATH = Path("/var/lib/iot-sentinel/audit.db")

SIEM_API_KEY_ENV = "IOTSENTINEL_SIEM_API_KEY"


@dataclass
class DaemonConfig:
    """Daemon general settings."""

    log_level: str = "info"
    log_file: str | None = None


@dataclass
class CaptureConfig:
    """Capture boundary settings."""

    interfaces: list[str] = field(default_factory=lambda: ["eth0"])
    queue_size: int = 1000
    # Observations processed concurrently across all interfaces
    max_concurrent: int = 16


@dataclass
class CatalogConfig:
    """Catalog file locations (YAML or JSON)."""

    fingerprints: str | None = None
    vulnerabilities: str | None = None
    authorized_devices: str | None = None
    oui: str | None = None
    banners: str | None = None


@dataclass
class PolicyConfig:
    """Policy engine settings."""

    rules_file: str | None = str(DEFAULT_POLICY_PATH)


@dataclass
class BaselineConfig:
    """Behavioral baseline settings."""

    interval: int = 300
    window_size: int = 10
    traffic_threshold: int = 10_000_000
    enhanced_factor: float = 0.5


@dataclass
class AssessmentConfig:
    """Vulnerability re-check settings."""

    tick_interval: int = 3600
    vulnerability_interval: int = 86400


@dataclass
class ActiveScanConfig:
    """Active-scan refresh settings."""

    enabled: bool = False
    tick_interval: int = 3600
    interval: int = 86400
    timeout: int = 60


@dataclass
class EnforcementConfig:
    """Enforcement collaborator settings."""

    call_timeout: float = 10.0


@dataclass
class ForwardingConfig:
    """Event forwarding settings."""

    enabled: bool = False
    siem_url: str | None = None
    api_key: str | None = None

    def __post_init__(self) -> None:
        # Load API key from environment if not set
        if self.api_key is None:
            self.api_key = os.environ.get(SIEM_API_KEY_ENV)


@dataclass
class DatabaseConfig:
    """Audit database settings."""

    enabled: bool = False
    path: str = str(DEFAULT_DB_PATH)
    wal_mode: bool = True


@dataclass
class APIConfig:
    """API server settings."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class ReportConfig:
    """Report recommendation thresholds."""

    high_risk_segmentation_threshold: int = 3


@dataclass
class RiskConfig:
    """Risk predicate settings."""

    # Device type -> maximum distinct destinations before access is excessive
    type_profiles: dict[str, int] = field(default_factory=dict)


@dataclass
class SentinelConfig:
    """Main configuration container."""

    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    catalogs: CatalogConfig = field(default_factory=CatalogConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    baseline: BaselineConfig = field(default_factory=BaselineConfig)
    assessment: AssessmentConfig = field(default_factory=AssessmentConfig)
    active_scan: ActiveScanConfig = field(default_factory=ActiveScanConfig)
    enforcement: EnforcementConfig = field(default_factory=EnforcementConfig)
    forwarding: ForwardingConfig = field(default_factory=ForwardingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    api: APIConfig = field(default_factory=APIConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SentinelConfig:
        """Create configuration from dictionary."""
        return cls(
            daemon=DaemonConfig(**data.get("daemon", {})),
            capture=CaptureConfig(**data.get("capture", {})),
            catalogs=CatalogConfig(**data.get("catalogs", {})),
            policy=PolicyConfig(**data.get("policy", {})),
            baseline=BaselineConfig(**data.get("baseline", {})),
            assessment=AssessmentConfig(**data.get("assessment", {})),
            active_scan=ActiveScanConfig(**data.get("active_scan", {})),
            enforcement=EnforcementConfig(**data.get("enforcement", {})),
            forwarding=ForwardingConfig(**data.get("forwarding", {})),
            database=DatabaseConfig(**data.get("database", {})),
            api=APIConfig(**data.get("api", {})),
            report=ReportConfig(**data.get("report", {})),
            risk=RiskConfig(**data.get("risk", {})),
        )


def load_config(path: str | Path | None = None) -> SentinelConfig:
    """
    Load configuration from YAML file.

    Args:
        path: Path to configuration file. If None, uses default paths.

    Returns:
        SentinelConfig instance with loaded settings.

    Raises:
        FileNotFoundError: If an explicit config file does not exist.
        yaml.YAMLError: If config file is invalid YAML.
    """
    if path is None:
        # Try default locations
        candidates = [
            DEFAULT_CONFIG_PATH,
            Path("config/sentinel.yaml"),
            Path("sentinel.yaml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path is None:
        # Return default configuration
        return SentinelConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return SentinelConfig.from_dict(data)


def validate_config(config: SentinelConfig) -> list[str]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate.

    Returns:
        List of error messages. Empty list if valid.
    """
    errors: list[str] = []

    # Validate log level
    valid_log_levels = {"debug", "info", "warning", "error"}
    if config.daemon.log_level not in valid_log_levels:
        errors.append(f"Invalid log_level: {config.daemon.log_level}")

    # Validate capture
    if not config.capture.interfaces:
        errors.append("At least one capture interface is required")
    if config.capture.queue_size < 0:
        errors.append(f"Invalid capture queue_size: {config.capture.queue_size}")
    if config.capture.max_concurrent < 1:
        errors.append(f"Invalid capture max_concurrent: {config.capture.max_concurrent}")

    # Validate intervals
    intervals = {
        "baseline.interval": config.baseline.interval,
        "assessment.tick_interval": config.assessment.tick_interval,
        "assessment.vulnerability_interval": config.assessment.vulnerability_interval,
        "active_scan.tick_interval": config.active_scan.tick_interval,
        "active_scan.interval": config.active_scan.interval,
        "active_scan.timeout": config.active_scan.timeout,
        "enforcement.call_timeout": config.enforcement.call_timeout,
    }
    for name, value in intervals.items():
        if value <= 0:
            errors.append(f"Invalid {name}: {value} (must be positive)")

    # Validate baseline
    if config.baseline.window_size < 1:
        errors.append(f"Invalid baseline window_size: {config.baseline.window_size}")
    if config.baseline.traffic_threshold <= 0:
        errors.append(f"Invalid baseline traffic_threshold: {config.baseline.traffic_threshold}")
    if not (0 < config.baseline.enhanced_factor <= 1):
        errors.append(f"Invalid baseline enhanced_factor: {config.baseline.enhanced_factor}")

    # Validate port ranges
    if not (1 <= config.api.port <= 65535):
        errors.append(f"Invalid API port: {config.api.port}")

    # Validate report thresholds
    if config.report.high_risk_segmentation_threshold < 0:
        errors.append(
            "Invalid report high_risk_segmentation_threshold: "
            f"{config.report.high_risk_segmentation_threshold}"
        )

    # Validate risk profiles
    for device_type, limit in config.risk.type_profiles.items():
        if not isinstance(limit, int) or limit < 0:
            errors.append(f"Invalid risk type profile for {device_type}: {limit}")

    return errors
