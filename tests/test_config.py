"""
Tests for configuration loading and validation.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from iotsentinel.config import (
    SIEM_API_KEY_ENV,
    ActiveScanConfig,
    APIConfig,
    BaselineConfig,
    CaptureConfig,
    DaemonConfig,
    ForwardingConfig,
    RiskConfig,
    SentinelConfig,
    load_config,
    validate_config,
)


class TestSentinelConfig:
    """Tests for SentinelConfig dataclass."""

    def test_default_config(self) -> None:
        """Test default configuration values."""
        config = SentinelConfig()

        assert config.daemon.log_level == "info"
        assert config.capture.interfaces == ["eth0"]
        assert config.capture.max_concurrent == 16
        assert config.baseline.interval == 300
        assert config.assessment.vulnerability_interval == 86400
        assert config.active_scan.enabled is False
        assert config.database.enabled is False
        assert config.api.port == 8000
        assert config.report.high_risk_segmentation_threshold == 3

    def test_from_dict(self) -> None:
        """Test creating config from dictionary."""
        data = {
            "daemon": {"log_level": "debug"},
            "capture": {"interfaces": ["eth0", "wlan0"]},
            "active_scan": {"enabled": True, "timeout": 30},
            "risk": {"type_profiles": {"camera": 3}},
        }
        config = SentinelConfig.from_dict(data)

        assert config.daemon.log_level == "debug"
        assert config.capture.interfaces == ["eth0", "wlan0"]
        assert config.active_scan.timeout == 30
        assert config.risk.type_profiles == {"camera": 3}
        # Check defaults still work
        assert config.capture.queue_size == 1000
        assert config.api.enabled is False

    def test_from_dict_empty(self) -> None:
        """Test creating config from empty dictionary."""
        config = SentinelConfig.from_dict({})

        assert config == SentinelConfig()

    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(TypeError):
            SentinelConfig.from_dict({"baseline": {"intervall": 60}})


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_from_file(self, sample_config: Path) -> None:
        """Test loading config from file."""
        config = load_config(sample_config)

        assert config.daemon.log_level == "debug"
        assert config.capture.interfaces == ["eth0", "wlan0"]
        assert config.capture.queue_size == 50
        assert config.database.enabled is True
        assert config.catalogs.fingerprints.endswith("fingerprints.yaml")

    def test_load_missing_file(self, temp_dir: Path) -> None:
        """Test loading non-existent file raises error."""
        with pytest.raises(FileNotFoundError):
            load_config(temp_dir / "nonexistent.yaml")

    def test_load_default_when_no_path(
        self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test defaults are returned when no config file is found."""
        monkeypatch.chdir(temp_dir)
        monkeypatch.setattr("iotsentinel.config.DEFAULT_CONFIG_PATH", temp_dir / "absent.yaml")

        assert load_config() == SentinelConfig()

    def test_load_from_working_directory(
        self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (temp_dir / "config").mkdir()
        with open(temp_dir / "config" / "sentinel.yaml", "w") as f:
            yaml.dump({"api": {"port": 9100}}, f)
        monkeypatch.chdir(temp_dir)
        monkeypatch.setattr("iotsentinel.config.DEFAULT_CONFIG_PATH", temp_dir / "absent.yaml")

        assert load_config().api.port == 9100

    def test_load_empty_file(self, temp_dir: Path) -> None:
        path = temp_dir / "empty.yaml"
        path.write_text("")

        assert load_config(path) == SentinelConfig()

    def test_load_invalid_yaml(self, temp_dir: Path) -> None:
        """Test loading invalid YAML raises error."""
        path = temp_dir / "invalid.yaml"
        path.write_text("daemon: [unclosed")

        with pytest.raises(yaml.YAMLError):
            load_config(path)

    def test_shipped_config_is_valid(self) -> None:
        path = Path(__file__).parent.parent / "config" / "sentinel.yaml"

        config = load_config(path)

        assert validate_config(config) == []


class TestValidateConfig:
    """Tests for validate_config function."""

    def test_valid_config(self) -> None:
        """Test valid config returns no errors."""
        assert validate_config(SentinelConfig()) == []

    def test_invalid_log_level(self) -> None:
        config = SentinelConfig(daemon=DaemonConfig(log_level="verbose"))

        errors = validate_config(config)

        assert errors == ["Invalid log_level: verbose"]

    def test_no_interfaces(self) -> None:
        config = SentinelConfig(capture=CaptureConfig(interfaces=[]))

        assert "At least one capture interface is required" in validate_config(config)

    def test_invalid_concurrency(self) -> None:
        config = SentinelConfig(capture=CaptureConfig(max_concurrent=0))

        assert any("max_concurrent" in e for e in validate_config(config))

    @pytest.mark.parametrize("section", [
        BaselineConfig(interval=0),
        ActiveScanConfig(timeout=-1),
    ])
    def test_non_positive_intervals(self, section) -> None:
        name = "baseline" if isinstance(section, BaselineConfig) else "active_scan"
        config = SentinelConfig(**{name: section})

        errors = validate_config(config)

        assert len(errors) == 1
        assert "must be positive" in errors[0]

    @pytest.mark.parametrize("factor", [0, 1.5])
    def test_invalid_enhanced_factor(self, factor: float) -> None:
        config = SentinelConfig(baseline=BaselineConfig(enhanced_factor=factor))

        assert any("enhanced_factor" in e for e in validate_config(config))

    def test_invalid_port(self) -> None:
        config = SentinelConfig(api=APIConfig(port=70000))

        assert validate_config(config) == ["Invalid API port: 70000"]

    def test_invalid_type_profile(self) -> None:
        config = SentinelConfig(risk=RiskConfig(type_profiles={"camera": -1}))

        assert validate_config(config) == ["Invalid risk type profile for camera: -1"]


class TestForwardingConfig:
    """Tests for SIEM credentials."""

    def test_api_key_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test API key loaded from environment."""
        monkeypatch.setenv(SIEM_API_KEY_ENV, "siem-key-123")

        assert ForwardingConfig().api_key == "siem-key-123"

    def test_api_key_explicit_overrides_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test explicit API key overrides environment."""
        monkeypatch.setenv(SIEM_API_KEY_ENV, "env-key")

        assert ForwardingConfig(api_key="explicit-key").api_key == "explicit-key"

    def test_no_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(SIEM_API_KEY_ENV, raising=False)

        assert ForwardingConfig().api_key is None
