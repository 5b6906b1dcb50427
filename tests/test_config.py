"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from ponyup.config import (
    DEFAULT_READY_TIMEOUT_SECONDS,
    Config,
    ConfigurationError,
    LogFormat,
)


class TestConfig:
    """Tests for Config class."""

    def test_defaults(self) -> None:
        """Test that a default configuration is valid."""
        config = Config()

        assert config.profile == "staging"
        assert config.declarations_file == Path("Ponyfile.yaml")
        assert config.ready_timeout_seconds == DEFAULT_READY_TIMEOUT_SECONDS == 600
        assert config.ready_poll_interval_seconds == 5
        assert config.provision_timeout_seconds is None
        assert config.ssh_user == "ubuntu"
        assert config.knife_command == "knife"
        assert config.log_format == LogFormat.TEXT

    def test_identity_file(self, tmp_path: Path) -> None:
        """Test that identity files are <key_name>.pem in the identity dir."""
        config = Config(identity_dir=tmp_path)
        assert config.identity_file("deploy") == tmp_path / "deploy.pem"

    def test_empty_profile(self) -> None:
        """Test that an empty profile raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(profile="")

        assert "PONYUP_PROFILE" in str(exc_info.value)

    def test_invalid_profile_name(self) -> None:
        """Test that a profile name with path characters is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(profile="../prod")

        assert "PONYUP_PROFILE" in str(exc_info.value)

    def test_ready_timeout_out_of_range(self) -> None:
        """Test that out-of-range readiness timeout raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ready_timeout_seconds=0)
        assert "PONYUP_READY_TIMEOUT" in str(exc_info.value)

        with pytest.raises(ConfigurationError):
            Config(ready_timeout_seconds=7201)

    def test_poll_interval_must_be_shorter_than_timeout(self) -> None:
        """Test that the poll interval cannot exceed the timeout."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ready_timeout_seconds=10, ready_poll_interval_seconds=10)

        assert "PONYUP_READY_POLL_INTERVAL" in str(exc_info.value)

    def test_provision_timeout_positive(self) -> None:
        """Test that a zero provision timeout is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(provision_timeout_seconds=0)

        assert "PONYUP_PROVISION_TIMEOUT" in str(exc_info.value)

    def test_invalid_log_level(self) -> None:
        """Test that an unknown log level is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(log_level="LOUD")

        assert "PONYUP_LOG_LEVEL" in str(exc_info.value)

    def test_errors_are_collected(self) -> None:
        """Test that every validation error is reported at once."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ssh_user="", knife_command="")

        message = str(exc_info.value)
        assert "PONYUP_SSH_USER" in message
        assert "PONYUP_KNIFE" in message


class TestConfigFromEnv:
    """Tests for Config.from_env."""

    def test_from_env_defaults(self) -> None:
        """Test loading with no PONYUP_ variables set."""
        with patch.dict(os.environ, {}, clear=True):
            config = Config.from_env()

        assert config.profile == "staging"
        assert config.declarations_file == Path("Ponyfile.yaml")
        assert config.provision_timeout_seconds is None

    def test_from_env_overrides(self, tmp_path: Path) -> None:
        """Test loading every variable from the environment."""
        env = {
            "PONYUP_PROFILE": "production",
            "PONYUP_FILE": str(tmp_path / "Ponyfile.yaml"),
            "PONYUP_PROFILES_FILE": str(tmp_path / "profiles.yaml"),
            "PONYUP_IDENTITY_DIR": str(tmp_path / "keys"),
            "PONYUP_READY_TIMEOUT": "300",
            "PONYUP_READY_POLL_INTERVAL": "10",
            "PONYUP_PROVISION_TIMEOUT": "1800",
            "PONYUP_SSH_USER": "admin",
            "PONYUP_KNIFE": "/opt/chef/bin/knife",
            "PONYUP_LOG_FORMAT": "JSON",
            "PONYUP_LOG_LEVEL": "DEBUG",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.profile == "production"
        assert config.declarations_file == tmp_path / "Ponyfile.yaml"
        assert config.profiles_file == tmp_path / "profiles.yaml"
        assert config.identity_file("deploy") == tmp_path / "keys" / "deploy.pem"
        assert config.ready_timeout_seconds == 300
        assert config.ready_poll_interval_seconds == 10
        assert config.provision_timeout_seconds == 1800
        assert config.ssh_user == "admin"
        assert config.knife_command == "/opt/chef/bin/knife"
        assert config.log_format == LogFormat.JSON
        assert config.log_level == "DEBUG"

    def test_from_env_invalid_integer(self) -> None:
        """Test that a non-integer timeout raises error."""
        with patch.dict(os.environ, {"PONYUP_READY_TIMEOUT": "soon"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "PONYUP_READY_TIMEOUT must be an integer" in str(exc_info.value)

    def test_from_env_invalid_log_format(self) -> None:
        """Test that an unknown log format raises error."""
        with patch.dict(os.environ, {"PONYUP_LOG_FORMAT": "xml"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "PONYUP_LOG_FORMAT" in str(exc_info.value)

    def test_from_env_empty_profile_falls_back(self) -> None:
        """Test that an empty PONYUP_PROFILE selects the default profile."""
        with patch.dict(os.environ, {"PONYUP_PROFILE": ""}, clear=True):
            config = Config.from_env()

        assert config.profile == "staging"
