"""Tests for engine settings."""
from pathlib import Path

import pytest

from firewall_reconciler.errors import ConfigurationError
from firewall_reconciler.settings import RetentionPolicy, Settings, Timeouts
from firewall_reconciler.utils.retry import RetryPolicy


class TestSettings:
    """Tests for Settings defaults and validation."""

    def test_defaults(self):
        """Test defaults enable the backup gate and bound concurrency."""
        settings = Settings(base_dir="~/firecraft-test")

        assert settings.base_dir == Path.home() / "firecraft-test"
        assert settings.require_backup
        assert settings.max_concurrency == 8
        assert settings.shadow_scope == "device_group"
        assert settings.post_validation_checks == ["control_plane", "ha_state", "synthetic_traffic"]

    def test_is_production(self):
        """Test production environments match case-insensitively."""
        settings = Settings(production_environments=["Prod"])
        assert settings.is_production("prod")
        assert not settings.is_production("lab")
        assert not settings.is_production(None)

    @pytest.mark.parametrize("kwargs", [
        {"max_concurrency": 0},
        {"retry": RetryPolicy(max_attempts=0)},
        {"shadow_scope": "galaxy"},
        {"backup_retention_class": "hourly"},
    ])
    def test_invalid(self, kwargs):
        """Test invalid values raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            Settings(**kwargs)

    def test_retention_policy(self):
        """Test retention classes map to maximum ages."""
        policy = RetentionPolicy()
        assert policy.max_age_days("weekly") == 35
        with pytest.raises(ValueError):
            policy.max_age_days("hourly")


class TestSettingsSources:
    """Tests for loading settings from files and the environment."""

    def test_from_dict_nested(self):
        """Test nested sections become their dataclasses."""
        settings = Settings.from_dict({
            "max_concurrency": 2,
            "retry": {"max_attempts": 5, "min_wait": 0},
            "timeouts": {"commit": 30},
            "retention": {"daily": 3},
        })

        assert settings.retry.max_attempts == 5
        assert settings.timeouts == Timeouts(commit=30)
        assert settings.retention.daily == 3

    def test_from_dict_unknown_key(self):
        """Test unknown keys are rejected."""
        with pytest.raises(ConfigurationError, match="colour"):
            Settings.from_dict({"colour": "red"})

    def test_from_dict_bad_section(self):
        """Test unknown nested fields are rejected."""
        with pytest.raises(ConfigurationError):
            Settings.from_dict({"timeouts": {"forever": 1}})

    def test_from_file(self, tmp_path):
        """Test a YAML settings file is loaded."""
        path = tmp_path / "settings.yaml"
        path.write_text("require_backup: false\nshadow_scope: shared_zone\n")

        settings = Settings.from_file(path)
        assert not settings.require_backup
        assert settings.shadow_scope == "shared_zone"

    def test_from_missing_file(self, tmp_path):
        """Test a missing file yields defaults."""
        assert Settings.from_file(tmp_path / "nope.yaml").require_backup

    def test_from_non_mapping_file(self, tmp_path):
        """Test a file that is not a mapping is rejected."""
        path = tmp_path / "settings.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            Settings.from_file(path)

    def test_from_env(self, tmp_path, monkeypatch):
        """Test environment variables override defaults."""
        rules = tmp_path / "guardrails.yaml"
        rules.write_text("guardrails:\n  - type: shadow\n")
        monkeypatch.setenv("FIRECRAFT_HOME", str(tmp_path))
        monkeypatch.setenv("FIRECRAFT_MAX_CONCURRENCY", "3")
        monkeypatch.setenv("FIRECRAFT_RETRY_ATTEMPTS", "4")
        monkeypatch.setenv("FIRECRAFT_REQUIRE_BACKUP", "0")
        monkeypatch.setenv("FIRECRAFT_PRODUCTION_ENVS", "prod, dr ,")
        monkeypatch.setenv("FIRECRAFT_GIT", "0")
        monkeypatch.setenv("FIRECRAFT_GUARDRAILS_FILE", str(rules))

        settings = Settings.from_env()

        assert settings.base_dir == tmp_path
        assert settings.max_concurrency == 3
        assert settings.retry.max_attempts == 4
        assert not settings.require_backup
        assert settings.production_environments == ["prod", "dr"]
        assert not settings.git_enabled
        assert settings.guardrails == [{"type": "shadow"}]
