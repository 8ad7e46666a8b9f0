"""Engine configuration.

Settings come from a YAML file or from environment variables:

- FIRECRAFT_HOME: Base directory for state (default: ~/.firecraft)
- FIRECRAFT_MAX_CONCURRENCY: Concurrent in-flight device operations (default: 8)
- FIRECRAFT_RETRY_ATTEMPTS: Attempts per adapter call (default: 3)
- FIRECRAFT_REQUIRE_BACKUP: "0" disables the pre-deployment backup gate
- FIRECRAFT_PRODUCTION_ENVS: Comma-separated production environment names
- FIRECRAFT_HIGH_RISK_ZONES: Comma-separated high-risk zone names
- FIRECRAFT_SHADOW_SCOPE: device_group or shared_zone
- FIRECRAFT_GUARDRAILS_FILE: YAML rule set (default: built-in families)
- FIRECRAFT_GIT: "0" disables git versioning of intents
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigurationError
from .utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_BASE_DIR = Path.home() / ".firecraft"

RETENTION_CLASSES = ("daily", "weekly", "monthly")


@dataclass
class Timeouts:
    """Per-transition timeouts in seconds."""
    stage: float = 60
    validate: float = 60
    commit: float = 120
    post_validate: float = 300
    fetch: float = 60


@dataclass
class RetentionPolicy:
    """Maximum backup age in days per retention class."""
    daily: int = 7
    weekly: int = 35
    monthly: int = 365

    def max_age_days(self, retention_class: str) -> int:
        if retention_class not in RETENTION_CLASSES:
            raise ValueError(f"Unknown retention class '{retention_class}'")
        return getattr(self, retention_class)


@dataclass
class Settings:
    """Reconciliation engine settings."""
    base_dir: Path = DEFAULT_BASE_DIR
    max_concurrency: int = 8
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    timeouts: Timeouts = field(default_factory=Timeouts)
    require_backup: bool = True
    backup_retention_class: str = "daily"
    production_environments: list[str] = field(default_factory=lambda: ["prod", "production"])
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    guardrails: Optional[list[dict[str, Any]]] = None
    high_risk_zones: list[str] = field(default_factory=lambda: ["untrust", "internet"])
    shadow_scope: str = "device_group"
    post_validation_checks: list[str] = field(
        default_factory=lambda: ["control_plane", "ha_state", "synthetic_traffic"]
    )
    drift_interval: float = 3600
    git_enabled: bool = True

    def __post_init__(self):
        self.base_dir = Path(self.base_dir).expanduser()
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be at least 1")
        if self.retry.max_attempts < 1:
            raise ConfigurationError("retry.max_attempts must be at least 1")
        if self.shadow_scope not in ("device_group", "shared_zone"):
            raise ConfigurationError(
                f"shadow_scope must be device_group or shared_zone, got '{self.shadow_scope}'"
            )
        if self.backup_retention_class not in RETENTION_CLASSES:
            raise ConfigurationError(f"Unknown retention class '{self.backup_retention_class}'")

    def is_production(self, environment: Optional[str]) -> bool:
        return bool(environment) and environment.lower() in {
            e.lower() for e in self.production_environments
        }

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        kwargs: dict[str, Any] = {}
        if "FIRECRAFT_HOME" in os.environ:
            kwargs["base_dir"] = Path(os.environ["FIRECRAFT_HOME"])
        if "FIRECRAFT_MAX_CONCURRENCY" in os.environ:
            kwargs["max_concurrency"] = int(os.environ["FIRECRAFT_MAX_CONCURRENCY"])
        if "FIRECRAFT_RETRY_ATTEMPTS" in os.environ:
            kwargs["retry"] = RetryPolicy(max_attempts=int(os.environ["FIRECRAFT_RETRY_ATTEMPTS"]))
        if "FIRECRAFT_REQUIRE_BACKUP" in os.environ:
            kwargs["require_backup"] = os.environ["FIRECRAFT_REQUIRE_BACKUP"] != "0"
        if "FIRECRAFT_PRODUCTION_ENVS" in os.environ:
            kwargs["production_environments"] = _split(os.environ["FIRECRAFT_PRODUCTION_ENVS"])
        if "FIRECRAFT_HIGH_RISK_ZONES" in os.environ:
            kwargs["high_risk_zones"] = _split(os.environ["FIRECRAFT_HIGH_RISK_ZONES"])
        if "FIRECRAFT_SHADOW_SCOPE" in os.environ:
            kwargs["shadow_scope"] = os.environ["FIRECRAFT_SHADOW_SCOPE"]
        if "FIRECRAFT_GIT" in os.environ:
            kwargs["git_enabled"] = os.environ["FIRECRAFT_GIT"] != "0"

        settings = cls(**kwargs)
        guardrails_file = os.environ.get("FIRECRAFT_GUARDRAILS_FILE")
        if guardrails_file:
            settings.guardrails = _load_yaml(Path(guardrails_file)).get("guardrails")
        return settings

    @classmethod
    def from_file(cls, path: Path | str) -> "Settings":
        """Load settings from a YAML file.

        Missing keys keep their defaults; a missing file yields the defaults.
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Settings file not found: {path}, using defaults")
            return cls()
        return cls.from_dict(_load_yaml(path))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        data = dict(data)
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        try:
            if "retry" in data:
                data["retry"] = RetryPolicy(**(data["retry"] or {}))
            if "timeouts" in data:
                data["timeouts"] = Timeouts(**(data["timeouts"] or {}))
            if "retention" in data:
                data["retention"] = RetentionPolicy(**(data["retention"] or {}))
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid settings: {e}")


def _split(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot load {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping")
    return data
