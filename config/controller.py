"""Configuration controller for YAML-based settings."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any

import yaml

CONFIG_DIR_ENV = "SWARMKEEP_CONFIG_DIR"

DEFAULT_STATE_DIR = "/var/lib/server-info/swarm-maintenance"
DEFAULT_ONESHOT_PATTERNS = ["migrat", "init", "setup", "seed", "job", "oneshot"]
DEFAULT_INGRESS_PATTERNS = ["traefik", "nginx", "haproxy", "caddy"]
DEFAULT_DATABASE_PATTERNS = [
    "postgres",
    "mysql",
    "mariadb",
    "mongo",
    "redis",
    "neo4j",
    "elasticsearch",
    "memcached",
]


@dataclass(frozen=True)
class ConfigPaths:
    """Filesystem paths for configuration files."""

    config_dir: Path
    config_file: Path
    override_file: Path


class ConfigController:
    """Singleton controller for loading configuration."""

    _instance: "ConfigController | None" = None

    def __init__(self, config_dir: Path | None = None, config_file: str = "default.yaml") -> None:
        if ConfigController._instance is not None:
            raise RuntimeError("You cannot create another ConfigController class")

        config_dir = self._resolve_config_dir(config_dir)
        self.paths = ConfigPaths(
            config_dir=config_dir,
            config_file=config_dir / config_file,
            override_file=config_dir / "override.yaml",
        )
        self.config: dict[str, Any] = {}
        self.load_config()

    @classmethod
    def get_instance(cls, config_dir: Path | None = None) -> "ConfigController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls(config_dir=config_dir)
        return cls._instance

    def load_config(self) -> None:
        """Load configuration from default and override YAML files."""

        config = self._read_yaml(self.paths.config_file)
        override_config = self._read_yaml(self.paths.override_file)
        if override_config:
            config = self._deep_merge(config, override_config)

        self.config = self._normalize_config(config)

    def get_config(self) -> dict[str, Any]:
        """Return the currently loaded configuration."""

        return dict(self.config)

    def get_maintenance_config(self) -> dict[str, Any]:
        """Return the normalized ``maintenance`` section."""

        return dict(self.config["maintenance"])

    @staticmethod
    def _resolve_config_dir(config_dir: Path | None) -> Path:
        if config_dir is not None:
            return Path(config_dir).expanduser()
        env_dir = os.environ.get(CONFIG_DIR_ENV)
        if env_dir:
            return Path(env_dir).expanduser()
        return Path(__file__).resolve().parent

    @staticmethod
    def _read_yaml(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        with path.open("r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        return data

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge dictionaries, overriding base values with override values."""

        merged = dict(base)
        for key, value in override.items():
            if (
                key in merged
                and isinstance(merged[key], dict)
                and isinstance(value, dict)
            ):
                merged[key] = self._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _normalize_config(self, config: dict[str, Any]) -> dict[str, Any]:
        """Normalize config while preserving the legacy flat maintenance keys."""

        normalized = dict(config)
        maintenance_cfg = dict(normalized.get("maintenance") or {})
        timeouts_cfg = dict(maintenance_cfg.get("timeouts") or {})
        classification_cfg = dict(maintenance_cfg.get("classification") or {})

        maintenance_cfg["state_dir"] = str(
            maintenance_cfg.get(
                "state_dir", normalized.get("maintenance_dir", DEFAULT_STATE_DIR)
            )
        )
        timeouts_cfg["global_s"] = float(timeouts_cfg.get("global_s", 120.0))
        timeouts_cfg["ingress_s"] = float(timeouts_cfg.get("ingress_s", 120.0))
        timeouts_cfg["database_s"] = float(timeouts_cfg.get("database_s", 180.0))
        timeouts_cfg["app_s"] = float(timeouts_cfg.get("app_s", 180.0))
        maintenance_cfg["poll_interval_s"] = float(maintenance_cfg.get("poll_interval_s", 2.0))
        maintenance_cfg["settle_s"] = float(maintenance_cfg.get("settle_s", 2.0))
        maintenance_cfg["reboot_delay_s"] = float(maintenance_cfg.get("reboot_delay_s", 5.0))
        maintenance_cfg["global_cap_unrestricted"] = int(
            maintenance_cfg.get("global_cap_unrestricted", 1_000_000)
        )
        reboot_command = maintenance_cfg.get("reboot_command", ["sudo", "reboot"])
        if isinstance(reboot_command, str):
            reboot_command = reboot_command.split()
        maintenance_cfg["reboot_command"] = [str(part) for part in reboot_command]

        classification_cfg["oneshot"] = _pattern_list(
            classification_cfg.get("oneshot", normalized.get("oneshot_patterns")),
            DEFAULT_ONESHOT_PATTERNS,
        )
        classification_cfg["ingress"] = _pattern_list(
            classification_cfg.get("ingress", normalized.get("ingress_patterns")),
            DEFAULT_INGRESS_PATTERNS,
        )
        classification_cfg["database"] = _pattern_list(
            classification_cfg.get("database", normalized.get("db_patterns")),
            DEFAULT_DATABASE_PATTERNS,
        )

        maintenance_cfg["timeouts"] = timeouts_cfg
        maintenance_cfg["classification"] = classification_cfg
        normalized["maintenance"] = maintenance_cfg
        normalized["logging_level"] = str(normalized.get("logging_level", "INFO"))
        normalized["file_logging_enabled"] = bool(normalized.get("file_logging_enabled", True))
        normalized["log_file"] = str(
            normalized.get("log_file", str(Path(maintenance_cfg["state_dir"]) / "maintenance.log"))
        )
        return normalized


def _pattern_list(value: Any, default: list[str]) -> list[str]:
    """Accept a list of patterns or a legacy ``a|b|c`` string."""

    if value is None:
        return list(default)
    if isinstance(value, str):
        value = value.split("|")
    return [str(item).strip().lower() for item in value if str(item).strip()]
