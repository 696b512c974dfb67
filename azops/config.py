"""
Configuration management for azops.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validate

from azops.exceptions import InvalidConfigError

SCHEMA_FILE = Path(__file__).parent / "schema" / "config.schema.json"
CONFIG_FILENAME = "azops.yaml"
CONFIG_ENV = "AZOPS_CONFIG"


class Settings:
    """Loads azops.yaml, merges it over the defaults and validates the result."""

    DEFAULT_CONFIG = {
        "azure": {
            "subscription_id": None,
        },
        "logging": {
            "level": "WARNING",
        },
        "connectivity": {
            "timeout": 5.0,
            "default_port": 443,
        },
        "archive": {
            "container_url": None,
            "blob_prefix": "",
            "staging_dir": None,  # system temp dir when unset
            "compression_level": 5,
            "tier": "Archive",
            "seven_zip_path": "7z",
            "azcopy_path": "azcopy",
            "tool_timeout": 6 * 3600,
        },
        "restore": {
            "target_tier": "Hot",
            "rehydrate_priority": "Standard",
            "poll_interval": 300,
            "timeout": 15 * 3600,
        },
        "billing": {
            "lookback_days": 30,
            "coverage": 0.0,
            "min_hours_per_day": 0.0,
            "discounts": {
                "1y": 0.40,
                "3y": 0.60,
            },
        },
        "database": {
            "url": None,
            "batch_size": 1000,
        },
    }

    def __init__(self, config_file: Path | None = None):
        self.config_file = Path(config_file) if config_file else None
        self._config_cache: dict[str, Any] | None = None

    @classmethod
    def discover(cls, path: str | Path | None = None) -> "Settings":
        """
        Locate the configuration file.

        Order: explicit path, ``$AZOPS_CONFIG``, ``./azops.yaml``. When none
        exists the defaults are used.
        """
        if path:
            return cls(Path(path))
        env_path = os.environ.get(CONFIG_ENV)
        if env_path:
            return cls(Path(env_path))
        local = Path.cwd() / CONFIG_FILENAME
        return cls(local if local.exists() else None)

    def initialize(self, directory: Path) -> Path:
        """Write the default configuration into ``directory``."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        self.config_file = directory / CONFIG_FILENAME
        with open(self.config_file, "w") as f:
            yaml.dump(self.DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)
        self._config_cache = None
        return self.config_file

    def load(self) -> dict[str, Any]:
        """Load and validate configuration (cached after the first call)."""
        if self._config_cache is not None:
            return self._config_cache

        config = copy.deepcopy(self.DEFAULT_CONFIG)

        if self.config_file is not None:
            if not self.config_file.exists():
                raise InvalidConfigError(f"file not found: {self.config_file}")

            try:
                with open(self.config_file) as f:
                    user_config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise InvalidConfigError(f"{self.config_file}: {e}") from e

            if user_config is None:
                user_config = {}

            if not isinstance(user_config, dict):
                raise InvalidConfigError(
                    f"expected a mapping, got {type(user_config).__name__}"
                )

            config = _deep_merge(config, user_config)

        env_subscription = os.environ.get("AZURE_SUBSCRIPTION_ID")
        if env_subscription:
            config["azure"]["subscription_id"] = env_subscription

        self._validate_config_schema(config)
        self._config_cache = config
        return config

    def section(self, name: str) -> dict[str, Any]:
        """Return one top-level section of the configuration."""
        return self.load().get(name, {})

    def _validate_config_schema(self, config: dict) -> None:
        """Validate config against JSON schema."""
        schema = json.loads(SCHEMA_FILE.read_text())
        try:
            validate(instance=config, schema=schema)
        except ValidationError as e:
            raise InvalidConfigError(
                f"{e.message} (at {'.'.join(str(p) for p in e.path) or '<root>'})"
            ) from e


def _deep_merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
