"""Configuration management for worktime."""

import copy
import os
from pathlib import Path
from typing import Any, Optional

import yaml  # type: ignore[import-untyped]
from jsonschema import ValidationError, validate  # type: ignore[import-untyped]


def mask_secret(value: str) -> str:
    """Hide all but the last four characters of a secret."""
    if len(value) <= 8:
        return "****"
    return "****" + value[-4:]


class ConfigManager:
    """Manage application configuration."""

    DEFAULT_CONFIG = {
        "version": "1.0",
        "gateway": {
            "url": "",
            "anon_key": "",
            "table": "timesheets",
            "timeout": 10,
        },
        "tracking": {
            "auto_start": True,
            "tick_interval": 1,
            "placeholder_description": "Active session",
        },
        "notifications": {
            "enabled": False,
            "backend": "auto",
        },
        "display": {
            "log_count": 10,
        },
        "advanced": {
            "state_dir": "~/.worktime/state",
            "log_level": "WARNING",
            "log_file": None,
        },
    }

    CONFIG_SCHEMA = {
        "type": "object",
        "properties": {
            "version": {"type": "string"},
            "gateway": {
                "type": "object",
                "properties": {
                    "url": {"type": "string"},
                    "anon_key": {"type": "string"},
                    "table": {"type": "string", "minLength": 1},
                    "timeout": {"type": "number", "minimum": 1, "maximum": 120},
                },
            },
            "tracking": {
                "type": "object",
                "properties": {
                    "auto_start": {"type": "boolean"},
                    "tick_interval": {"type": "integer", "minimum": 1, "maximum": 60},
                    "placeholder_description": {"type": "string"},
                },
            },
            "notifications": {
                "type": "object",
                "properties": {
                    "enabled": {"type": "boolean"},
                    "backend": {"type": "string"},
                },
            },
            "display": {
                "type": "object",
                "properties": {
                    "log_count": {"type": "integer", "minimum": 1, "maximum": 1000},
                },
            },
            "advanced": {
                "type": "object",
                "properties": {
                    "state_dir": {"type": "string"},
                    "log_level": {
                        "type": "string",
                        "enum": ["DEBUG", "INFO", "WARNING", "ERROR"],
                    },
                    "log_file": {"type": ["string", "null"]},
                },
            },
        },
        "required": ["version"],
    }

    # Keys whose values are masked when the configuration is displayed
    SECRET_KEYS = ("gateway.anon_key",)

    # Environment variables that take precedence over the config file
    ENV_OVERRIDES = {
        "WORKTIME_GATEWAY_URL": "gateway.url",
        "WORKTIME_GATEWAY_KEY": "gateway.anon_key",
    }

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to config file. Defaults to ~/.worktime/config.yml
        """
        if config_path is None:
            config_path = Path.home() / ".worktime" / "config.yml"
        self.config_path = config_path
        self._config: dict[str, Any] = {}
        self._load_or_create()

    def _load_or_create(self) -> None:
        """Load existing config or create default."""
        if self.config_path.exists():
            with open(self.config_path, encoding="utf-8") as f:
                loaded_config = yaml.safe_load(f) or {}
            # Merge with defaults to ensure all keys exist
            self._config = self._merge_with_defaults(loaded_config)
            try:
                self.validate()
            except ValueError as e:
                # If validation fails, backup corrupted config and use defaults
                backup_path = self.config_path.with_suffix(".yml.backup")
                self.config_path.rename(backup_path)
                self._config = copy.deepcopy(self.DEFAULT_CONFIG)
                self.save()
                raise ValueError(
                    f"Config validation failed, backed up to {backup_path}. "
                    f"Using defaults. Error: {e}"
                )
        else:
            self._config = copy.deepcopy(self.DEFAULT_CONFIG)
            self.save()

    def _merge_with_defaults(self, config: dict[str, Any]) -> dict[str, Any]:
        """Merge config with defaults to ensure all keys exist.

        Args:
            config: User configuration

        Returns:
            Merged configuration with all default keys
        """
        result = copy.deepcopy(self.DEFAULT_CONFIG)
        self._deep_merge(result, config)
        return result

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> None:
        """Deep merge override into base dictionary (in-place).

        Args:
            base: Base dictionary to merge into
            override: Dictionary with values to override
        """
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., 'tracking.auto_start')
            default: Default value if key not found

        Returns:
            Configuration value or default

        Example:
            >>> config.get('tracking.auto_start')
            True
            >>> config.get('nonexistent.key', 'default')
            'default'
        """
        keys = key.split(".")
        value: Any = self._config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
            if value is None:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key: Configuration key in dot notation
            value: Value to set

        Raises:
            ValueError: If configuration is invalid after setting

        Example:
            >>> config.set('tracking.tick_interval', 2)
        """
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value
        self.validate()
        self.save()

    def schema_for(self, key: str) -> Optional[dict[str, Any]]:
        """Get the schema of a setting in dot notation, or None if it is unknown."""
        schema: dict[str, Any] = self.CONFIG_SCHEMA
        for k in key.split("."):
            properties = schema.get("properties", {})
            if k not in properties:
                return None
            schema = properties[k]
        return schema

    def coerce(self, key: str, raw: str) -> Any:
        """Convert a command-line string to the type declared for a setting.

        Args:
            key: Configuration key in dot notation
            raw: Value as typed by the user

        Returns:
            Value of the declared type

        Raises:
            ValueError: If the key is unknown or the value does not convert

        Example:
            >>> config.coerce('tracking.auto_start', 'no')
            False
            >>> config.coerce('advanced.log_file', 'null') is None
            True
        """
        schema = self.schema_for(key)
        if schema is None or schema.get("type") == "object":
            raise ValueError(f"Unknown configuration key '{key}'")

        declared = schema["type"]
        types = declared if isinstance(declared, list) else [declared]
        text = raw.strip().lower()

        if "null" in types and text in ("null", "none"):
            return None
        if "boolean" in types:
            if text in ("true", "yes", "on"):
                return True
            if text in ("false", "no", "off"):
                return False
            raise ValueError(f"{key} expects true or false, got '{raw}'")
        if "integer" in types:
            try:
                return int(text)
            except ValueError as e:
                raise ValueError(f"{key} expects an integer, got '{raw}'") from e
        if "number" in types:
            try:
                return int(text)
            except ValueError:
                pass
            try:
                return float(text)
            except ValueError as e:
                raise ValueError(f"{key} expects a number, got '{raw}'") from e
        return raw

    def validate(self) -> bool:
        """Validate configuration against schema.

        Returns:
            True if valid

        Raises:
            ValueError: If configuration is invalid
        """
        try:
            validate(instance=self._config, schema=self.CONFIG_SCHEMA)
            return True
        except ValidationError as e:
            raise ValueError(f"Invalid configuration: {e.message}")

    def save(self) -> None:
        """Save configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.dump(
                self._config, f, default_flow_style=False, sort_keys=False, allow_unicode=True
            )

    def reset(self) -> None:
        """Reset to default configuration."""
        self._config = copy.deepcopy(self.DEFAULT_CONFIG)
        self.save()

    def to_dict(self) -> dict[str, Any]:
        """Get full configuration as dictionary.

        Returns:
            Copy of configuration dictionary
        """
        return copy.deepcopy(self._config)

    def to_display_dict(self) -> dict[str, Any]:
        """Get full configuration with secret values masked."""
        data = self.to_dict()
        for key in self.SECRET_KEYS:
            *parents, name = key.split(".")
            section: Any = data
            for k in parents:
                section = section.get(k) if isinstance(section, dict) else None
            if isinstance(section, dict) and section.get(name):
                section[name] = mask_secret(str(section[name]))
        return data

    def get_all_keys(self, prefix: str = "") -> list[str]:
        """Get all configuration keys in dot notation.

        Args:
            prefix: Prefix for recursive traversal (internal use)

        Returns:
            List of all configuration keys

        Example:
            >>> config.get_all_keys()
            ['version', 'gateway.url', 'gateway.anon_key', ...]
        """
        keys = []
        config = self._config if not prefix else self.get(prefix, {})

        if isinstance(config, dict):
            for key, value in config.items():
                full_key = f"{prefix}.{key}" if prefix else key
                if isinstance(value, dict):
                    keys.extend(self.get_all_keys(full_key))
                else:
                    keys.append(full_key)
        return keys

    def gateway_settings(self) -> dict[str, Any]:
        """Get gateway connection settings, applying environment overrides.

        Returns:
            Keyword arguments for RestGateway
        """
        settings = {
            "url": self.get("gateway.url", ""),
            "anon_key": self.get("gateway.anon_key", ""),
            "table": self.get("gateway.table", "timesheets"),
            "timeout": float(self.get("gateway.timeout", 10)),
        }
        for env_name, key in self.ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                settings[key.split(".")[-1]] = value.strip()
        return settings

    def state_dir(self) -> Path:
        """Get the expanded local state directory."""
        return Path(self.get("advanced.state_dir", "~/.worktime/state")).expanduser()
