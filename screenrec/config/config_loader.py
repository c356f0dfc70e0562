"""Configuration loader for ScreenRec."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from screenrec.utils.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = "config.yml"


class ConfigLoader:
    """Loads and manages application configuration from YAML files."""

    def __init__(self, config_path: Optional[str] = None) -> None:
        """Initialize the configuration loader.

        Args:
            config_path: Path to the main configuration file. Falls back to
                ``$SCREENREC_CONFIG`` and then ``config.yml``.
        """
        self.config_path = Path(
            config_path or os.environ.get("SCREENREC_CONFIG", DEFAULT_CONFIG_PATH)
        )
        self.config: Dict[str, Any] = {}
        self.validated_config = None
        self.validation_error: Optional[str] = None
        self.load()

    def load(self) -> None:
        """Load configuration from the YAML file.

        A missing file is not an error: every section has defaults.
        """
        if self.config_path.exists():
            with open(self.config_path, "r", encoding="utf-8") as f:
                try:
                    self.config = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigurationError(
                        f"Invalid YAML in {self.config_path}: {e}"
                    ) from e
        else:
            self.config = {}

        self._validate_config()

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dot-notation key.

        Args:
            key: Configuration key (e.g., "audio.sample_rate").
            default: Default value if key not found.

        Returns:
            Configuration value or default.
        """
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by dot-notation key.

        The change lives in memory only and is revalidated immediately.

        Args:
            key: Configuration key (e.g., "encoder.audio_policy").
            value: Value to set.
        """
        keys = key.split(".")
        config_ref = self.config

        for k in keys[:-1]:
            if k not in config_ref or not isinstance(config_ref[k], dict):
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value
        self._validate_config()

    def get_all(self) -> Dict[str, Any]:
        """Get the entire configuration dictionary.

        Returns:
            Complete configuration dictionary.
        """
        return self.config.copy()

    def validate(self):
        """Return the validated configuration or raise ConfigurationError."""
        from .validators import validate_config

        try:
            return validate_config(self.config)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    def _validate_config(self) -> None:
        """Validate the loaded configuration using Pydantic schemas.

        Errors are kept on ``validation_error`` so module-level loading never
        fails; ``validate()`` raises them when a recording is configured.
        """
        from .validators import validate_config

        try:
            self.validated_config = validate_config(self.config)
            self.validation_error = None
        except ValueError as e:
            self.validated_config = None
            self.validation_error = str(e)


# Global config instance
config = ConfigLoader()
