"""
Configuration management for the rotate-on-write sink.

Supports YAML config files with environment variable overrides.
"""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rotate_on_write.exceptions import ConfigurationError


class RotatorConfig(BaseModel):
    """Configuration for a single rotated file."""

    filename: str | None = Field(
        default=None,
        description="Active file path (None for <tempdir>/<process>-rotate-on-write.log)",
    )
    backup_dir: str | None = Field(
        default=None,
        description="Directory for backups (None for the active file's directory)",
    )
    max_size: int = Field(default=5, ge=1, description="Maximum bytes per write, in MiB")
    max_backups: int = Field(default=0, ge=0, description="Backups to keep (0 keeps all)")
    max_age: timedelta = Field(
        default=timedelta(0),
        description="Maximum backup age by encoded timestamp (0 disables)",
    )
    local_time: bool = Field(default=False, description="Use local time in backup names")
    not_write_if_empty: bool = Field(
        default=False,
        description="Rotate but do not create a new file for empty payloads",
    )

    @field_validator("max_age")
    @classmethod
    def _non_negative_age(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("max_age must be >= 0")
        return value


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format (json, plain)")
    file: str | None = Field(default=None, description="Log file path (None for stdout)")


class Config(BaseSettings):
    """Main configuration for rotate-on-write."""

    model_config = SettingsConfigDict(
        env_prefix="ROTATE_ON_WRITE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    rotator: RotatorConfig = Field(default_factory=RotatorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Config:
        """
        Load configuration from a YAML file.

        A missing file yields the defaults.

        Raises:
            ConfigurationError: If the file contents fail validation.
        """
        path = Path(path)
        if not path.exists():
            return cls()

        with path.open() as f:
            data = yaml.safe_load(f) or {}

        try:
            return cls(**data)
        except ValidationError as e:
            first = e.errors()[0]
            field_name = ".".join(str(part) for part in first["loc"])
            raise ConfigurationError.validation_failed(
                field_name, first.get("input"), first["msg"]
            ) from e

    @classmethod
    def load(cls, config_path: str | None = None) -> Config:
        """
        Load configuration with precedence:
        1. Environment variables (highest)
        2. Config file
        3. Defaults (lowest)

        Raises:
            ConfigurationError: If an explicitly named file does not exist or
                its contents fail validation.
        """
        if config_path is None:
            config_path = os.getenv("ROTATE_ON_WRITE_CONFIG")

        if config_path and not Path(config_path).exists():
            raise ConfigurationError.missing_file(str(config_path))

        if config_path is None:
            for candidate in [
                "rotate-on-write.yaml",
                "rotate-on-write.yml",
                "config/rotate-on-write.yaml",
                ".rotate-on-write.yaml",
            ]:
                if Path(candidate).exists():
                    config_path = candidate
                    break

        if config_path and Path(config_path).exists():
            return cls.from_yaml(config_path)

        return cls()

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with path.open("w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config | None) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
