"""ShineyShot Configuration System.

Layered YAML configuration with Pydantic validation.

Config Layer Priority (highest to lowest):
1. Runtime overrides (in-memory, mostly for tests)
2. Config file (~/.config/shineyshot/config.yaml or --config PATH)
3. Environment variables (SHINEYSHOT_ prefix, nested with "__")
4. Defaults (defined in Pydantic models)

Usage:
    from shineyshot.core.config import get_settings

    settings = get_settings()
    print(settings.sessions.ready_timeout)  # 3.0 (default)
"""

from __future__ import annotations

import threading
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, PositiveFloat, PositiveInt, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shineyshot.core.exceptions import ConfigurationError


DEFAULT_CONFIG_PATH = Path("~/.config/shineyshot/config.yaml")


# =============================================================================
# Sub-configuration Models (nested sections)
# =============================================================================


class SessionConfig(BaseModel):
    """Background session timing and placement."""

    socket_dir: Optional[str] = None
    connect_timeout: PositiveFloat = 1.0  # seconds
    probe_deadline: PositiveFloat = 2.0  # seconds
    ready_timeout: PositiveFloat = 3.0  # seconds
    poll_interval: PositiveFloat = 0.05  # seconds
    stop_timeout: PositiveFloat = 5.0  # seconds
    kill_grace: PositiveFloat = 1.0  # seconds


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "WARNING"
    format: str = "console"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in {"console", "json"}:
            raise ValueError(f"Invalid log format: {v}. Must be 'console' or 'json'")
        return v.lower()


class ExecutorConfig(BaseModel):
    """Defaults for the image session executor."""

    color: str = "red"
    width: PositiveInt = 2
    palette: List[str] = Field(
        default_factory=lambda: ["red", "green", "blue", "yellow", "black", "white"]
    )
    canvas_width: PositiveInt = 800
    canvas_height: PositiveInt = 600


class Settings(BaseSettings):
    """Main settings class with layered configuration support."""

    model_config = SettingsConfigDict(
        env_prefix="SHINEYSHOT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    sessions: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def load_yaml_file(path: Path) -> Dict[str, Any]:
    """Load and parse a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as dictionary.

    Raises:
        ConfigurationError: If file cannot be read or parsed.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(
            config_path=str(path),
            message=f"Configuration file not found: {path}",
        )
    except yaml.YAMLError as e:
        raise ConfigurationError(
            config_path=str(path),
            message=f"Invalid YAML in {path}: {e}",
        )
    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(
            config_path=str(path),
            message=f"Configuration in {path} must be a mapping",
        )
    return content


def load_config_file(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the YAML config file.

    A missing default file yields an empty dict; an explicitly requested
    file must exist.
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH.expanduser()
        if not path.exists():
            return {}
    return load_yaml_file(Path(path).expanduser())


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge multiple configuration dictionaries.

    Later configs override earlier ones.
    """
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = merge_configs(result[key], value)
            else:
                result[key] = value

    return result


def create_settings(
    config_path: Optional[Path] = None,
    runtime_overrides: Optional[Dict[str, Any]] = None,
) -> Settings:
    """Create a Settings instance with layered configuration.

    Args:
        config_path: Optional path to a YAML config file.
        runtime_overrides: Optional runtime overrides dictionary.

    Returns:
        Configured Settings instance.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    if config_path:
        config_base = Path(config_path).expanduser().parent
    else:
        config_base = DEFAULT_CONFIG_PATH.expanduser().parent

    env_path = config_base / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    merged = load_config_file(config_path)
    if runtime_overrides:
        merged = merge_configs(merged, runtime_overrides)

    try:
        return Settings(**merged)
    except Exception as e:
        raise ConfigurationError(
            config_path=str(config_path or DEFAULT_CONFIG_PATH),
            message=f"Configuration validation failed: {e}",
        ) from e


# =============================================================================
# Singleton Settings Access
# =============================================================================


class _SettingsHolder:
    """Thread-safe singleton holder for Settings instance."""

    _instance: Optional[Settings] = None
    _lock: threading.Lock = threading.Lock()

    @classmethod
    def get(cls, force_reload: bool = False, **kwargs: Any) -> Settings:
        if cls._instance is None or force_reload:
            with cls._lock:
                if cls._instance is None or force_reload:  # pragma: no cover
                    cls._instance = create_settings(**kwargs)
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            cls._instance = None


def get_settings(
    force_reload: bool = False,
    config_path: Optional[Path] = None,
    runtime_overrides: Optional[Dict[str, Any]] = None,
) -> Settings:
    """Get the Settings singleton.

    Args:
        force_reload: Rebuild the settings even if already loaded.
        config_path: Optional YAML config file.
        runtime_overrides: Optional in-memory overrides.

    Returns:
        Settings instance.
    """
    if not force_reload and _SettingsHolder._instance is not None:
        if config_path is not None or runtime_overrides is not None:
            warnings.warn(
                "Arguments provided to get_settings() are ignored because "
                "singleton is already initialized. Use force_reload=True "
                "to apply new configuration.",
                RuntimeWarning,
                stacklevel=2,
            )

    return _SettingsHolder.get(
        force_reload=force_reload,
        config_path=config_path,
        runtime_overrides=runtime_overrides,
    )


def reset_settings() -> None:
    """Reset the settings singleton (for testing)."""
    _SettingsHolder.reset()
