"""Core module for ShineyShot.

Exports the core components: exceptions and configuration.
"""

from shineyshot.core.exceptions import (
    ShineyShotError,
    ConfigurationError,
    ProtocolError,
    CommandError,
)
from shineyshot.core.config import (
    get_settings,
    reset_settings,
    Settings,
    SessionConfig,
    LoggingConfig,
    ExecutorConfig,
)

__all__ = [
    "ShineyShotError",
    "ConfigurationError",
    "ProtocolError",
    "CommandError",
    "get_settings",
    "reset_settings",
    "Settings",
    "SessionConfig",
    "LoggingConfig",
    "ExecutorConfig",
]
