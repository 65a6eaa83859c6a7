"""ShineyShot Exception Hierarchy.

This module defines the structured exception hierarchy for ShineyShot.
All custom exceptions inherit from ShineyShotError, so the CLI can turn
any expected failure into a one-line message and a non-zero exit code.

Exception Categories:
- Configuration errors (invalid config file or values)
- Session errors (directory, naming, arbitration, lifecycle)
- Connection and protocol errors (dial failures, unexpected frames)
- Command errors (raised by the executor, reported as DONE ERR)

Usage:
    from shineyshot.core.exceptions import SessionNotRunningError

    raise SessionNotRunningError(name="demo")
"""

from typing import Any, Optional


class ShineyShotError(Exception):
    """Base exception for all ShineyShot errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: Optional[str] = None) -> None:
        """Initialize ShineyShotError.

        Args:
            message: Optional custom message. Defaults to a generic message.
        """
        self.message = message or "A ShineyShot error occurred."
        super().__init__(self.message)

    @property
    def context(self) -> dict[str, Any]:
        """Return context dictionary for structured logging.

        Returns:
            dict: Key-value pairs of exception context.
        """
        return {}

    def __repr__(self) -> str:
        """Return debug representation."""
        return f"{self.__class__.__name__}({self.message!r})"


class ConfigurationError(ShineyShotError):
    """Configuration file or value is invalid.

    Attributes:
        config_path: Path to the configuration file.
        key: The configuration key that caused the error.
    """

    def __init__(
        self,
        config_path: str,
        key: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        """Initialize ConfigurationError.

        Args:
            config_path: Path to the config file.
            key: Optional offending key.
            message: Optional custom message.
        """
        self.config_path = config_path
        self.key = key

        if message is None:
            if key:
                message = f"Invalid configuration value '{key}' in {config_path}."
            else:
                message = f"Invalid configuration in {config_path}."

        super().__init__(message)

    @property
    def context(self) -> dict[str, Any]:
        """Return context for configuration error."""
        return {"config_path": self.config_path, "key": self.key}


class ProtocolError(ShineyShotError):
    """Unexpected or malformed frame on a session connection.

    Attributes:
        reason: Description of why the frame is invalid.
    """

    def __init__(
        self,
        reason: str | None = None,
        message: str | None = None,
    ) -> None:
        """Initialize ProtocolError.

        Args:
            reason: Description of failure cause.
            message: Optional custom message. Defaults to the reason itself.
        """
        self.reason = reason

        if message is None:
            message = reason or "protocol error - invalid or malformed frame"

        super().__init__(message)

    @property
    def context(self) -> dict[str, Any]:
        """Return context for protocol error."""
        return {"reason": self.reason}

    def __repr__(self) -> str:
        """Return debug representation with attributes."""
        return f"ProtocolError(reason={self.reason!r})"


class SessionDirectoryError(ShineyShotError):
    """The session socket directory could not be determined or created."""


class InvalidSessionNameError(ShineyShotError):
    """Session name cannot be mapped to a socket filename.

    Attributes:
        name: The rejected name.
    """

    def __init__(self, name: str, message: Optional[str] = None) -> None:
        self.name = name
        if message is None:
            message = f"invalid session name {name!r}"
        super().__init__(message)

    @property
    def context(self) -> dict[str, Any]:
        return {"name": self.name}


class SessionConnectionError(ShineyShotError):
    """Dialing or talking to a session socket failed."""


class SessionAlreadyRunningError(ShineyShotError):
    """A live daemon already owns the requested session name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"session {name} already running")

    @property
    def context(self) -> dict[str, Any]:
        return {"name": self.name}


class SessionNotRunningError(ShineyShotError):
    """The requested session is not alive."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"session {name} is not running")

    @property
    def context(self) -> dict[str, Any]:
        return {"name": self.name}


class NoSessionsError(ShineyShotError):
    """No session is available for implicit selection."""


class AmbiguousSessionError(ShineyShotError):
    """More than one session matches an implicit selection.

    Attributes:
        candidates: Sorted candidate session names.
    """

    def __init__(self, prefix: str, candidates: list[str]) -> None:
        """Initialize AmbiguousSessionError.

        Args:
            prefix: Leading sentence, e.g. "multiple background sessions running".
            candidates: Names the caller could choose from.
        """
        self.candidates = sorted(candidates)
        super().__init__(
            f"{prefix}; specify a session name ({', '.join(self.candidates)})"
        )

    @property
    def context(self) -> dict[str, Any]:
        return {"candidates": self.candidates}


class MissingCommandError(ShineyShotError):
    """A run request carried no command text."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or "background run requires a command")


class SessionStartupError(ShineyShotError):
    """A spawned daemon did not become ready.

    Attributes:
        name: Session name that failed to start.
        reason: Last observed probe failure or exit status.
    """

    def __init__(self, name: str, reason: str) -> None:
        """Initialize SessionStartupError.

        Args:
            name: Session name.
            reason: Human readable cause.
        """
        self.name = name
        self.reason = reason
        super().__init__(f"session {name} did not become ready: {reason}")

    @property
    def context(self) -> dict[str, Any]:
        return {"name": self.name, "reason": self.reason}


class CommandFailedError(ShineyShotError):
    """A remote command finished with DONE ERR.

    The message is the daemon's error text with escapes restored.
    """


class CommandError(ShineyShotError):
    """Executor rejected or failed to run a command.

    Raised inside the daemon by the Command Executor. The server turns it
    into a DONE ERR frame; it never terminates the daemon.
    """
