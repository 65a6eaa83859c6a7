"""Session socket directory and socket path resolution."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Mapping, Optional, Union

from shineyshot.core.exceptions import InvalidSessionNameError, SessionDirectoryError


SOCKET_DIR_ENV = "SHINEYSHOT_SOCKET_DIR"
RUNTIME_DIR_ENV = "XDG_RUNTIME_DIR"
SOCKET_SUFFIX = ".sock"
DIR_MODE = 0o700

PathLike = Union[str, Path]


def resolve_socket_dir(
    explicit: Optional[PathLike] = None,
    configured: Optional[PathLike] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Path:
    """Resolve the directory that holds session sockets.

    Precedence: explicit value, SHINEYSHOT_SOCKET_DIR, the configured
    ``sessions.socket_dir`` setting, $XDG_RUNTIME_DIR/shineyshot (not on
    Windows), then ~/.shineyshot/sockets.

    Raises:
        SessionDirectoryError: If the home directory cannot be determined.
    """
    env = os.environ if environ is None else environ
    if explicit:
        return Path(explicit).expanduser()
    if env.get(SOCKET_DIR_ENV):
        return Path(env[SOCKET_DIR_ENV]).expanduser()
    if configured:
        return Path(configured).expanduser()
    if sys.platform != "win32" and env.get(RUNTIME_DIR_ENV):
        return Path(env[RUNTIME_DIR_ENV]) / "shineyshot"
    try:
        home = Path.home()
    except RuntimeError as e:
        raise SessionDirectoryError(f"cannot determine home directory: {e}") from e
    return home / ".shineyshot" / "sockets"


def ensure_socket_dir(path: PathLike) -> Path:
    """Create the socket directory if needed (owner-only on creation).

    Raises:
        SessionDirectoryError: If the directory cannot be created.
    """
    path = Path(path)
    try:
        path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    except OSError as e:
        raise SessionDirectoryError(f"cannot create socket directory {path}: {e}") from e
    return path


def validate_session_name(name: str) -> str:
    """Return the name if it maps to a plain filename, else raise.

    Raises:
        InvalidSessionNameError: For empty names, path separators, NUL,
            or the special entries "." and "..".
    """
    stem = name[: -len(SOCKET_SUFFIX)] if name.endswith(SOCKET_SUFFIX) else name
    if not stem or stem in (".", ".."):
        raise InvalidSessionNameError(name)
    if "/" in name or "\x00" in name or (os.sep != "/" and os.sep in name):
        raise InvalidSessionNameError(name)
    return name


def socket_filename(name: str) -> str:
    """Map a session name to its socket filename."""
    validate_session_name(name)
    if name.endswith(SOCKET_SUFFIX):
        return name
    return name + SOCKET_SUFFIX


def socket_path(directory: PathLike, name: str) -> Path:
    """Return the socket path for a session name inside a directory."""
    return Path(directory) / socket_filename(name)


def session_name_from_file(filename: str) -> str:
    """Inverse of socket_filename for directory listings."""
    if filename.endswith(SOCKET_SUFFIX):
        return filename[: -len(SOCKET_SUFFIX)]
    return filename
