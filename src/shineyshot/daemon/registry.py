"""Session registry: enumerate, list, and clean session sockets.

Every entry in the socket directory that is a socket or ends in ".sock"
is probed; the results back the ``background list`` and
``background clean`` commands as well as arbitration.
"""

from __future__ import annotations

import asyncio
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional

import structlog

from shineyshot.core.exceptions import SessionDirectoryError
from shineyshot.daemon.directory import SOCKET_SUFFIX, session_name_from_file
from shineyshot.daemon.probe import SessionStatus, probe_socket


log = structlog.get_logger()

Prober = Callable[[Path], Awaitable[SessionStatus]]


@dataclass(frozen=True)
class SocketEntry:
    """One session socket found in the directory.

    Attributes:
        name: Session name (filename without ".sock").
        file: Filename inside the directory.
        status: Probe result.
    """

    name: str
    file: str
    status: SessionStatus

    @property
    def alive(self) -> bool:
        return self.status.alive


@dataclass
class CleanResult:
    """Outcome of cleaning a socket directory."""

    removed: list[str] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)

    def lines(self) -> list[str]:
        out = [f"failed to remove {name}: {error}" for name, error in self.failures]
        if self.removed:
            out.append(
                f"removed {len(self.removed)} dead socket(s): {', '.join(self.removed)}"
            )
        else:
            out.append("no dead sockets found")
        return out


def _is_session_entry(entry: os.DirEntry) -> bool:
    try:
        if entry.is_dir(follow_symlinks=False):
            return False
        is_socket = stat.S_ISSOCK(entry.stat(follow_symlinks=False).st_mode)
    except OSError:
        is_socket = False
    return is_socket or entry.name.endswith(SOCKET_SUFFIX)


def _scan(directory: Path) -> list[str]:
    try:
        with os.scandir(directory) as it:
            return [entry.name for entry in it if _is_session_entry(entry)]
    except FileNotFoundError:
        return []
    except OSError as e:
        raise SessionDirectoryError(
            f"cannot read socket directory {directory}: {e.strerror or e}"
        ) from e


async def collect_socket_statuses(
    directory: Path,
    probe: Optional[Prober] = None,
) -> list[SocketEntry]:
    """Probe every session socket in a directory.

    Args:
        directory: Socket directory. A missing directory yields [].
        probe: Optional prober; defaults to probe_socket.

    Raises:
        SessionDirectoryError: The directory exists but cannot be read.

    Returns:
        Entries sorted by session name.
    """
    prober = probe or probe_socket
    files = _scan(Path(directory))
    statuses = await asyncio.gather(*(prober(Path(directory) / f) for f in files))
    entries = [
        SocketEntry(name=session_name_from_file(f), file=f, status=s)
        for f, s in zip(files, statuses)
    ]
    entries.sort(key=lambda e: e.name)
    return entries


def format_socket_list(entries: list[SocketEntry]) -> list[str]:
    """Render entries the way ``background list`` prints them."""
    if not entries:
        return ["no sockets found"]
    lines = ["available sockets:"]
    for entry in entries:
        if entry.alive:
            lines.append(f"  {entry.name}")
        else:
            lines.append(f"  {entry.name} (dead: {entry.status.detail})")
    return lines


async def clean_socket_dir(
    directory: Path,
    probe: Optional[Prober] = None,
) -> CleanResult:
    """Remove the backing file of every dead session socket."""
    result = CleanResult()
    for entry in await collect_socket_statuses(directory, probe=probe):
        if entry.alive:
            continue
        path = Path(directory) / entry.file
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            log.warning("socket_remove_failed", path=str(path), error=str(e))
            result.failures.append((entry.name, e.strerror or str(e)))
            continue
        log.info("dead_socket_removed", path=str(path))
        result.removed.append(entry.name)
    return result


def next_socket_name(directory: Path) -> str:
    """Return the next unused integer session name ("1" if none)."""
    try:
        with os.scandir(directory) as it:
            names = [e.name for e in it if not e.is_dir(follow_symlinks=False)]
    except FileNotFoundError:
        return "1"
    except OSError as e:
        raise SessionDirectoryError(
            f"cannot read socket directory {directory}: {e.strerror or e}"
        ) from e
    highest = 0
    for name in names:
        stem = session_name_from_file(name)
        if stem.isascii() and stem.isdigit():
            highest = max(highest, int(stem))
    return str(highest + 1)
