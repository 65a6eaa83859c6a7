"""Target session selection when the caller does not name one.

All functions operate on a snapshot of registry entries, so the CLI
probes the directory once per invocation and the selection rules stay
pure and easy to test.
"""

from __future__ import annotations

from typing import Optional, Sequence

from shineyshot.core.exceptions import (
    AmbiguousSessionError,
    MissingCommandError,
    NoSessionsError,
    SessionNotRunningError,
)
from shineyshot.daemon.registry import SocketEntry


def _alive_names(entries: Sequence[SocketEntry]) -> list[str]:
    return sorted(entry.name for entry in entries if entry.alive)


def _pick_single_alive(alive: list[str]) -> str:
    if not alive:
        raise NoSessionsError("no background sessions running")
    if len(alive) > 1:
        raise AmbiguousSessionError("multiple background sessions running", alive)
    return alive[0]


def select_running_socket(
    entries: Sequence[SocketEntry],
    preferred: Optional[str] = None,
) -> str:
    """Pick the session for ``attach``.

    Raises:
        SessionNotRunningError: The preferred session is not alive.
        NoSessionsError: No preference and nothing alive.
        AmbiguousSessionError: No preference and several alive.
    """
    alive = _alive_names(entries)
    if preferred:
        if preferred not in alive:
            raise SessionNotRunningError(preferred)
        return preferred
    return _pick_single_alive(alive)


def select_socket_for_stop(
    entries: Sequence[SocketEntry],
    preferred: Optional[str] = None,
) -> str:
    """Pick the session for ``stop``.

    A named session is returned as-is, dead or not, because stopping is
    idempotent. Otherwise a lone entry (alive or dead) wins, then a lone
    alive entry among several.
    """
    if preferred:
        return preferred
    if not entries:
        raise NoSessionsError("no background sessions found")
    if len(entries) == 1:
        return entries[0].name
    alive = _alive_names(entries)
    if len(alive) == 1:
        return alive[0]
    raise AmbiguousSessionError(
        "multiple background sessions found",
        [entry.name for entry in entries],
    )


def resolve_run_target(
    entries: Sequence[SocketEntry],
    preferred: Optional[str],
    args: Sequence[str],
) -> tuple[str, list[str]]:
    """Split ``background run`` positionals into target and command.

    Without a preferred name, a first token that exactly matches an alive
    session is consumed as the target.

    Returns:
        (session name, command tokens)
    """
    alive = _alive_names(entries)
    name = preferred or ""
    rest = list(args)
    if rest and not name and rest[0] in alive:
        name = rest.pop(0)
    if not rest:
        raise MissingCommandError()
    if not name:
        return _pick_single_alive(alive), rest
    if name not in alive:
        raise SessionNotRunningError(name)
    return name, rest
