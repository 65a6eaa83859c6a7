"""Session liveness probing.

A probe dials a session socket and runs the READY/PING/PONG handshake
under short timeouts, so an orphaned socket file or an unresponsive peer
cannot hang the caller. The result is computed on demand and never cached.

Usage:
    from shineyshot.daemon.probe import probe_socket

    status = await probe_socket(Path("/run/user/1000/shineyshot/demo.sock"))
    if not status.alive:
        print(f"dead: {status.detail}")
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Optional

import structlog

from shineyshot.core.exceptions import ProtocolError
from shineyshot.daemon.protocol import (
    MAX_LINE_SIZE,
    PING,
    PONG,
    READY,
    decode_line,
    encode_line,
)


CONNECT_TIMEOUT = 1.0  # seconds
PROBE_DEADLINE = 2.0  # seconds


log = structlog.get_logger()


class DeadReason(StrEnum):
    """Normalized cause of a failed probe."""

    MISSING_FILE = "missing socket file"
    PERMISSION_DENIED = "permission denied"
    OTHER = "other"


@dataclass(frozen=True)
class SessionStatus:
    """Outcome of a probe.

    Attributes:
        alive: True after a full READY/PING/PONG round trip.
        reason: Why the session is dead (None when alive).
        detail: Human readable failure text (empty when alive).
    """

    alive: bool
    reason: Optional[DeadReason] = None
    detail: str = ""

    @classmethod
    def ok(cls) -> "SessionStatus":
        return cls(alive=True)

    @classmethod
    def dead(cls, reason: DeadReason, detail: str = "") -> "SessionStatus":
        if not detail:
            detail = str(reason)
        return cls(alive=False, reason=reason, detail=detail)

    def __str__(self) -> str:
        return "alive" if self.alive else f"dead: {self.detail}"


def normalize_socket_error(exc: BaseException) -> SessionStatus:
    """Classify a dial/handshake failure into a Dead status."""
    if isinstance(exc, FileNotFoundError):
        return SessionStatus.dead(DeadReason.MISSING_FILE)
    if isinstance(exc, PermissionError):
        return SessionStatus.dead(DeadReason.PERMISSION_DENIED)
    if isinstance(exc, asyncio.TimeoutError):
        return SessionStatus.dead(DeadReason.OTHER, "timed out")
    if isinstance(exc, OSError) and exc.strerror:
        return SessionStatus.dead(DeadReason.OTHER, exc.strerror.lower())
    return SessionStatus.dead(DeadReason.OTHER, str(exc) or exc.__class__.__name__)


async def _read_frame(reader: asyncio.StreamReader, missing: str) -> str:
    data = await reader.readline()
    if not data:
        raise ProtocolError(missing)
    return decode_line(data)


async def ping_socket(
    path: Path,
    connect_timeout: float = CONNECT_TIMEOUT,
    deadline: float = PROBE_DEADLINE,
) -> None:
    """Run the liveness handshake, raising on any failure.

    Raises:
        OSError: Dial failures (missing file, refused, permission).
        asyncio.TimeoutError: Connect or handshake took too long.
        ProtocolError: Wrong greeting or reply.
    """

    async def _handshake() -> None:
        reader, writer = await asyncio.wait_for(
            asyncio.open_unix_connection(str(path), limit=MAX_LINE_SIZE),
            timeout=connect_timeout,
        )
        try:
            greeting = await _read_frame(reader, "socket closed")
            if greeting != READY:
                raise ProtocolError(f"unexpected greeting: {greeting}")
            writer.write(encode_line(PING))
            await writer.drain()
            reply = await _read_frame(reader, "no pong received")
            if reply != PONG:
                raise ProtocolError(f"unexpected response: {reply}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    await asyncio.wait_for(_handshake(), timeout=deadline)


async def probe_socket(
    path: Path,
    connect_timeout: float = CONNECT_TIMEOUT,
    deadline: float = PROBE_DEADLINE,
) -> SessionStatus:
    """Probe a session socket and classify it Alive or Dead."""
    try:
        await ping_socket(path, connect_timeout=connect_timeout, deadline=deadline)
    except (OSError, asyncio.TimeoutError, ProtocolError, ValueError) as e:
        status = normalize_socket_error(e)
        log.debug("probe_dead", path=str(path), detail=status.detail)
        return status
    return SessionStatus.ok()
