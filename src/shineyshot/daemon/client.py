"""Client for Background Session Communication.

This module provides the client side of the session line protocol:
dialing a session socket, running commands, attaching interactively and
requesting shutdown.

Usage:
    from shineyshot.daemon.client import SessionClient

    async with SessionClient(Path("/run/user/1000/shineyshot/demo.sock")) as client:
        await client.execute("capture screen", out=print, err=print)
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, Optional, Sequence

import structlog

from shineyshot.core.exceptions import (
    CommandFailedError,
    ProtocolError,
    SessionConnectionError,
)
from shineyshot.daemon.probe import CONNECT_TIMEOUT
from shineyshot.daemon.protocol import (
    MAX_LINE_SIZE,
    READY,
    SHUTDOWN,
    ResponseKind,
    decode_line,
    encode_exec,
    encode_line,
    parse_response,
)
from shineyshot.protocols import LineSink


log = structlog.get_logger()

STOP_TIMEOUT = 5.0  # seconds
ATTACH_PROMPT = "> "

LineSource = Callable[[], Optional[str]]


class SessionClient:
    """Client for one connection to a session daemon.

    Attributes:
        socket_path: Path to the session socket.
        connected: Whether the client holds an open connection.
    """

    def __init__(
        self,
        socket_path: Path,
        connect_timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        """Initialize client (not connected yet)."""
        self._socket_path = Path(socket_path)
        self._connect_timeout = connect_timeout
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    @property
    def connected(self) -> bool:
        """Return True if connected to a daemon."""
        return self._writer is not None and not self._writer.is_closing()

    async def __aenter__(self) -> "SessionClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def dial(self) -> None:
        """Open the socket connection without reading the greeting.

        Raises:
            SessionConnectionError: If dialing fails or times out.
        """
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_unix_connection(str(self._socket_path), limit=MAX_LINE_SIZE),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise SessionConnectionError(
                f"timed out connecting to {self._socket_path}"
            ) from e
        except OSError as e:
            raise SessionConnectionError(
                f"failed to connect to {self._socket_path}: {e.strerror or e}"
            ) from e

    async def read_greeting(self) -> bool:
        """Read the greeting; False if the daemon closed the connection.

        Raises:
            SessionConnectionError: If the greeting is not READY.
        """
        greeting = await self.read_line()
        if greeting is None:
            return False
        if greeting != READY:
            raise SessionConnectionError(f"unexpected greeting: {greeting}")
        return True

    async def connect(self) -> None:
        """Dial the socket and wait for the READY greeting.

        Raises:
            SessionConnectionError: If dialing fails or the greeting is wrong.
        """
        await self.dial()
        try:
            if not await self.read_greeting():
                raise SessionConnectionError("socket closed")
        except SessionConnectionError:
            await self.close()
            raise
        log.debug("session_connected", socket=str(self._socket_path))

    async def read_line(self) -> Optional[str]:
        """Read one frame; None on EOF.

        Raises:
            SessionConnectionError: If not connected, the frame is oversized,
                or the connection breaks.
        """
        if self._reader is None:
            raise SessionConnectionError("not connected")
        try:
            data = await self._reader.readline()
        except (asyncio.LimitOverrunError, ValueError) as e:
            raise SessionConnectionError(f"frame too large: {e}") from e
        except (ConnectionResetError, BrokenPipeError) as e:
            raise SessionConnectionError(f"connection lost: {e}") from e
        if not data:
            return None
        try:
            return decode_line(data)
        except ProtocolError as e:
            raise SessionConnectionError(str(e)) from e

    async def send_line(self, text: str) -> None:
        """Write one frame.

        Raises:
            SessionConnectionError: If not connected or the write fails.
        """
        if not self.connected:
            raise SessionConnectionError("not connected")
        assert self._writer is not None
        try:
            self._writer.write(encode_line(text))
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            raise SessionConnectionError(f"connection lost: {e}") from e

    async def execute(self, command: str, out: LineSink, err: LineSink) -> bool:
        """Run one command and relay its output.

        Args:
            command: Command text sent after "EXEC ".
            out: Receives OUT payloads and unrecognized lines.
            err: Receives ERR payloads.

        Returns:
            True if the daemon ended the connection (DONE OK CLOSE).

        Raises:
            ProtocolError: The command contains a line break (nothing is sent).
            CommandFailedError: The daemon answered DONE ERR.
            SessionConnectionError: The connection ended before DONE.
        """
        await self.send_line(encode_exec(command))
        while True:
            line = await self.read_line()
            if line is None:
                raise SessionConnectionError("socket closed")
            response = parse_response(line)
            if response.kind == ResponseKind.OUT:
                out(response.text)
            elif response.kind == ResponseKind.ERR:
                err(response.text)
            elif response.kind == ResponseKind.DONE_OK:
                return False
            elif response.kind == ResponseKind.DONE_CLOSE:
                return True
            elif response.kind == ResponseKind.DONE_ERR:
                raise CommandFailedError(response.text)
            else:
                out(response.text)

    async def shutdown(self) -> None:
        """Send SHUTDOWN and drain until a DONE frame or EOF."""
        await self.send_line(SHUTDOWN)
        while True:
            line = await self.read_line()
            if line is None or parse_response(line).is_done:
                return

    async def close(self) -> None:
        """Close the connection."""
        writer, self._writer = self._writer, None
        self._reader = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass  # Peer already gone


async def run_socket_commands(
    path: Path,
    commands: Sequence[str],
    out: LineSink,
    err: LineSink,
    connect_timeout: float = CONNECT_TIMEOUT,
) -> None:
    """Run a batch of commands on one connection.

    Stops early, without error, when the daemon answers DONE OK CLOSE.

    Raises:
        ProtocolError: A command contains a line break; nothing is sent.
        SessionConnectionError: Dial, greeting or EOF before DONE.
        CommandFailedError: A command failed; later commands are not sent.
    """
    for command in commands:
        encode_exec(command)

    async with SessionClient(path, connect_timeout=connect_timeout) as client:
        for command in commands:
            if await client.execute(command, out, err):
                log.debug("session_closed_by_server", socket=str(path))
                return


async def attach_socket(
    path: Path,
    read_input: LineSource,
    out: LineSink,
    err: LineSink,
    prompt: Callable[[str], None],
    connect_timeout: float = CONNECT_TIMEOUT,
) -> None:
    """Forward local input lines to a session until either side ends.

    Args:
        path: Session socket.
        read_input: Blocking reader returning one line, or None at EOF.
            Called in a worker thread.
        out: Sink for OUT payloads.
        err: Sink for ERR payloads and DONE ERR messages.
        prompt: Writes the prompt without a newline.
    """
    async with SessionClient(path, connect_timeout=connect_timeout) as client:
        while True:
            prompt(ATTACH_PROMPT)
            line = await asyncio.to_thread(read_input)
            if line is None:
                return
            try:
                if await client.execute(line.rstrip("\r\n"), out, err):
                    return
            except (CommandFailedError, ProtocolError) as e:
                err(str(e))
            except SessionConnectionError as e:
                log.debug("attach_connection_ended", error=str(e))
                return


async def stop_socket(
    path: Path,
    connect_timeout: float = CONNECT_TIMEOUT,
    stop_timeout: float = STOP_TIMEOUT,
) -> None:
    """Ask a session to shut down and remove its socket file.

    A missing socket or a refused connection counts as already stopped.
    The socket file is removed afterwards whatever the handshake outcome.

    Raises:
        SessionConnectionError: The handshake failed on a live connection.
    """
    path = Path(path)
    client = SessionClient(path, connect_timeout=connect_timeout)
    try:
        try:
            await client.dial()
        except SessionConnectionError as e:
            log.info("stop_connect_failed", socket=str(path), error=str(e))
            return

        try:
            async with asyncio.timeout(stop_timeout):
                if not await client.read_greeting():
                    return
                await client.shutdown()
        except TimeoutError as e:
            raise SessionConnectionError(
                f"timed out waiting for {path.name} to stop"
            ) from e
    finally:
        await client.close()
        _remove_socket_file(path)


def _remove_socket_file(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        log.warning("socket_remove_failed", path=str(path), error=str(e))
