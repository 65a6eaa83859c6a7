"""Unix Socket Server for Background Sessions.

Provides the SessionServer class that owns one Command Executor and
serves it to any number of clients over a Unix domain socket using the
line protocol in shineyshot.daemon.protocol.

Socket Path: <session-dir>/<name>.sock
Permissions: 0o600 (owner only)

Concurrency:
- The accept loop is one task; every connection is its own task.
- EXEC bodies run in a worker thread while the connection holds the
  single executor lock, so commands from different clients are totally
  ordered and never interleave their output, while PING and SHUTDOWN
  from other connections are answered immediately.

Usage:
    from shineyshot.daemon.server import SessionServer, run_session_server

    # Run a daemon until SHUTDOWN or SIGTERM
    await run_session_server(Path("/run/user/1000/shineyshot"), "demo")

    # Or manual control
    server = SessionServer(socket_path, executor)
    await server.start()
    serve_task = asyncio.create_task(server.serve())
    ...
    await server.shutdown()
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import socket
from pathlib import Path
from typing import Awaitable, Callable, Optional, Set

import structlog

from shineyshot.core.exceptions import CommandError, ProtocolError
from shineyshot.daemon.directory import ensure_socket_dir, socket_path
from shineyshot.daemon.protocol import (
    DONE_ERR_PREFIX,
    DONE_OK,
    DONE_OK_CLOSE,
    ERR_PREFIX,
    MAX_LINE_SIZE,
    OUT_PREFIX,
    PONG,
    READY,
    UNKNOWN_REQUEST,
    Request,
    RequestVerb,
    decode_line,
    encode_line,
    escape_payload,
    parse_request,
)
from shineyshot.protocols import ExecutorProtocol, LineSink


SOCKET_MODE = 0o600
CLIENT_CLOSE_TIMEOUT = 1.0  # seconds

# Accept errors that only mean "try again"
TRANSIENT_ACCEPT_ERRORS = (
    BlockingIOError,
    InterruptedError,
    ConnectionAbortedError,
    TimeoutError,
)


log = structlog.get_logger()

Handler = Callable[[asyncio.StreamWriter, Request], Awaitable[bool]]


class SessionServer:
    """Unix socket server sharing one executor between connections.

    The listener is a plain socket driven by an explicit
    ``loop.sock_accept`` loop rather than ``asyncio.start_unix_server``:
    transient accept errors are retried here while fatal ones propagate
    out of ``serve()``.

    Attributes:
        _socket_path: Path to the Unix socket file.
        _executor: The single Command Executor for this daemon.
        _exec_lock: Serializes every EXEC across all connections.
        _listener: Listening socket (None once closed).
        _stopping: Set once shutdown begins.
        _clients: Writers of live connections.
        _handlers: Verb -> handler table.
    """

    def __init__(
        self,
        socket_path: Path,
        executor: ExecutorProtocol,
    ) -> None:
        """Initialize SessionServer.

        Args:
            socket_path: Where to bind the Unix socket.
            executor: Command Executor owned by this server.
        """
        self._socket_path = Path(socket_path)
        self._executor = executor
        self._exec_lock = asyncio.Lock()
        self._listener: Optional[socket.socket] = None
        self._socket_ino: Optional[int] = None
        self._stopping = asyncio.Event()
        self._shutdown_started = False
        self._serving = False
        self._clients: Set[asyncio.StreamWriter] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._shutdown_task: Optional[asyncio.Task] = None
        self._handlers: dict[RequestVerb, Handler] = {
            RequestVerb.PING: self._handle_ping,
            RequestVerb.SHUTDOWN: self._handle_shutdown,
            RequestVerb.EXEC: self._handle_exec,
            RequestVerb.UNKNOWN: self._handle_unknown,
        }

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    @property
    def stopping(self) -> bool:
        """Return True once shutdown has begun."""
        return self._stopping.is_set()

    async def start(self) -> None:
        """Bind the Unix socket.

        Removes a stale socket file left by an unclean shutdown, then binds
        and restricts the socket file to its owner.

        Raises:
            OSError: If the socket cannot be bound.
        """
        if self._socket_path.exists() or self._socket_path.is_symlink():
            log.warning("removing_stale_socket", path=str(self._socket_path))
            self._socket_path.unlink(missing_ok=True)

        ensure_socket_dir(self._socket_path.parent)

        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            listener.bind(str(self._socket_path))
            os.chmod(self._socket_path, SOCKET_MODE)
            listener.listen()
            listener.setblocking(False)
        except OSError:
            listener.close()
            raise
        self._listener = listener
        self._socket_ino = self._socket_path.stat().st_ino

        log.info(
            "session_server_started",
            socket=str(self._socket_path),
            pid=os.getpid(),
        )

    async def serve(self) -> None:
        """Run the accept loop until shutdown.

        Returns silently when the listener is closed because of shutdown.
        Transient accept errors are retried; anything else propagates after
        the server has been shut down.
        """
        if self._listener is None:
            raise RuntimeError("SessionServer.start() must be called before serve()")

        loop = asyncio.get_running_loop()
        listener = self._listener
        stop_waiter = asyncio.ensure_future(self._stopping.wait())
        accept: Optional[asyncio.Future] = None
        self._serving = True
        try:
            while not self._stopping.is_set():
                accept = asyncio.ensure_future(loop.sock_accept(listener))
                await asyncio.wait(
                    {accept, stop_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if not accept.done():
                    break
                done, accept = accept, None
                try:
                    conn, _ = done.result()
                except TRANSIENT_ACCEPT_ERRORS as e:
                    log.debug("accept_retry", error=str(e))
                    continue
                except OSError:
                    if self._stopping.is_set():
                        break
                    raise
                if self._stopping.is_set():
                    conn.close()
                    break
                self._spawn_connection(conn)
        finally:
            self._serving = False
            stop_waiter.cancel()
            if accept is not None and not accept.done():
                accept.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await accept
            self._close_listener()
            await self.shutdown()

    def _spawn_connection(self, conn: socket.socket) -> None:
        task = asyncio.create_task(self._handle_client(conn))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle_client(self, conn: socket.socket) -> None:
        """Handle a single client connection.

        Sends READY, then reads one request per line until the peer
        disconnects or shutdown closes the connection.
        """
        reader, writer = await asyncio.open_unix_connection(
            sock=conn, limit=MAX_LINE_SIZE
        )
        if self._stopping.is_set():
            await self._close_writer(writer)
            return
        self._clients.add(writer)
        client_id = id(writer)
        log.info("client_connected", client_id=client_id)

        try:
            if not await self._send(writer, READY):
                return
            while not self._stopping.is_set():
                try:
                    data = await reader.readline()
                except (asyncio.LimitOverrunError, ValueError):
                    log.warning("frame_limit_exceeded", client_id=client_id)
                    break

                if not data:
                    break  # Client disconnected

                try:
                    line = decode_line(data)
                except ProtocolError as e:
                    log.warning("protocol_error", client_id=client_id, error=str(e))
                    if not await self._send(writer, UNKNOWN_REQUEST):
                        break
                    continue

                request = parse_request(line)
                handler = self._handlers[request.verb]
                if not await handler(writer, request):
                    break

        except (ConnectionResetError, BrokenPipeError):
            log.warning("client_disconnected_abruptly", client_id=client_id)
        finally:
            self._clients.discard(writer)
            await self._close_writer(writer)
            log.info("client_disconnected", client_id=client_id)

    async def _send(self, writer: asyncio.StreamWriter, text: str) -> bool:
        """Write one frame; return False if the connection is gone."""
        try:
            writer.write(encode_line(text))
            await writer.drain()
        except (ConnectionError, OSError) as e:
            log.warning("socket_write_failed", frame=text.split(" ", 1)[0], error=str(e))
            return False
        return True

    @staticmethod
    async def _close_writer(writer: asyncio.StreamWriter) -> None:
        writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=CLIENT_CLOSE_TIMEOUT)
        except (ConnectionError, OSError, asyncio.TimeoutError):
            pass  # Peer already gone

    # ------------------------------------------------------------------
    # Request handlers. Each returns True to keep the connection open.
    # ------------------------------------------------------------------

    async def _handle_ping(self, writer: asyncio.StreamWriter, request: Request) -> bool:
        return await self._send(writer, PONG)

    async def _handle_shutdown(self, writer: asyncio.StreamWriter, request: Request) -> bool:
        log.info("shutdown_requested", socket=str(self._socket_path))
        await self._send(writer, DONE_OK_CLOSE)
        await self.shutdown()
        return False

    async def _handle_unknown(self, writer: asyncio.StreamWriter, request: Request) -> bool:
        log.debug("unknown_request", line=request.raw[:80])
        return await self._send(writer, UNKNOWN_REQUEST)

    async def _handle_exec(self, writer: asyncio.StreamWriter, request: Request) -> bool:
        """Run one command against the shared executor.

        Output lines are tagged OUT/ERR and written to this connection
        only. Executor failures become DONE ERR and keep the connection
        open; an end-session result answers DONE OK CLOSE and ends it.
        """
        loop = asyncio.get_running_loop()
        out = self._make_sink(loop, writer, OUT_PREFIX)
        err = self._make_sink(loop, writer, ERR_PREFIX)
        command = request.payload

        async with self._exec_lock:
            log.debug("exec_started", command=command)
            try:
                end_session = await asyncio.to_thread(
                    self._executor.execute, command, out, err
                )
            except CommandError as e:
                log.warning("exec_failed", command=command, error=str(e))
                return await self._send(writer, DONE_ERR_PREFIX + escape_payload(str(e)))
            except Exception as e:
                log.exception("exec_error", command=command, error=str(e))
                return await self._send(writer, DONE_ERR_PREFIX + escape_payload(str(e)))

        if end_session:
            await self._send(writer, DONE_OK_CLOSE)
            return False
        return await self._send(writer, DONE_OK)

    @staticmethod
    def _make_sink(
        loop: asyncio.AbstractEventLoop,
        writer: asyncio.StreamWriter,
        tag: str,
    ) -> LineSink:
        """Build a thread-safe sink that tags lines and queues them on writer.

        Frames are written without draining, so all output of one command
        is buffered in memory until the loop flushes it. Commands of the
        image executor emit a handful of lines each.
        """

        def _write(frame: bytes) -> None:
            if not writer.is_closing():
                writer.write(frame)

        def sink(text: str) -> None:
            frame = encode_line(tag + escape_payload(text.rstrip("\n")))
            loop.call_soon_threadsafe(_write, frame)

        return sink

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def request_shutdown(self) -> None:
        """Schedule shutdown from a signal handler or other sync context."""
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.get_running_loop().create_task(self.shutdown())

    async def shutdown(self) -> None:
        """Stop accepting, remove the socket file, and end all connections.

        Safe to call any number of times from any task; only the first
        call does anything.
        """
        if self._shutdown_started:
            return
        self._shutdown_started = True
        self._stopping.set()

        # A running accept loop closes its own listener once it wakes up
        if not self._serving:
            self._close_listener()
        self._remove_socket_file()

        for writer in list(self._clients):
            await self._close_writer(writer)

        log.info("session_server_stopped", socket=str(self._socket_path))

    def _close_listener(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.close()

    def _remove_socket_file(self) -> None:
        """Unlink the socket file unless another daemon has replaced it."""
        try:
            current = self._socket_path.stat().st_ino
        except FileNotFoundError:
            return
        except OSError as e:
            log.warning("socket_cleanup_failed", error=str(e))
            return
        if self._socket_ino is not None and current != self._socket_ino:
            log.warning("socket_replaced_not_removing", path=str(self._socket_path))
            return
        try:
            self._socket_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("socket_cleanup_failed", error=str(e))


async def run_session_server(
    directory: Path,
    name: str,
    executor: Optional[ExecutorProtocol] = None,
) -> None:
    """Run a background session daemon until it is shut down.

    Main entry point behind ``background serve``. Creates the executor
    (once, for the daemon's whole life), binds the socket, and installs
    SIGTERM/SIGINT handlers that trigger the same graceful shutdown as a
    SHUTDOWN request.

    Raises:
        SessionDirectoryError: If the socket directory cannot be created.
        OSError: If the socket cannot be bound or accept fails for good.
    """
    ensure_socket_dir(directory)
    path = socket_path(directory, name)

    if executor is None:
        from shineyshot.core.config import get_settings
        from shineyshot.executor import ImageSession

        executor = ImageSession.from_config(get_settings().executor)

    server = SessionServer(path, executor)
    await server.start()

    loop = asyncio.get_running_loop()

    def shutdown_handler(signum: int) -> None:
        log.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_handler, sig)

    try:
        await server.serve()
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
