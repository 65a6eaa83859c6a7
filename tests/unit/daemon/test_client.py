"""Unit tests for the session client (run, attach, stop)."""

import asyncio
import socket
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

import pytest

from shineyshot.core.exceptions import (
    CommandFailedError,
    ProtocolError,
    SessionConnectionError,
)
from shineyshot.daemon.client import (
    SessionClient,
    attach_socket,
    run_socket_commands,
    stop_socket,
)
from shineyshot.daemon.server import SessionServer


TIMEOUT = 5.0


@asynccontextmanager
async def serving(path: Path, executor) -> AsyncIterator[tuple]:
    server = SessionServer(path, executor)
    await server.start()
    task = asyncio.create_task(server.serve())
    try:
        yield server, task
    finally:
        await server.shutdown()
        await asyncio.wait_for(task, TIMEOUT)


@asynccontextmanager
async def fake_peer(path: Path, script: List[bytes]) -> AsyncIterator[None]:
    """Serve a fixed byte script to each connection, then hang up."""

    async def handler(reader, writer) -> None:
        for chunk in script:
            writer.write(chunk)
            await writer.drain()
            if chunk.startswith(b"DONE"):
                break
        writer.close()

    server = await asyncio.start_unix_server(handler, path=str(path))
    try:
        yield
    finally:
        server.close()
        await server.wait_closed()


class Collector:
    """Collects sink output."""

    def __init__(self) -> None:
        self.out: List[str] = []
        self.err: List[str] = []
        self.prompts: List[str] = []

    def on_out(self, text: str) -> None:
        self.out.append(text)

    def on_err(self, text: str) -> None:
        self.err.append(text)

    def on_prompt(self, text: str) -> None:
        self.prompts.append(text)


def _lines_source(lines: List[str]):
    pending = list(lines)

    def read() -> Optional[str]:
        return pending.pop(0) + "\n" if pending else None

    return read


class TestSessionClientConnect:
    """Connection and greeting handling."""

    @pytest.mark.asyncio
    async def test_missing_socket(self, sock_dir: Path) -> None:
        client = SessionClient(sock_dir / "nope.sock")
        with pytest.raises(SessionConnectionError, match="failed to connect"):
            await client.connect()

    @pytest.mark.asyncio
    async def test_unexpected_greeting(self, sock_dir: Path) -> None:
        path = sock_dir / "g.sock"
        async with fake_peer(path, [b"HELLO\n"]):
            client = SessionClient(path)
            with pytest.raises(SessionConnectionError, match="unexpected greeting: HELLO"):
                await client.connect()
            assert not client.connected

    @pytest.mark.asyncio
    async def test_closed_before_greeting(self, sock_dir: Path) -> None:
        path = sock_dir / "c.sock"
        async with fake_peer(path, []):
            with pytest.raises(SessionConnectionError, match="socket closed"):
                await SessionClient(path).connect()

    @pytest.mark.asyncio
    async def test_send_without_connect(self, sock_dir: Path) -> None:
        with pytest.raises(SessionConnectionError, match="not connected"):
            await SessionClient(sock_dir / "x.sock").send_line("PING")


class TestRunSocketCommands:
    """Batch execution."""

    @pytest.mark.asyncio
    async def test_multiline_command_rejected_before_sending(
        self, sock_dir: Path, recording_executor
    ) -> None:
        path = sock_dir / "r.sock"
        sink = Collector()
        async with serving(path, recording_executor):
            with pytest.raises(ProtocolError, match="line break"):
                await run_socket_commands(
                    path, ["echo first", "echo a\nb", "echo c"], sink.on_out, sink.on_err
                )
            # the session stays in step for the next batch
            await run_socket_commands(path, ["echo after"], sink.on_out, sink.on_err)
        assert recording_executor.calls == ["echo after"]
        assert sink.out == ["after"]
        assert sink.err == []

    @pytest.mark.asyncio
    async def test_execute_rejects_line_break(self, sock_dir: Path, recording_executor) -> None:
        path = sock_dir / "r.sock"
        sink = Collector()
        async with serving(path, recording_executor):
            async with SessionClient(path) as client:
                with pytest.raises(ProtocolError):
                    await client.execute("echo a\rb", sink.on_out, sink.on_err)
                assert await client.execute("echo c", sink.on_out, sink.on_err) is False
        assert recording_executor.calls == ["echo c"]
        assert sink.out == ["c"]
        assert sink.err == []

    @pytest.mark.asyncio
    async def test_output_relayed(self, sock_dir: Path, recording_executor) -> None:
        path = sock_dir / "r.sock"
        sink = Collector()
        async with serving(path, recording_executor):
            await run_socket_commands(
                path, ["echo one", "warn two", "echo three"], sink.on_out, sink.on_err
            )
        assert sink.out == ["one", "three"]
        assert sink.err == ["two"]
        assert recording_executor.calls == ["echo one", "warn two", "echo three"]

    @pytest.mark.asyncio
    async def test_error_stops_batch(self, sock_dir: Path, recording_executor) -> None:
        path = sock_dir / "r.sock"
        sink = Collector()
        async with serving(path, recording_executor):
            with pytest.raises(CommandFailedError, match="no image loaded"):
                await run_socket_commands(
                    path, ["fail no image loaded", "echo never"], sink.on_out, sink.on_err
                )
        assert recording_executor.calls == ["fail no image loaded"]

    @pytest.mark.asyncio
    async def test_close_stops_batch_without_error(
        self, sock_dir: Path, recording_executor
    ) -> None:
        path = sock_dir / "r.sock"
        sink = Collector()
        async with serving(path, recording_executor):
            await run_socket_commands(path, ["quit", "echo never"], sink.on_out, sink.on_err)
        assert recording_executor.calls == ["quit"]

    @pytest.mark.asyncio
    async def test_multiline_error_unescaped(self, sock_dir: Path) -> None:
        path = sock_dir / "m.sock"
        async with fake_peer(path, [b"READY\n", b"DONE ERR line one\\nline two\n"]):
            with pytest.raises(CommandFailedError) as exc_info:
                await run_socket_commands(path, ["x"], print, print)
        assert str(exc_info.value) == "line one\nline two"

    @pytest.mark.asyncio
    async def test_unrecognized_lines_go_to_out(self, sock_dir: Path) -> None:
        path = sock_dir / "u.sock"
        sink = Collector()
        async with fake_peer(path, [b"READY\n", b"legacy text\n", b"OUT a\\nb\n", b"DONE OK\n"]):
            await run_socket_commands(path, ["x"], sink.on_out, sink.on_err)
        assert sink.out == ["legacy text", "a\nb"]

    @pytest.mark.asyncio
    async def test_eof_before_done_is_error(self, sock_dir: Path) -> None:
        path = sock_dir / "e.sock"
        async with fake_peer(path, [b"READY\n", b"OUT partial\n"]):
            with pytest.raises(SessionConnectionError, match="socket closed"):
                await run_socket_commands(path, ["x"], print, print)


class TestAttachSocket:
    """Interactive forwarding."""

    @pytest.mark.asyncio
    async def test_line_break_reported_and_loop_continues(
        self, sock_dir: Path, recording_executor
    ) -> None:
        path = sock_dir / "a.sock"
        sink = Collector()
        async with serving(path, recording_executor):
            await attach_socket(
                path,
                _lines_source(["echo a\rb", "echo ok"]),
                sink.on_out,
                sink.on_err,
                sink.on_prompt,
            )
        assert recording_executor.calls == ["echo ok"]
        assert sink.out == ["ok"]
        assert len(sink.err) == 1
        assert "line break" in sink.err[0]

    @pytest.mark.asyncio
    async def test_forwards_until_local_eof(self, sock_dir: Path, recording_executor) -> None:
        path = sock_dir / "a.sock"
        sink = Collector()
        async with serving(path, recording_executor):
            await attach_socket(
                path,
                _lines_source(["echo hi", "fail oops", "echo again"]),
                sink.on_out,
                sink.on_err,
                sink.on_prompt,
            )
        assert sink.out == ["hi", "again"]
        assert sink.err == ["oops"]
        assert sink.prompts == ["> "] * 4

    @pytest.mark.asyncio
    async def test_stops_on_close(self, sock_dir: Path, recording_executor) -> None:
        path = sock_dir / "a.sock"
        sink = Collector()
        async with serving(path, recording_executor):
            await attach_socket(
                path,
                _lines_source(["quit", "echo never"]),
                sink.on_out,
                sink.on_err,
                sink.on_prompt,
            )
        assert recording_executor.calls == ["quit"]

    @pytest.mark.asyncio
    async def test_stops_when_daemon_hangs_up(self, sock_dir: Path) -> None:
        path = sock_dir / "h.sock"
        sink = Collector()
        async with fake_peer(path, [b"READY\n"]):
            await attach_socket(
                path, _lines_source(["status", "status"]), sink.on_out, sink.on_err, sink.on_prompt
            )
        assert sink.prompts == ["> "]


class TestStopSocket:
    """Idempotent stop."""

    @pytest.mark.asyncio
    async def test_stops_running_server(self, sock_dir: Path, recording_executor) -> None:
        path = sock_dir / "s.sock"
        async with serving(path, recording_executor) as (server, task):
            await stop_socket(path)
            await asyncio.wait_for(task, TIMEOUT)
            assert server.stopping
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_missing_socket_is_noop(self, sock_dir: Path) -> None:
        await stop_socket(sock_dir / "gone.sock")
        await stop_socket(sock_dir / "gone.sock")

    @pytest.mark.asyncio
    async def test_orphaned_file_removed(self, sock_dir: Path) -> None:
        path = sock_dir / "orphan.sock"
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.bind(str(path))
        sock.close()
        await stop_socket(path)
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_wrong_greeting_raises_but_removes_file(self, sock_dir: Path) -> None:
        path = sock_dir / "w.sock"
        async with fake_peer(path, [b"HELLO\n"]):
            with pytest.raises(SessionConnectionError, match="unexpected greeting"):
                await stop_socket(path)
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_unresponsive_peer_times_out(self, sock_dir: Path) -> None:
        release = asyncio.Event()

        async def handler(reader, writer) -> None:
            await release.wait()
            writer.close()

        path = sock_dir / "slow.sock"
        server = await asyncio.start_unix_server(handler, path=str(path))
        try:
            with pytest.raises(SessionConnectionError, match="timed out"):
                await stop_socket(path, stop_timeout=0.2)
        finally:
            release.set()
            server.close()
            await server.wait_closed()
