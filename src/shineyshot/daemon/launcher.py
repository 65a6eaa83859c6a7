"""Background session launcher.

Starts a session daemon as a detached child process and waits until it
answers the liveness handshake. The child runs the same program:

    <python> -m shineyshot background serve --name <name> --dir <dir>

It gets its own session (so it survives the launching terminal), stdin from
/dev/null, and both stdout and stderr on the launcher's stderr.

If the daemon does not become ready in time the launcher terminates it
(SIGTERM, then SIGKILL after a grace period) before reporting the failure.
"""

from __future__ import annotations

import asyncio
import subprocess
import sys
from functools import partial
from pathlib import Path
from typing import Callable, Optional, Sequence

import structlog

from shineyshot.core.config import SessionConfig
from shineyshot.core.exceptions import (
    SessionAlreadyRunningError,
    SessionDirectoryError,
    SessionStartupError,
)
from shineyshot.daemon.directory import (
    ensure_socket_dir,
    session_name_from_file,
    socket_filename,
)
from shineyshot.daemon.probe import probe_socket
from shineyshot.daemon.registry import Prober, next_socket_name


log = structlog.get_logger()

STDERR_FD = 2

Spawner = Callable[[Sequence[str]], subprocess.Popen]


def build_serve_command(
    directory: Path,
    name: str,
    config_path: Optional[Path] = None,
) -> list[str]:
    """Build the argv for a daemon child process."""
    argv = [sys.executable, "-m", "shineyshot"]
    if config_path is not None:
        argv += ["--config", str(config_path)]
    argv += ["background", "serve", "--name", name, "--dir", str(directory)]
    return argv


def spawn_daemon(argv: Sequence[str]) -> subprocess.Popen:
    """Spawn a detached daemon process."""
    return subprocess.Popen(
        list(argv),
        stdin=subprocess.DEVNULL,
        stdout=STDERR_FD,
        stderr=STDERR_FD,
        start_new_session=True,
        close_fds=True,
    )


async def terminate_process(proc: subprocess.Popen, grace: float) -> None:
    """Terminate a child, escalating to SIGKILL after ``grace`` seconds."""
    if proc.poll() is not None:
        return
    log.warning("daemon_terminating", pid=proc.pid)
    proc.terminate()
    try:
        await asyncio.to_thread(proc.wait, grace)
    except subprocess.TimeoutExpired:
        log.warning("daemon_killing", pid=proc.pid)
        proc.kill()
        await asyncio.to_thread(proc.wait)


async def wait_for_ready(
    proc: subprocess.Popen,
    path: Path,
    name: str,
    probe: Prober,
    ready_timeout: float,
    poll_interval: float,
    kill_grace: float,
) -> None:
    """Poll the socket until the daemon answers or the deadline passes.

    Raises:
        SessionStartupError: The child exited early or never became ready.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + ready_timeout
    last_reason = "timed out"

    while True:
        status = await probe(path)
        if status.alive:
            return
        last_reason = status.detail or last_reason

        code = proc.poll()
        if code is not None:
            raise SessionStartupError(name, f"daemon exited with status {code}")

        if loop.time() >= deadline:
            break
        await asyncio.sleep(poll_interval)

    await terminate_process(proc, kill_grace)
    raise SessionStartupError(name, last_reason)


async def start_background_session(
    directory: Path,
    name: Optional[str] = None,
    config: Optional[SessionConfig] = None,
    config_path: Optional[Path] = None,
    spawn: Spawner = spawn_daemon,
    probe: Optional[Prober] = None,
) -> str:
    """Start a background session daemon and return its name.

    Args:
        directory: Socket directory (created if missing).
        name: Session name; the next free integer name when omitted.
        config: Session timing settings.
        config_path: Config file to hand down to the daemon.
        spawn: Process spawner (tests substitute a fake).
        probe: Liveness prober (tests substitute a fake).

    Raises:
        InvalidSessionNameError: The name is not a plain filename.
        SessionAlreadyRunningError: An alive session already uses the name.
        SessionStartupError: The daemon failed to start or become ready.
    """
    cfg = config or SessionConfig()
    prober = probe or partial(
        probe_socket,
        connect_timeout=cfg.connect_timeout,
        deadline=cfg.probe_deadline,
    )

    directory = ensure_socket_dir(directory)
    if not name:
        name = next_socket_name(directory)
    filename = socket_filename(name)
    name = session_name_from_file(filename)
    path = directory / filename

    if path.exists() or path.is_symlink():
        status = await prober(path)
        if status.alive:
            raise SessionAlreadyRunningError(name)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise SessionDirectoryError(f"failed to remove {path}: {e}") from e
        log.info("stale_socket_removed", path=str(path), detail=status.detail)

    argv = build_serve_command(directory, name, config_path=config_path)
    try:
        proc = spawn(argv)
    except OSError as e:
        raise SessionStartupError(name, str(e)) from e
    log.info("daemon_spawned", name=name, pid=proc.pid)

    await wait_for_ready(
        proc,
        path,
        name,
        probe=prober,
        ready_timeout=cfg.ready_timeout,
        poll_interval=cfg.poll_interval,
        kill_grace=cfg.kill_grace,
    )
    log.info("session_ready", name=name, socket=str(path))
    return name
