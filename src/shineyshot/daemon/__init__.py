"""ShineyShot Background Session Package.

This package contains the background session components: the line
protocol, socket directory handling, liveness probing, the session
registry, the daemon launcher, the Unix socket server and its client.

Components:
- protocol: Wire frames and encode/decode helpers
- directory: Socket directory resolution and session naming
- probe: READY/PING/PONG liveness probe
- registry: list/clean/next-name over a socket directory
- arbitration: Target selection when no session is named
- launcher: Detached daemon spawn and readiness wait
- server: Unix socket server sharing one executor
- client: run/attach/stop over a session socket
"""

from shineyshot.daemon.arbitration import (
    resolve_run_target,
    select_running_socket,
    select_socket_for_stop,
)
from shineyshot.daemon.client import (
    SessionClient,
    attach_socket,
    run_socket_commands,
    stop_socket,
)
from shineyshot.daemon.directory import (
    ensure_socket_dir,
    resolve_socket_dir,
    socket_path,
    validate_session_name,
)
from shineyshot.daemon.launcher import start_background_session
from shineyshot.daemon.probe import DeadReason, SessionStatus, probe_socket
from shineyshot.daemon.registry import (
    CleanResult,
    SocketEntry,
    clean_socket_dir,
    collect_socket_statuses,
    format_socket_list,
    next_socket_name,
)
from shineyshot.daemon.server import SessionServer, run_session_server

__all__ = [
    "resolve_run_target",
    "select_running_socket",
    "select_socket_for_stop",
    "SessionClient",
    "attach_socket",
    "run_socket_commands",
    "stop_socket",
    "ensure_socket_dir",
    "resolve_socket_dir",
    "socket_path",
    "validate_session_name",
    "start_background_session",
    "DeadReason",
    "SessionStatus",
    "probe_socket",
    "CleanResult",
    "SocketEntry",
    "clean_socket_dir",
    "collect_socket_statuses",
    "format_socket_list",
    "next_socket_name",
    "SessionServer",
    "run_session_server",
]
