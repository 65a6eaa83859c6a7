"""ShineyShot CLI Entry Point.

This module provides the command-line interface for background sessions
(start, stop, list, clean, attach, run, serve) and the interactive
command runner.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from functools import partial
from pathlib import Path
from typing import Any, Coroutine, List, NoReturn, Optional, TypeVar

import structlog
import typer

from shineyshot.core.config import LoggingConfig, Settings, get_settings
from shineyshot.core.exceptions import (
    CommandError,
    ConfigurationError,
    ShineyShotError,
)
from shineyshot.daemon.arbitration import (
    resolve_run_target,
    select_running_socket,
    select_socket_for_stop,
)
from shineyshot.daemon.client import attach_socket, run_socket_commands, stop_socket
from shineyshot.daemon.directory import resolve_socket_dir, socket_path
from shineyshot.daemon.launcher import start_background_session
from shineyshot.daemon.probe import probe_socket
from shineyshot.daemon.registry import (
    clean_socket_dir,
    collect_socket_statuses,
    format_socket_list,
)
from shineyshot.daemon.server import run_session_server


T = TypeVar("T")

log = structlog.get_logger()

# Main app
app = typer.Typer(
    name="shineyshot",
    help="ShineyShot - screenshot capture and annotation",
    no_args_is_help=True,
)

# Background session subcommand group
background_app = typer.Typer(
    help="Manage background annotation sessions", no_args_is_help=True
)
app.add_typer(background_app, name="background")


def configure_logging(cfg: Optional[LoggingConfig] = None) -> None:
    """Configure structlog from the logging settings.

    Logs always go to stderr so command output on stdout stays clean.
    """
    cfg = cfg or get_settings().logging
    processors: list[Any] = [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if cfg.format == "json":
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, cfg.level)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def load_config_callback(ctx: typer.Context, config: Optional[Path]) -> Optional[Path]:
    """Load settings (and the config file if given), then set up logging."""
    if config and not config.expanduser().exists():
        typer.echo(f"Error: Config file '{config}' not found", err=True)
        raise typer.Exit(code=1)

    try:
        get_settings(force_reload=True, config_path=config)
    except ConfigurationError as e:
        typer.echo(f"Error loading config: {e}", err=True)
        raise typer.Exit(code=1)
    except ValueError as e:
        typer.echo(f"Error: invalid configuration: {e}", err=True)
        raise typer.Exit(code=1)

    configure_logging()
    if config:
        log.info("config_loaded", path=str(config))
    return config


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c",
        callback=load_config_callback,
        is_eager=True,
        help="Path to configuration file",
    ),
) -> None:
    """ShineyShot CLI."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config


# =============================================================================
# Helpers
# =============================================================================


def _fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning domain errors into a one-line failure."""
    try:
        return asyncio.run(coro)
    except ShineyShotError as e:
        _fail(str(e))


def _settings() -> Settings:
    return get_settings()


def _socket_dir(explicit: Optional[str]) -> Path:
    try:
        return resolve_socket_dir(explicit, configured=_settings().sessions.socket_dir)
    except ShineyShotError as e:
        _fail(str(e))


def _session_path(directory: Path, name: str) -> Path:
    try:
        return socket_path(directory, name)
    except ShineyShotError as e:
        _fail(str(e))


def _prober():
    sessions = _settings().sessions
    return partial(
        probe_socket,
        connect_timeout=sessions.connect_timeout,
        deadline=sessions.probe_deadline,
    )


def _echo_out(text: str) -> None:
    typer.echo(text)


def _echo_err(text: str) -> None:
    typer.echo(text, err=True)


def _read_stdin_line() -> Optional[str]:
    line = sys.stdin.readline()
    return line if line else None


def _prompt(text: str) -> None:
    typer.echo(text, nl=False)


NAME_OPTION_HELP = "Session name"
DIR_OPTION_HELP = "Socket directory (default: $SHINEYSHOT_SOCKET_DIR or runtime dir)"


# =============================================================================
# background commands
# =============================================================================


@background_app.command("start")
def background_start(
    ctx: typer.Context,
    name_arg: Optional[str] = typer.Argument(None, metavar="[NAME]", show_default=False),
    dir_arg: Optional[str] = typer.Argument(None, metavar="[DIR]", show_default=False),
    name: Optional[str] = typer.Option(None, "--name", "-n", help=NAME_OPTION_HELP),
    dir_opt: Optional[str] = typer.Option(None, "--dir", "-d", help=DIR_OPTION_HELP),
) -> None:
    """Start a background session daemon."""
    directory = _socket_dir(dir_opt or dir_arg)
    config_path = (ctx.obj or {}).get("config_path")
    session = _run(
        start_background_session(
            directory,
            name or name_arg,
            config=_settings().sessions,
            config_path=config_path,
        )
    )
    typer.echo(
        f"started background session {session} at {socket_path(directory, session)}"
    )


@background_app.command("stop")
def background_stop(
    name_arg: Optional[str] = typer.Argument(None, metavar="[NAME]", show_default=False),
    dir_arg: Optional[str] = typer.Argument(None, metavar="[DIR]", show_default=False),
    name: Optional[str] = typer.Option(None, "--name", "-n", help=NAME_OPTION_HELP),
    dir_opt: Optional[str] = typer.Option(None, "--dir", "-d", help=DIR_OPTION_HELP),
) -> None:
    """Stop a background session (idempotent)."""
    directory = _socket_dir(dir_opt or dir_arg)
    preferred = name or name_arg
    sessions = _settings().sessions

    async def _stop() -> str:
        entries = [] if preferred else await collect_socket_statuses(directory, probe=_prober())
        target = select_socket_for_stop(entries, preferred)
        await stop_socket(
            socket_path(directory, target),
            connect_timeout=sessions.connect_timeout,
            stop_timeout=sessions.stop_timeout,
        )
        return target

    target = _run(_stop())
    typer.echo(f"stop requested for {target}")


@background_app.command("list")
def background_list(
    dir_arg: Optional[str] = typer.Argument(None, metavar="[DIR]", show_default=False),
    dir_opt: Optional[str] = typer.Option(None, "--dir", "-d", help=DIR_OPTION_HELP),
) -> None:
    """List session sockets and whether they are alive."""
    directory = _socket_dir(dir_opt or dir_arg)
    entries = _run(collect_socket_statuses(directory, probe=_prober()))
    for line in format_socket_list(entries):
        typer.echo(line)


@background_app.command("clean")
def background_clean(
    dir_arg: Optional[str] = typer.Argument(None, metavar="[DIR]", show_default=False),
    dir_opt: Optional[str] = typer.Option(None, "--dir", "-d", help=DIR_OPTION_HELP),
) -> None:
    """Remove sockets of dead sessions."""
    directory = _socket_dir(dir_opt or dir_arg)
    result = _run(clean_socket_dir(directory, probe=_prober()))
    for line in result.lines():
        typer.echo(line)


@background_app.command("attach")
def background_attach(
    name_arg: Optional[str] = typer.Argument(None, metavar="[NAME]", show_default=False),
    dir_arg: Optional[str] = typer.Argument(None, metavar="[DIR]", show_default=False),
    name: Optional[str] = typer.Option(None, "--name", "-n", help=NAME_OPTION_HELP),
    dir_opt: Optional[str] = typer.Option(None, "--dir", "-d", help=DIR_OPTION_HELP),
) -> None:
    """Attach an interactive prompt to a running session."""
    directory = _socket_dir(dir_opt or dir_arg)
    preferred = name or name_arg
    connect_timeout = _settings().sessions.connect_timeout

    async def _attach() -> None:
        entries = await collect_socket_statuses(directory, probe=_prober())
        target = select_running_socket(entries, preferred)
        await attach_socket(
            socket_path(directory, target),
            read_input=_read_stdin_line,
            out=_echo_out,
            err=_echo_err,
            prompt=_prompt,
            connect_timeout=connect_timeout,
        )

    _run(_attach())


@background_app.command(
    "run",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def background_run(
    args: Optional[List[str]] = typer.Argument(
        None, metavar="[NAME] COMMAND...", show_default=False
    ),
    name: Optional[str] = typer.Option(None, "--name", "-n", help=NAME_OPTION_HELP),
    dir_opt: Optional[str] = typer.Option(None, "--dir", "-d", help=DIR_OPTION_HELP),
) -> None:
    """Run one command in a running session."""
    directory = _socket_dir(dir_opt)
    connect_timeout = _settings().sessions.connect_timeout

    async def _run_command() -> None:
        entries = await collect_socket_statuses(directory, probe=_prober())
        target, command = resolve_run_target(entries, name, args or [])
        await run_socket_commands(
            socket_path(directory, target),
            [" ".join(command)],
            out=_echo_out,
            err=_echo_err,
            connect_timeout=connect_timeout,
        )

    _run(_run_command())


@background_app.command("serve", hidden=True)
def background_serve(
    name_arg: Optional[str] = typer.Argument(None, metavar="[NAME]", show_default=False),
    dir_arg: Optional[str] = typer.Argument(None, metavar="[DIR]", show_default=False),
    name: Optional[str] = typer.Option(None, "--name", "-n", help=NAME_OPTION_HELP),
    dir_opt: Optional[str] = typer.Option(None, "--dir", "-d", help=DIR_OPTION_HELP),
) -> None:
    """Run a session daemon in the foreground (used by start)."""
    session = name or name_arg
    if not session:
        _fail("background serve requires a session name")
    directory = _socket_dir(dir_opt or dir_arg)
    _session_path(directory, session)

    try:
        _run(run_session_server(directory, session))
    except OSError as e:
        log.error("session_server_failed", name=session, error=str(e))
        _fail(f"session {session} failed: {e.strerror or e}")


# =============================================================================
# interactive
# =============================================================================


def _local_session():
    from shineyshot.executor import ImageSession

    try:
        return ImageSession.from_config(_settings().executor)
    except CommandError as e:
        _fail(f"invalid executor settings: {e}")


def _run_local(commands: List[str]) -> None:
    session = _local_session()
    for command in commands:
        try:
            if session.execute(command, _echo_out, _echo_err):
                return
        except CommandError as e:
            _fail(str(e))


def _local_repl() -> None:
    session = _local_session()
    typer.echo("Interactive mode. Type 'help' for commands.")
    while True:
        _prompt("> ")
        line = _read_stdin_line()
        if line is None:
            return
        line = line.strip()
        if not line:
            continue
        try:
            if session.execute(line, _echo_out, _echo_err):
                return
        except CommandError as e:
            _echo_err(str(e))


@app.command("interactive")
def interactive(
    execs: Optional[List[str]] = typer.Option(
        None, "--exec", "-e", help="Command to execute (repeatable)"
    ),
    name: Optional[str] = typer.Option(
        None, "--name", "-n", help="Send commands to this background session"
    ),
    dir_opt: Optional[str] = typer.Option(None, "--dir", "-d", help=DIR_OPTION_HELP),
) -> None:
    """Run annotation commands locally or against a background session."""
    if name:
        directory = _socket_dir(dir_opt)
        path = _session_path(directory, name)
        connect_timeout = _settings().sessions.connect_timeout
        if execs:
            _run(
                run_socket_commands(
                    path, execs, out=_echo_out, err=_echo_err, connect_timeout=connect_timeout
                )
            )
        else:
            _run(
                attach_socket(
                    path,
                    read_input=_read_stdin_line,
                    out=_echo_out,
                    err=_echo_err,
                    prompt=_prompt,
                    connect_timeout=connect_timeout,
                )
            )
        return

    if execs:
        _run_local(execs)
    else:
        _local_repl()


if __name__ == "__main__":
    app()
