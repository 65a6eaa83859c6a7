"""Command Executor protocol for ShineyShot.

This module defines the ExecutorProtocol interface the session daemon
drives. An executor interprets one text command (for example
"capture screen" or "rect 10 10 200 200") against the image and tool
state it owns.

Output sinks are explicit call parameters, so the daemon can forward one
call's output over the connection that issued it without touching any
state shared with other connections.

Usage:
    from shineyshot.protocols import ExecutorProtocol

    class EchoExecutor:
        def execute(self, command, out, err):
            out(command)
            return False

    assert isinstance(EchoExecutor(), ExecutorProtocol)
"""

from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable


LineSink = Callable[[str], None]


@runtime_checkable
class ExecutorProtocol(Protocol):
    """Protocol for stateful command executors.

    Implementations do NOT need to inherit from this class. A single
    instance is shared by every connection of a daemon; the daemon
    guarantees calls never overlap.
    """

    def execute(self, command: str, out: LineSink, err: LineSink) -> bool:
        """Run one command.

        Args:
            command: Raw command text, without the EXEC prefix.
            out: Receives each line of standard output.
            err: Receives each line of error output.

        Returns:
            True if the session should end after this command.

        Raises:
            Exception: Any failure; the daemon reports it as DONE ERR.
        """
        ...
