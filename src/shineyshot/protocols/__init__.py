"""Protocol abstractions for ShineyShot.

Protocols:
    ExecutorProtocol: Interface for the stateful command executor a
        background session drives.
"""

from __future__ import annotations

from shineyshot.protocols.executor import ExecutorProtocol, LineSink

__all__ = [
    "ExecutorProtocol",
    "LineSink",
]
