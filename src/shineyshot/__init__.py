"""
ShineyShot - screenshot capture and annotation.

Background sessions keep one image and tool state alive in a daemon that
separate command invocations talk to over a Unix socket.
"""

from shineyshot.protocols import ExecutorProtocol

__version__ = "0.4.0"

__all__ = [
    "ExecutorProtocol",
]
