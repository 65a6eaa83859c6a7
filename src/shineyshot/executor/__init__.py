"""Reference Command Executor built on Pillow."""

from shineyshot.executor.session import COMMANDS, ImageSession, grab_screen

__all__ = [
    "COMMANDS",
    "ImageSession",
    "grab_screen",
]
