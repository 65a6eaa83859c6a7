"""
ShineyShot Test Configuration

Shared pytest fixtures and configuration for all test types.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator, List, Optional

import pytest
import structlog

from shineyshot.core.config import reset_settings


# Configure pytest collection
def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line(
        "markers", "integration: Integration tests (spawn real daemon processes)"
    )


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Give every test fresh settings and default logging."""
    monkeypatch.delenv("SHINEYSHOT_SOCKET_DIR", raising=False)
    reset_settings()
    yield
    reset_settings()
    structlog.reset_defaults()


@pytest.fixture
def sock_dir() -> Generator[Path, None, None]:
    """Short-lived socket directory.

    Unix socket paths are limited to ~108 bytes, so this lives directly
    under the system temp dir instead of pytest's (long) tmp_path.
    """
    path = Path(tempfile.mkdtemp(prefix="ss-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


class RecordingExecutor:
    """Executor double that records calls and echoes scripted output.

    Commands:
        echo TEXT      -> OUT TEXT
        warn TEXT      -> ERR TEXT
        lines N TAG    -> N OUT lines "TAG i"
        fail TEXT      -> raises CommandError(TEXT)
        boom           -> raises RuntimeError
        quit           -> ends the session
    """

    def __init__(self, on_call: Optional[Callable[[str], None]] = None) -> None:
        self.calls: List[str] = []
        self._on_call = on_call

    def execute(self, command, out, err) -> bool:
        from shineyshot.core.exceptions import CommandError

        self.calls.append(command)
        if self._on_call is not None:
            self._on_call(command)
        verb, _, rest = command.partition(" ")
        if verb == "echo":
            out(rest)
        elif verb == "warn":
            err(rest)
        elif verb == "lines":
            count, _, tag = rest.partition(" ")
            for i in range(int(count)):
                out(f"{tag} {i}")
        elif verb == "fail":
            raise CommandError(rest)
        elif verb == "boom":
            raise RuntimeError("kaboom")
        elif verb == "quit":
            return True
        return False


@pytest.fixture
def recording_executor() -> RecordingExecutor:
    """Provide a fresh RecordingExecutor."""
    return RecordingExecutor()


@pytest.fixture
def make_executor() -> Callable[..., RecordingExecutor]:
    """Factory for RecordingExecutor with a custom per-call hook."""
    return RecordingExecutor
