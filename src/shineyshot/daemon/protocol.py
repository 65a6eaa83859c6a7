"""Line Protocol for Session Client-Daemon Communication.

This module defines the frames exchanged between clients and a background
session daemon over its Unix socket, plus helpers to parse and encode them.

Message Format:
- One frame per line
- Delimiter: Newline (\\n)
- Encoding: UTF-8
- Embedded newlines in payloads are sent as the two characters "\\n"

Frames:
    S->C  READY                     connection accepted
    C->S  PING / S->C PONG          liveness check
    C->S  EXEC <command>            run one command
    S->C  OUT <text> / ERR <text>   one line of command output
    S->C  DONE OK                   command finished
    S->C  DONE OK CLOSE             command finished, connection ending
    S->C  DONE ERR <message>        command failed
    C->S  SHUTDOWN                  stop the daemon

Usage:
    from shineyshot.daemon.protocol import parse_request, encode_line

    request = parse_request("EXEC capture screen")
    wire_data = encode_line(f"DONE ERR {escape_payload(message)}")
"""

from dataclasses import dataclass
from enum import StrEnum

from shineyshot.core.exceptions import ProtocolError


MAX_LINE_SIZE = 1024 * 1024  # 1MB per frame

READY = "READY"
PING = "PING"
PONG = "PONG"
SHUTDOWN = "SHUTDOWN"
EXEC_PREFIX = "EXEC "
OUT_PREFIX = "OUT "
ERR_PREFIX = "ERR "
DONE_OK = "DONE OK"
DONE_OK_CLOSE = "DONE OK CLOSE"
DONE_ERR_PREFIX = "DONE ERR "
UNKNOWN_REQUEST = "ERR unknown request"


class RequestVerb(StrEnum):
    """Verbs a client may send to the daemon."""

    PING = "PING"
    SHUTDOWN = "SHUTDOWN"
    EXEC = "EXEC"
    UNKNOWN = "UNKNOWN"


class ResponseKind(StrEnum):
    """Classification of a frame received while draining a command."""

    OUT = "out"
    ERR = "err"
    DONE_OK = "done_ok"
    DONE_CLOSE = "done_close"
    DONE_ERR = "done_err"
    OTHER = "other"


@dataclass(frozen=True)
class Request:
    """A parsed client request.

    Attributes:
        verb: The request verb.
        payload: Command text for EXEC, empty otherwise.
        raw: The line as received.
    """

    verb: RequestVerb
    payload: str = ""
    raw: str = ""


@dataclass(frozen=True)
class Response:
    """A parsed daemon frame seen by a client.

    Attributes:
        kind: Frame classification.
        text: Payload with escapes restored (or the raw line for OTHER).
    """

    kind: ResponseKind
    text: str = ""

    @property
    def is_done(self) -> bool:
        """Return True for any DONE frame."""
        return self.kind in (
            ResponseKind.DONE_OK,
            ResponseKind.DONE_CLOSE,
            ResponseKind.DONE_ERR,
        )


def escape_payload(text: str) -> str:
    """Encode embedded newlines so a payload fits on one line."""
    return text.replace("\r\n", "\n").replace("\n", "\\n")


def unescape_payload(text: str) -> str:
    """Restore newlines encoded by escape_payload."""
    return text.replace("\\n", "\n")


def encode_exec(command: str) -> str:
    """Build the EXEC frame for one command.

    Raises:
        ProtocolError: The command contains a line break and would be
            split into several request frames.
    """
    if "\n" in command or "\r" in command:
        raise ProtocolError(f"command contains a line break: {command!r}")
    return EXEC_PREFIX + command


def parse_request(line: str) -> Request:
    """Parse one client line into a Request.

    Never raises: anything unrecognized becomes RequestVerb.UNKNOWN.
    """
    if line == PING:
        return Request(RequestVerb.PING, raw=line)
    if line == SHUTDOWN:
        return Request(RequestVerb.SHUTDOWN, raw=line)
    if line.startswith(EXEC_PREFIX):
        return Request(RequestVerb.EXEC, payload=line[len(EXEC_PREFIX):], raw=line)
    return Request(RequestVerb.UNKNOWN, raw=line)


def parse_response(line: str) -> Response:
    """Classify one daemon line received while draining a command."""
    if line.startswith(OUT_PREFIX):
        return Response(ResponseKind.OUT, unescape_payload(line[len(OUT_PREFIX):]))
    if line.startswith(ERR_PREFIX):
        return Response(ResponseKind.ERR, unescape_payload(line[len(ERR_PREFIX):]))
    if line.startswith(DONE_ERR_PREFIX):
        return Response(
            ResponseKind.DONE_ERR, unescape_payload(line[len(DONE_ERR_PREFIX):])
        )
    if line.startswith(DONE_OK):
        if line.endswith("CLOSE"):
            return Response(ResponseKind.DONE_CLOSE)
        return Response(ResponseKind.DONE_OK)
    return Response(ResponseKind.OTHER, line)


def encode_line(text: str) -> bytes:
    """Encode one frame to wire format (text + newline, UTF-8)."""
    return (text + "\n").encode("utf-8")


def decode_line(data: bytes) -> str:
    """Decode one frame from wire format.

    Args:
        data: Raw bytes including the trailing newline, if any.

    Returns:
        The frame text without its line terminator.

    Raises:
        ProtocolError: If the frame is oversized or not valid UTF-8.
    """
    if len(data) > MAX_LINE_SIZE:
        raise ProtocolError(
            f"frame size {len(data)} exceeds limit of {MAX_LINE_SIZE} bytes"
        )
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"failed to decode frame: {e}") from e
    return text.rstrip("\r\n")
