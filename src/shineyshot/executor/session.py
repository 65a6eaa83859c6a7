"""Image session: the reference Command Executor.

Holds one working image plus drawing state (colour, stroke width, last
saved path) and applies text commands to it. Every background session
daemon owns exactly one ImageSession for its whole life; the same class
backs local ``interactive`` use.

Usage:
    from shineyshot.executor import ImageSession

    session = ImageSession()
    session.execute("new 320 200", out=print, err=print)
    session.execute("arrow 10 10 100 80", out=print, err=print)
    session.execute("save /tmp/out.png", out=print, err=print)
"""

from __future__ import annotations

import math
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

import structlog
from PIL import Image, ImageColor, ImageDraw

from shineyshot.core.config import ExecutorConfig
from shineyshot.core.exceptions import CommandError
from shineyshot.protocols import LineSink


log = structlog.get_logger()

BBox = tuple[int, int, int, int]
CaptureBackend = Callable[[Optional[BBox]], Image.Image]

END_SESSION_COMMANDS = frozenset({"quit", "exit"})


def grab_screen(bbox: Optional[BBox] = None) -> Image.Image:
    """Capture the screen (or a box of it) with Pillow's ImageGrab."""
    from PIL import ImageGrab

    return ImageGrab.grab(bbox=bbox)


@dataclass(frozen=True)
class _Command:
    handler: Callable[["ImageSession", list[str], LineSink], None]
    usage: str
    summary: str


def _parse_ints(args: Sequence[str], count: int, usage: str) -> list[int]:
    if len(args) != count:
        raise CommandError(f"usage: {usage}")
    values = []
    for arg in args:
        try:
            values.append(int(arg))
        except ValueError:
            raise CommandError(f"invalid number {arg!r}") from None
    return values


def _box(x0: int, y0: int, x1: int, y1: int) -> BBox:
    return min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1)


class ImageSession:
    """Stateful image executor driven by text commands.

    Attributes:
        image: Current working image (None until captured/opened/created).
        color: Current stroke colour as given by the user.
        width: Current stroke width in pixels.
        last_saved: Path of the last successful save.
    """

    def __init__(
        self,
        color: str = "red",
        width: int = 2,
        palette: Optional[Sequence[str]] = None,
        canvas_size: tuple[int, int] = (800, 600),
        capture: Optional[CaptureBackend] = None,
    ) -> None:
        self.image: Optional[Image.Image] = None
        self.color = color
        self._rgba = self._resolve_color(color)
        self.width = width
        self.palette = list(palette or [])
        self.canvas_size = canvas_size
        self.last_saved: Optional[str] = None
        self._capture = capture or grab_screen

    @classmethod
    def from_config(
        cls,
        config: ExecutorConfig,
        capture: Optional[CaptureBackend] = None,
    ) -> "ImageSession":
        """Build a session from the ``executor`` settings section."""
        return cls(
            color=config.color,
            width=config.width,
            palette=config.palette,
            canvas_size=(config.canvas_width, config.canvas_height),
            capture=capture,
        )

    def execute(self, command: str, out: LineSink, err: LineSink) -> bool:
        """Run one command line.

        Returns:
            True when the command ends the session (quit/exit).

        Raises:
            CommandError: Unknown command, bad arguments, or a failed action.
        """
        try:
            fields = shlex.split(command)
        except ValueError as e:
            raise CommandError(f"cannot parse command: {e}") from e
        if not fields:
            return False

        name, args = fields[0].lower(), fields[1:]
        if name in END_SESSION_COMMANDS:
            return True

        entry = COMMANDS.get(name)
        if entry is None:
            raise CommandError(f"unknown command: {name}")
        log.debug("executor_command", command=name, args=args)
        entry.handler(self, args, out)
        return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_image(self) -> Image.Image:
        if self.image is None:
            raise CommandError("no image loaded")
        return self.image

    @staticmethod
    def _resolve_color(value: str) -> tuple[int, ...]:
        try:
            return ImageColor.getrgb(value)
        except ValueError:
            raise CommandError(f"unknown color: {value}") from None

    def _draw(self) -> ImageDraw.ImageDraw:
        return ImageDraw.Draw(self._require_image())

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    def _cmd_help(self, args: list[str], out: LineSink) -> None:
        out("Commands:")
        for entry in COMMANDS.values():
            out(f"  {entry.usage:<26}{entry.summary}")
        out(f"  {'quit':<26}end the session")

    def _cmd_capture(self, args: list[str], out: LineSink) -> None:
        mode = args[0].lower() if args else "screen"
        if mode == "screen" and len(args) <= 1:
            bbox = None
        elif mode == "region":
            x, y, w, h = _parse_ints(args[1:], 4, "capture region X Y W H")
            if w <= 0 or h <= 0:
                raise CommandError("region width and height must be positive")
            bbox = (x, y, x + w, y + h)
        else:
            raise CommandError("usage: capture screen|region X Y W H")

        try:
            grabbed = self._capture(bbox)
        except (OSError, ValueError) as e:
            raise CommandError(f"capture failed: {e}") from e
        self.image = grabbed.convert("RGBA")
        out("captured screenshot")

    def _cmd_new(self, args: list[str], out: LineSink) -> None:
        if args:
            w, h = _parse_ints(args, 2, "new [W H]")
            if w <= 0 or h <= 0:
                raise CommandError("canvas size must be positive")
        else:
            w, h = self.canvas_size
        self.image = Image.new("RGBA", (w, h), "white")
        out(f"new canvas {w}x{h}")

    def _cmd_open(self, args: list[str], out: LineSink) -> None:
        if len(args) != 1:
            raise CommandError("usage: open FILE")
        try:
            with Image.open(args[0]) as img:
                self.image = img.convert("RGBA")
        except OSError as e:
            raise CommandError(f"cannot open {args[0]}: {e}") from e
        out(f"opened {args[0]}")

    def _cmd_color(self, args: list[str], out: LineSink) -> None:
        if len(args) != 1:
            raise CommandError("usage: color NAME|#RRGGBB[AA]|INDEX")
        value = args[0]
        if value.isdigit() and self.palette:
            index = int(value)
            if index >= len(self.palette):
                raise CommandError(f"palette index out of range: {index}")
            value = self.palette[index]
        self._rgba = self._resolve_color(value)
        self.color = value
        out(f"color {value}")

    def _cmd_width(self, args: list[str], out: LineSink) -> None:
        (width,) = _parse_ints(args, 1, "width N")
        if width <= 0:
            raise CommandError("width must be positive")
        self.width = width
        out(f"width {width}")

    def _cmd_line(self, args: list[str], out: LineSink) -> None:
        x0, y0, x1, y1 = _parse_ints(args, 4, "line X0 Y0 X1 Y1")
        self._draw().line([(x0, y0), (x1, y1)], fill=self._rgba, width=self.width)
        out("line drawn")

    def _cmd_arrow(self, args: list[str], out: LineSink) -> None:
        x0, y0, x1, y1 = _parse_ints(args, 4, "arrow X0 Y0 X1 Y1")
        draw = self._draw()
        draw.line([(x0, y0), (x1, y1)], fill=self._rgba, width=self.width)
        angle = math.atan2(y1 - y0, x1 - x0)
        size = 6 + self.width * 2
        for head in (angle + math.pi / 6, angle - math.pi / 6):
            tip = (x1 - int(math.cos(head) * size), y1 - int(math.sin(head) * size))
            draw.line([(x1, y1), tip], fill=self._rgba, width=self.width)
        out("arrow drawn")

    def _cmd_rect(self, args: list[str], out: LineSink) -> None:
        box = _box(*_parse_ints(args, 4, "rect X0 Y0 X1 Y1"))
        self._draw().rectangle(box, outline=self._rgba, width=self.width)
        out("rectangle drawn")

    def _cmd_circle(self, args: list[str], out: LineSink) -> None:
        x, y, r = _parse_ints(args, 3, "circle X Y R")
        if r <= 0:
            raise CommandError("radius must be positive")
        self._draw().ellipse(
            (x - r, y - r, x + r, y + r), outline=self._rgba, width=self.width
        )
        out("circle drawn")

    def _cmd_crop(self, args: list[str], out: LineSink) -> None:
        box = _box(*_parse_ints(args, 4, "crop X0 Y0 X1 Y1"))
        image = self._require_image()
        if box[0] == box[2] or box[1] == box[3]:
            raise CommandError("crop region is empty")
        self.image = image.crop(box)
        out("cropped")

    def _cmd_save(self, args: list[str], out: LineSink) -> None:
        if len(args) != 1:
            raise CommandError("usage: save FILE")
        image = self._require_image()
        path = Path(args[0]).expanduser()
        fmt = Image.registered_extensions().get(path.suffix.lower(), "PNG")
        if fmt not in Image.SAVE:
            raise CommandError(f"unsupported image format: {path.suffix}")
        if fmt == "JPEG":
            image = image.convert("RGB")
        try:
            image.save(path, format=fmt)
        except (OSError, ValueError) as e:
            raise CommandError(f"cannot save {args[0]}: {e}") from e
        self.last_saved = str(path)
        log.info("image_saved", path=str(path))
        out(f"saved {args[0]}")

    def _cmd_status(self, args: list[str], out: LineSink) -> None:
        if self.image is None:
            out("image: none")
        else:
            out(f"image: {self.image.width}x{self.image.height}")
        out(f"color: {self.color}")
        out(f"width: {self.width}")
        if self.palette:
            out(f"palette: {', '.join(self.palette)}")
        out(f"saved: {self.last_saved or '-'}")


COMMANDS: dict[str, _Command] = {
    "help": _Command(ImageSession._cmd_help, "help", "list commands"),
    "capture": _Command(
        ImageSession._cmd_capture, "capture screen|region X Y W H", "take a screenshot"
    ),
    "screenshot": _Command(ImageSession._cmd_capture, "screenshot", "capture full screen"),
    "new": _Command(ImageSession._cmd_new, "new [W H]", "start a blank canvas"),
    "open": _Command(ImageSession._cmd_open, "open FILE", "load an image"),
    "color": _Command(ImageSession._cmd_color, "color NAME|#RRGGBB", "set stroke colour"),
    "width": _Command(ImageSession._cmd_width, "width N", "set stroke width"),
    "line": _Command(ImageSession._cmd_line, "line X0 Y0 X1 Y1", "draw line"),
    "arrow": _Command(ImageSession._cmd_arrow, "arrow X0 Y0 X1 Y1", "draw arrow"),
    "rect": _Command(ImageSession._cmd_rect, "rect X0 Y0 X1 Y1", "draw rectangle"),
    "circle": _Command(ImageSession._cmd_circle, "circle X Y R", "draw circle"),
    "crop": _Command(ImageSession._cmd_crop, "crop X0 Y0 X1 Y1", "crop image"),
    "save": _Command(ImageSession._cmd_save, "save FILE", "save image"),
    "status": _Command(ImageSession._cmd_status, "status", "show session state"),
}
