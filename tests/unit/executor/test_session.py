"""Unit tests for the Pillow image session executor."""

from pathlib import Path
from typing import List, Optional

import pytest
from PIL import Image

from shineyshot.core.config import ExecutorConfig
from shineyshot.core.exceptions import CommandError
from shineyshot.executor import COMMANDS, ImageSession
from shineyshot.protocols import ExecutorProtocol


class Output:
    def __init__(self) -> None:
        self.out: List[str] = []
        self.err: List[str] = []

    def run(self, session: ImageSession, command: str) -> bool:
        return session.execute(command, self.out.append, self.err.append)


class FakeScreen:
    """Capture backend returning a solid image and recording boxes."""

    def __init__(self, size=(64, 48)) -> None:
        self.size = size
        self.boxes: List[Optional[tuple]] = []

    def __call__(self, bbox=None) -> Image.Image:
        self.boxes.append(bbox)
        if bbox is None:
            return Image.new("RGB", self.size, "blue")
        return Image.new("RGB", (bbox[2] - bbox[0], bbox[3] - bbox[1]), "blue")


@pytest.fixture
def screen() -> FakeScreen:
    return FakeScreen()


@pytest.fixture
def session(screen: FakeScreen) -> ImageSession:
    return ImageSession(capture=screen)


@pytest.fixture
def io() -> Output:
    return Output()


class TestProtocolConformance:
    def test_is_executor(self, session: ImageSession) -> None:
        assert isinstance(session, ExecutorProtocol)

    def test_from_config(self) -> None:
        cfg = ExecutorConfig(color="green", width=5, canvas_width=10, canvas_height=20)
        session = ImageSession.from_config(cfg)
        assert session.color == "green"
        assert session.width == 5
        assert session.canvas_size == (10, 20)
        assert session.palette == cfg.palette


class TestDispatch:
    """Command table dispatch."""

    def test_blank_line_is_noop(self, session: ImageSession, io: Output) -> None:
        assert io.run(session, "   ") is False
        assert io.out == []

    def test_unknown_command(self, session: ImageSession, io: Output) -> None:
        with pytest.raises(CommandError, match="unknown command: frobnicate"):
            io.run(session, "frobnicate now")

    @pytest.mark.parametrize("command", ["quit", "exit", "QUIT"])
    def test_end_session(self, session: ImageSession, io: Output, command: str) -> None:
        assert io.run(session, command) is True

    def test_help_lists_commands(self, session: ImageSession, io: Output) -> None:
        io.run(session, "help")
        assert io.out[0] == "Commands:"
        text = "\n".join(io.out)
        for name in COMMANDS:
            assert COMMANDS[name].usage in text

    def test_unbalanced_quotes(self, session: ImageSession, io: Output) -> None:
        with pytest.raises(CommandError, match="cannot parse"):
            io.run(session, 'save "unterminated')


class TestCapture:
    """Screen capture."""

    def test_capture_screen(self, session: ImageSession, io: Output, screen: FakeScreen) -> None:
        io.run(session, "capture screen")
        assert io.out == ["captured screenshot"]
        assert screen.boxes == [None]
        assert session.image is not None
        assert session.image.size == (64, 48)
        assert session.image.mode == "RGBA"

    def test_screenshot_alias(self, session: ImageSession, io: Output) -> None:
        io.run(session, "screenshot")
        assert io.out == ["captured screenshot"]

    def test_capture_region(self, session: ImageSession, io: Output, screen: FakeScreen) -> None:
        io.run(session, "capture region 10 20 30 40")
        assert screen.boxes == [(10, 20, 40, 60)]
        assert session.image.size == (30, 40)

    @pytest.mark.parametrize(
        "command",
        ["capture region 1 2 3", "capture region 1 2 0 4", "capture window", "capture region a b c d"],
    )
    def test_capture_usage_errors(self, session: ImageSession, io: Output, command: str) -> None:
        with pytest.raises(CommandError):
            io.run(session, command)

    def test_capture_backend_failure(self, io: Output) -> None:
        def broken(bbox=None):
            raise OSError("X connection failed")

        with pytest.raises(CommandError, match="capture failed: X connection failed"):
            io.run(ImageSession(capture=broken), "capture screen")


class TestDrawing:
    """Drawing commands and state."""

    def test_requires_image(self, session: ImageSession, io: Output) -> None:
        with pytest.raises(CommandError, match="no image loaded"):
            io.run(session, "arrow 0 0 10 10")

    def test_new_canvas_default_size(self, session: ImageSession, io: Output) -> None:
        io.run(session, "new")
        assert io.out == ["new canvas 800x600"]
        assert session.image.size == (800, 600)

    def test_line_uses_color(self, session: ImageSession, io: Output) -> None:
        io.run(session, "new 20 20")
        io.run(session, "color #00ff00")
        io.run(session, "width 3")
        io.run(session, "line 0 10 19 10")
        assert io.out[-1] == "line drawn"
        assert session.image.getpixel((10, 10))[:3] == (0, 255, 0)

    def test_arrow_rect_circle(self, session: ImageSession, io: Output) -> None:
        io.run(session, "new 100 100")
        io.run(session, "arrow 10 10 90 90")
        io.run(session, "rect 80 80 20 20")
        io.run(session, "circle 50 50 10")
        assert io.out[1:] == ["arrow drawn", "rectangle drawn", "circle drawn"]
        assert session.image.getpixel((50, 50))[:3] == (255, 0, 0)

    def test_invalid_number(self, session: ImageSession, io: Output) -> None:
        io.run(session, "new 10 10")
        with pytest.raises(CommandError, match="invalid number 'x'"):
            io.run(session, "line 0 0 x 1")

    def test_wrong_arity(self, session: ImageSession, io: Output) -> None:
        io.run(session, "new 10 10")
        with pytest.raises(CommandError, match="usage: line X0 Y0 X1 Y1"):
            io.run(session, "line 0 0")

    def test_unknown_color(self, session: ImageSession, io: Output) -> None:
        with pytest.raises(CommandError, match="unknown color: nocolor"):
            io.run(session, "color nocolor")
        assert session.color == "red"

    def test_palette_index(self, io: Output) -> None:
        session = ImageSession(palette=["red", "green"])
        io.run(session, "color 1")
        assert session.color == "green"
        with pytest.raises(CommandError, match="out of range"):
            io.run(session, "color 5")

    def test_width_must_be_positive(self, session: ImageSession, io: Output) -> None:
        with pytest.raises(CommandError):
            io.run(session, "width 0")

    def test_crop(self, session: ImageSession, io: Output) -> None:
        io.run(session, "new 100 50")
        io.run(session, "crop 60 40 10 0")
        assert io.out[-1] == "cropped"
        assert session.image.size == (50, 40)

    def test_empty_crop_rejected(self, session: ImageSession, io: Output) -> None:
        io.run(session, "new 10 10")
        with pytest.raises(CommandError, match="empty"):
            io.run(session, "crop 5 0 5 10")


class TestFiles:
    """open/save/status."""

    def test_save_and_open(self, session: ImageSession, io: Output, tmp_path: Path) -> None:
        target = tmp_path / "shot.png"
        io.run(session, "new 30 20")
        io.run(session, f"save {target}")
        assert io.out[-1] == f"saved {target}"
        assert session.last_saved == str(target)
        with Image.open(target) as img:
            assert img.size == (30, 20)

        fresh = ImageSession()
        io.run(fresh, f"open {target}")
        assert io.out[-1] == f"opened {target}"
        assert fresh.image.size == (30, 20)

    def test_save_jpeg(self, session: ImageSession, io: Output, tmp_path: Path) -> None:
        io.run(session, "new 8 8")
        io.run(session, f"save {tmp_path / 'shot.jpg'}")
        with Image.open(tmp_path / "shot.jpg") as img:
            assert img.format == "JPEG"

    def test_save_quoted_path_with_space(
        self, session: ImageSession, io: Output, tmp_path: Path
    ) -> None:
        target = tmp_path / "my shot.png"
        io.run(session, "new 8 8")
        io.run(session, f'save "{target}"')
        assert target.exists()

    def test_save_without_image(self, session: ImageSession, io: Output, tmp_path: Path) -> None:
        with pytest.raises(CommandError, match="no image loaded"):
            io.run(session, f"save {tmp_path / 'x.png'}")

    def test_save_to_missing_directory(
        self, session: ImageSession, io: Output, tmp_path: Path
    ) -> None:
        io.run(session, "new 8 8")
        with pytest.raises(CommandError, match="cannot save"):
            io.run(session, f"save {tmp_path / 'missing' / 'x.png'}")

    def test_open_missing_file(self, session: ImageSession, io: Output, tmp_path: Path) -> None:
        with pytest.raises(CommandError, match="cannot open"):
            io.run(session, f"open {tmp_path / 'nope.png'}")

    def test_status(self, session: ImageSession, io: Output) -> None:
        io.run(session, "status")
        assert io.out[0] == "image: none"
        io.out.clear()
        io.run(session, "new 4 5")
        io.run(session, "status")
        assert "image: 4x5" in io.out
        assert "color: red" in io.out
        assert "width: 2" in io.out
        assert "saved: -" in io.out
