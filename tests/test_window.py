"""Tests for PreviewWindow driven through a fake HighGUI."""

from __future__ import annotations

import threading
import time
from typing import Any

import numpy as np
import pytest

from telescope_preview.display.surface import DisplaySurface
from telescope_preview.display.transform import PreviewRaster
from telescope_preview.display.window import HighGui, PreviewWindow
from tests.helpers import assert_implements_protocol


class FakeHighGui:
    """Records HighGUI calls; the "user" closes the window via ``visible``."""

    def __init__(self, client_size: tuple[int, int] | None = None) -> None:
        self.client_size = client_size
        self.visible = True
        self.created: list[str] = []
        self.resized: list[tuple[int, int]] = []
        self.shown: list[np.ndarray] = []
        self.destroyed: list[str] = []
        self.shown_event = threading.Event()

    def named_window(self, title: str) -> None:
        self.created.append(title)

    def resize_window(self, title: str, width: int, height: int) -> None:
        self.resized.append((width, height))

    def window_size(self, title: str) -> tuple[int, int] | None:
        return self.client_size

    def show(self, title: str, image: Any) -> None:
        self.shown.append(image.copy())
        self.shown_event.set()

    def wait_key(self, delay_ms: int) -> int:
        return -1

    def is_visible(self, title: str) -> bool:
        return self.visible

    def destroy_window(self, title: str) -> None:
        self.destroyed.append(title)


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def preview(width: int, height: int) -> PreviewRaster:
    return PreviewRaster(pixels=np.full((height, width, 3), 90, dtype=np.uint8))


@pytest.fixture
def highgui() -> FakeHighGui:
    return FakeHighGui()


@pytest.fixture
def window(surface: DisplaySurface, highgui: FakeHighGui):
    window = PreviewWindow(surface, highgui=highgui, title="Test", poll_interval_s=0.01)
    yield window
    window.stop()


def test_fake_implements_protocol() -> None:
    assert_implements_protocol(FakeHighGui(), HighGui)


def test_start_creates_window(window: PreviewWindow, highgui: FakeHighGui) -> None:
    window.start()
    assert wait_until(lambda: highgui.created == ["Test"])
    assert window.is_running is True
    with pytest.raises(RuntimeError, match="already running"):
        window.start()


def test_repaint_on_replace(
    window: PreviewWindow, surface: DisplaySurface, highgui: FakeHighGui
) -> None:
    window.start()
    surface.replace(preview(8, 6))

    assert highgui.shown_event.wait(5.0)
    assert highgui.resized == [(8, 6)]
    assert highgui.shown[0].shape == (6, 8, 3)
    assert window.repaints >= 1


def test_paints_at_client_size(surface: DisplaySurface) -> None:
    highgui = FakeHighGui(client_size=(16, 16))
    window = PreviewWindow(surface, highgui=highgui, poll_interval_s=0.01)
    window.start()
    try:
        surface.replace(preview(8, 6))
        assert highgui.shown_event.wait(5.0)
        assert highgui.shown[0].shape == (16, 16, 3)
    finally:
        window.stop()


def test_resized_to_native_only_once(
    window: PreviewWindow, surface: DisplaySurface, highgui: FakeHighGui
) -> None:
    window.start()
    surface.replace(preview(8, 6))
    assert highgui.shown_event.wait(5.0)
    highgui.shown_event.clear()
    surface.replace(preview(4, 4))
    assert highgui.shown_event.wait(5.0)
    assert highgui.resized == [(8, 6)]


def test_no_paint_before_first_frame(
    window: PreviewWindow, highgui: FakeHighGui
) -> None:
    window.start()
    window.request_repaint()
    time.sleep(0.05)
    assert highgui.shown == []


def test_stop_destroys_window_and_detaches(
    window: PreviewWindow, surface: DisplaySurface, highgui: FakeHighGui
) -> None:
    window.start()
    window.stop()
    assert window.is_running is False
    assert highgui.destroyed == ["Test"]
    # replace no longer reaches the stopped window
    surface.replace(preview(2, 2))
    assert highgui.shown == []


def test_user_close_ends_thread(
    window: PreviewWindow, surface: DisplaySurface, highgui: FakeHighGui
) -> None:
    window.start()
    surface.replace(preview(4, 4))
    assert highgui.shown_event.wait(5.0)

    highgui.visible = False

    assert wait_until(lambda: not window.is_running)
    assert highgui.destroyed == ["Test"]
