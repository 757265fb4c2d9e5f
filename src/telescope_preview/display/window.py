"""OpenCV HighGUI preview window.

The window owns its own daemon thread; every HighGUI call happens on that
thread. The capture thread only calls :meth:`PreviewWindow.request_repaint`,
which sets an event. The window thread wakes on the event (or a short poll
timeout so window events keep being pumped), paints the surface at the
window's current client size and shows the canvas.

HighGUI is reached through the :class:`HighGui` protocol so tests can drive
the window without a display.

Example:
    surface = DisplaySurface()
    window = PreviewWindow(surface)
    window.start()          # installs itself as the surface's repaint callback
    ...
    window.stop()
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from telescope_preview.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from telescope_preview.display.surface import DisplaySurface

logger = get_logger(__name__)

__all__ = ["CV2HighGui", "HighGui", "PreviewWindow"]

DEFAULT_TITLE = "Telescope"

# Seconds the window thread waits for a repaint request before pumping events
_POLL_INTERVAL_S = 0.05


@runtime_checkable
class HighGui(Protocol):  # pragma: no cover
    """Subset of OpenCV HighGUI used by the preview window."""

    def named_window(self, title: str) -> None:
        """Create a resizable window."""
        ...

    def resize_window(self, title: str, width: int, height: int) -> None:
        """Set the window's client size."""
        ...

    def window_size(self, title: str) -> tuple[int, int] | None:
        """Return the client ``(width, height)``, None if unknown."""
        ...

    def show(self, title: str, image: NDArray[Any]) -> None:
        """Display a BGR image."""
        ...

    def wait_key(self, delay_ms: int) -> int:
        """Pump window events for up to ``delay_ms``."""
        ...

    def is_visible(self, title: str) -> bool:
        """False once the user has closed the window."""
        ...

    def destroy_window(self, title: str) -> None:
        """Destroy the window."""
        ...


class CV2HighGui(HighGui):
    """HighGui backed by cv2. cv2 is imported on instantiation."""

    def __init__(self) -> None:
        import cv2

        self._cv2 = cv2

    def named_window(self, title: str) -> None:
        self._cv2.namedWindow(title, self._cv2.WINDOW_NORMAL)

    def resize_window(self, title: str, width: int, height: int) -> None:
        self._cv2.resizeWindow(title, width, height)

    def window_size(self, title: str) -> tuple[int, int] | None:
        _x, _y, width, height = self._cv2.getWindowImageRect(title)
        if width <= 0 or height <= 0:
            return None
        return int(width), int(height)

    def show(self, title: str, image: NDArray[Any]) -> None:
        self._cv2.imshow(title, image)

    def wait_key(self, delay_ms: int) -> int:
        return int(self._cv2.waitKey(delay_ms))

    def is_visible(self, title: str) -> bool:
        try:
            return bool(self._cv2.getWindowProperty(title, self._cv2.WND_PROP_VISIBLE) >= 1)
        except self._cv2.error:
            return False

    def destroy_window(self, title: str) -> None:
        try:
            self._cv2.destroyWindow(title)
        except self._cv2.error:
            logger.debug("Window already destroyed", title=title)


class PreviewWindow:
    """Windowing collaborator that repaints a DisplaySurface on demand.

    Args:
        surface: Surface to paint.
        highgui: HighGUI implementation, CV2HighGui when None.
        title: Window title.
        poll_interval_s: Longest wait for a repaint request between event
            pumps.
    """

    def __init__(
        self,
        surface: DisplaySurface,
        highgui: HighGui | None = None,
        title: str = DEFAULT_TITLE,
        poll_interval_s: float = _POLL_INTERVAL_S,
    ) -> None:
        self._surface = surface
        self._highgui = highgui
        self._title = title
        self._poll_interval_s = poll_interval_s
        self._repaint = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._repaints = 0

    @property
    def title(self) -> str:
        return self._title

    @property
    def is_running(self) -> bool:
        """True while the window thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def repaints(self) -> int:
        """Number of canvases shown."""
        return self._repaints

    def request_repaint(self) -> None:
        """Ask the window thread to repaint. Safe from any thread."""
        self._repaint.set()

    def start(self) -> None:
        """Install the repaint callback and start the window thread.

        Raises:
            RuntimeError: If already running.
        """
        if self.is_running:
            raise RuntimeError("Preview window already running")
        self._stop.clear()
        self._surface.set_repaint_callback(self.request_repaint)
        self._thread = threading.Thread(
            target=self._run, name="telescope-window", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = 2.0) -> None:
        """Stop the window thread and wait for it to exit."""
        self._stop.set()
        self._repaint.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self) -> None:
        highgui = self._highgui if self._highgui is not None else CV2HighGui()
        self._highgui = highgui
        highgui.named_window(self._title)
        logger.info("Preview window opened", title=self._title)
        sized = False
        shown = False
        try:
            while not self._stop.is_set():
                if self._repaint.wait(self._poll_interval_s):
                    self._repaint.clear()
                    if self._stop.is_set():
                        break
                    native = self._surface.native_size
                    if native is not None:
                        if not sized:
                            highgui.resize_window(self._title, *native)
                            sized = True
                        size = highgui.window_size(self._title) or native
                        highgui.show(self._title, self._surface.paint(size))
                        self._repaints += 1
                        shown = True
                highgui.wait_key(1)
                if shown and not highgui.is_visible(self._title):
                    logger.info("Preview window closed by user", title=self._title)
                    break
        finally:
            self._surface.set_repaint_callback(None)
            highgui.destroy_window(self._title)
            logger.info("Preview window stopped", title=self._title)
