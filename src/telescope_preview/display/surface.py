"""Thread-safe preview surface.

The capture thread publishes each new preview with :meth:`DisplaySurface.replace`;
the window thread renders it with :meth:`DisplaySurface.paint`. Both touch
the single owned pixel buffer only while holding the surface lock, so a paint
never observes a half-copied frame. ``replace`` never paints: it only asks
the windowing side to repaint through the ``schedule_repaint`` callback.

Fit rule for ``paint(size)``:

- Destination at least the native size on both axes and no zoom: draw the
  raster unscaled.
- Otherwise scale to the limiting axis, preserving aspect ratio.

The drawn image is centered and the margins are black. The crosshair, when
enabled, runs through the centre of the drawn image.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from telescope_preview.display.transform import PreviewRaster

__all__ = ["CROSSHAIR_COLOR", "DisplaySurface", "fit_size"]

#: Crosshair colour, BGR red.
CROSSHAIR_COLOR = (0, 0, 255)


def fit_size(
    native: tuple[int, int], dest: tuple[int, int], zoomed: bool
) -> tuple[int, int]:
    """Return the ``(width, height)`` the native raster is drawn at.

    Example:
        >>> fit_size((640, 480), (800, 800), zoomed=False)
        (640, 480)
        >>> fit_size((640, 480), (320, 400), zoomed=False)
        (320, 240)
    """
    w, h = native
    dest_w, dest_h = dest
    if dest_w >= w and dest_h >= h and not zoomed:
        return w, h
    height = min(dest_h, dest_w * h // w)
    width = height * w // h
    return width, height


class DisplaySurface:
    """Owner of the preview pixel buffer.

    Args:
        schedule_repaint: Called (outside the lock) after every ``replace``.
            Must only schedule work on the windowing thread, never paint.
    """

    def __init__(self, schedule_repaint: Callable[[], None] | None = None) -> None:
        self._lock = threading.Lock()
        self._pixels: NDArray[np.uint8] | None = None
        self._zoomed = False
        self._crosshair = False
        self._frames = 0
        self._schedule_repaint = schedule_repaint

    def set_repaint_callback(self, schedule_repaint: Callable[[], None] | None) -> None:
        """Install (or remove, with None) the repaint callback."""
        self._schedule_repaint = schedule_repaint

    @property
    def frames_published(self) -> int:
        """Number of previews received."""
        with self._lock:
            return self._frames

    @property
    def native_size(self) -> tuple[int, int] | None:
        """``(width, height)`` of the current preview, None before the first."""
        with self._lock:
            if self._pixels is None:
                return None
            return int(self._pixels.shape[1]), int(self._pixels.shape[0])

    def replace(self, preview: PreviewRaster) -> None:
        """Copy ``preview`` into the owned buffer and request a repaint.

        The buffer is reallocated only when the preview shape changes
        (e.g. zoom toggled); otherwise pixels are copied in place.
        """
        pixels = preview.pixels
        with self._lock:
            if self._pixels is None or self._pixels.shape != pixels.shape:
                self._pixels = np.empty_like(pixels)
            np.copyto(self._pixels, pixels)
            self._zoomed = preview.zoomed
            self._crosshair = preview.crosshair
            self._frames += 1

        callback = self._schedule_repaint
        if callback is not None:
            callback()

    def paint(self, size: tuple[int, int] | None = None) -> NDArray[np.uint8]:
        """Render the current preview letterboxed into a ``size`` canvas.

        Args:
            size: Destination ``(width, height)``. None paints at the
                preview's native size.

        Returns:
            BGR ``uint8`` canvas of shape ``(height, width, 3)``. All black
            before the first frame or when the fitted image is empty.
        """
        with self._lock:
            if self._pixels is None:
                width, height = size if size is not None else (0, 0)
                return np.zeros((max(height, 0), max(width, 0), 3), dtype=np.uint8)

            native_h, native_w = self._pixels.shape[:2]
            dest_w, dest_h = size if size is not None else (native_w, native_h)
            canvas = np.zeros((max(dest_h, 0), max(dest_w, 0), 3), dtype=np.uint8)
            draw_w, draw_h = fit_size((native_w, native_h), (dest_w, dest_h), self._zoomed)
            if draw_w <= 0 or draw_h <= 0:
                return canvas

            x0 = (dest_w - draw_w) // 2
            y0 = (dest_h - draw_h) // 2
            target = canvas[y0 : y0 + draw_h, x0 : x0 + draw_w]
            if (draw_w, draw_h) == (native_w, native_h):
                np.copyto(target, self._pixels)
            else:
                interpolation = cv2.INTER_AREA if draw_w < native_w else cv2.INTER_LINEAR
                target[...] = cv2.resize(
                    self._pixels, (draw_w, draw_h), interpolation=interpolation
                )
            crosshair = self._crosshair

        if crosshair:
            cx = x0 + draw_w // 2
            cy = y0 + draw_h // 2
            cv2.line(canvas, (cx, y0), (cx, y0 + draw_h - 1), CROSSHAIR_COLOR, 1)
            cv2.line(canvas, (x0, cy), (x0 + draw_w - 1, cy), CROSSHAIR_COLOR, 1)
        return canvas
