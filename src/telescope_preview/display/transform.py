"""Raw frame to preview raster transform.

Maps a raw ``uint16`` frame to an 8-bit grayscale-as-RGB preview using one of
two mutually exclusive intensity modes:

- LINEAR: ``clamp(raw * gamma * 255 / 65535, 0, 255)``, truncated.
- STRETCH: blend of the max-normalized value and the sample's empirical
  cumulative rank within the frame, ``linear * (1 - a) + rank * a``.

Intensity mapping always uses the whole frame's statistics. An optional zoom
then keeps only the centered ``2r x 2r`` square of the mapped raster. The raw
frame is never modified.

Example:
    config = RenderConfig().with_stretch(0.5)
    preview = render_preview(raw_frame, config)
    preview.pixels.shape  # (height, width, 3)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "DEFAULT_STRETCH",
    "DEFAULT_ZOOM_RADIUS",
    "IntensityMode",
    "PreviewRaster",
    "RenderConfig",
    "render_preview",
    "scale_intensity",
    "stretch_intensity",
]

#: Stretch amount used when stretch is toggled on without an amount.
DEFAULT_STRETCH = 0.5

#: Zoom radius used when zoom is toggled on without a radius.
DEFAULT_ZOOM_RADIUS = 80

_RAW_MAX = 65535.0
_PREVIEW_MAX = 255.0


class IntensityMode(Enum):
    """How raw intensities are mapped to 8-bit preview values."""

    LINEAR = "linear"
    STRETCH = "stretch"


@dataclass(frozen=True, slots=True)
class RenderConfig:
    """Preview rendering settings.

    Attributes:
        mode: Intensity mapping mode.
        gamma: Multiplier applied in LINEAR mode, > 0.
        stretch: Auto-stretch blend amount in STRETCH mode, 0..1.
        zoom_radius: Half side of the centered crop in raw pixels, 0 = off.
        crosshair: Draw a crosshair through the centre of the preview.
    """

    mode: IntensityMode = IntensityMode.LINEAR
    gamma: float = 1.0
    stretch: float = DEFAULT_STRETCH
    zoom_radius: int = 0
    crosshair: bool = False

    def __post_init__(self) -> None:
        if not math.isfinite(self.gamma) or self.gamma <= 0:
            raise ValueError(f"gamma must be > 0, got {self.gamma}")
        if not 0.0 <= self.stretch <= 1.0:
            raise ValueError(f"stretch must be within [0, 1], got {self.stretch}")
        if self.zoom_radius < 0:
            raise ValueError(f"zoom_radius must be >= 0, got {self.zoom_radius}")

    @property
    def stretch_amount(self) -> float:
        """Effective stretch amount, 0 outside STRETCH mode."""
        return self.stretch if self.mode is IntensityMode.STRETCH else 0.0

    def with_gamma(self, gamma: float) -> RenderConfig:
        """Switch to LINEAR mode with ``gamma``."""
        return replace(self, mode=IntensityMode.LINEAR, gamma=gamma)

    def with_stretch(self, amount: float) -> RenderConfig:
        """Switch to STRETCH mode with ``amount``."""
        return replace(self, mode=IntensityMode.STRETCH, stretch=amount)

    def without_stretch(self) -> RenderConfig:
        """Switch back to LINEAR mode, keeping the gamma multiplier."""
        return replace(self, mode=IntensityMode.LINEAR)

    def with_zoom(self, radius: int) -> RenderConfig:
        """Set the zoom radius, 0 to disable."""
        return replace(self, zoom_radius=radius)

    def with_crosshair(self, enabled: bool) -> RenderConfig:
        """Enable or disable the crosshair."""
        return replace(self, crosshair=enabled)


@dataclass(frozen=True, slots=True)
class PreviewRaster:
    """Display-ready preview.

    Attributes:
        pixels: ``uint8`` array ``(height, width, 3)``, all channels equal.
        zoomed: True when ``pixels`` is a zoom crop, which disables the
            unscaled fit when painting.
        crosshair: Paint a crosshair over this raster.
    """

    pixels: NDArray[np.uint8]
    zoomed: bool = False
    crosshair: bool = False

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])


def scale_intensity(frame: NDArray[np.uint16], gamma: float) -> NDArray[np.uint8]:
    """Linear 16 to 8 bit mapping with a gamma multiplier.

    Computes ``raw * gamma * 255 / 65535`` left to right in float64, clamps to
    [0, 255] and truncates toward zero. With ``gamma == 1`` every product is
    exact, so 65535 maps to 255 and the result equals integer division.

    Example:
        >>> scale_intensity(np.array([[0, 257, 65535]], dtype=np.uint16), 1.0)
        array([[  0,   1, 255]], dtype=uint8)
    """
    scaled = frame.astype(np.float64) * gamma * _PREVIEW_MAX / _RAW_MAX
    return np.clip(scaled, 0.0, _PREVIEW_MAX).astype(np.uint8)


def stretch_intensity(frame: NDArray[np.uint16], amount: float) -> NDArray[np.uint8]:
    """Histogram auto-stretch blended with max-normalized linear mapping.

    For each sample ``v`` in a frame of ``n`` samples with maximum ``m``:

    - ``rank = count(samples <= v) / n`` via binary search in a sorted copy
    - ``linear = v / m`` (0 for an all-black frame)
    - ``out = trunc(clamp(linear * (1 - amount) + rank * amount, 0, 1) * 255)``

    ``amount = 0`` is pure max-normalized linear output, ``amount = 1`` is
    full histogram equalization.

    Args:
        frame: Raw frame, any shape.
        amount: Blend amount within [0, 1].

    Raises:
        ValueError: If amount is outside [0, 1].
    """
    if not 0.0 <= amount <= 1.0:
        raise ValueError(f"amount must be within [0, 1], got {amount}")
    if frame.size == 0:
        return np.zeros(frame.shape, dtype=np.uint8)

    flat = frame.ravel()
    ordered = np.sort(flat)
    rank = np.searchsorted(ordered, flat, side="right") / flat.size

    peak = float(ordered[-1])
    if peak > 0:
        linear = flat.astype(np.float64) / peak
    else:
        linear = np.zeros(flat.shape, dtype=np.float64)

    blended = linear * (1.0 - amount) + rank * amount
    out = (np.clip(blended, 0.0, 1.0) * _PREVIEW_MAX).astype(np.uint8)
    return out.reshape(frame.shape)


def _zoom_crop(mapped: NDArray[np.uint8], radius: int) -> tuple[NDArray[np.uint8], bool]:
    """Return the centered ``2r x 2r`` crop, radius clamped to fit."""
    height, width = mapped.shape
    radius = min(radius, min(height, width) // 2)
    if radius <= 0:
        return mapped, False
    cy, cx = height // 2, width // 2
    return mapped[cy - radius : cy + radius, cx - radius : cx + radius], True


def render_preview(frame: NDArray[np.uint16], config: RenderConfig) -> PreviewRaster:
    """Map a raw frame to a preview raster.

    STRETCH mode with an amount of 0 renders like LINEAR mode.

    Args:
        frame: Raw ``(height, width)`` frame. Not modified.
        config: Rendering settings.

    Returns:
        New PreviewRaster; shares no memory with ``frame``.

    Raises:
        ValueError: If frame is not two-dimensional.
    """
    if frame.ndim != 2:
        raise ValueError(f"Expected a 2-D frame, got shape {frame.shape}")

    amount = config.stretch_amount
    if amount > 0:
        mapped = stretch_intensity(frame, amount)
    else:
        mapped = scale_intensity(frame, config.gamma)

    mapped, zoomed = _zoom_crop(mapped, config.zoom_radius)
    pixels = np.repeat(mapped[:, :, np.newaxis], 3, axis=2)
    return PreviewRaster(pixels=pixels, zoomed=zoomed, crosshair=config.crosshair)
