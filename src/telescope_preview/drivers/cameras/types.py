"""Shared types for monochrome sensor drivers.

Enums:
    SensorProperty: Named device properties read and written as floats
    PixelFormat: Sample layout delivered by the sensor
    ShutterType: Sensor shutter mode

Dataclasses:
    FrameFormat: Region, sample format, binning and subsampling
    SnapshotSettings: Everything a device needs to start streaming

Exceptions:
    DeviceError: Any failure reported by a sensor driver
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum

__all__ = [
    "DEFAULT_EXPOSURE_MS",
    "DEFAULT_GAIN",
    "DeviceError",
    "FrameFormat",
    "PROCESSING_PROPERTIES",
    "PixelFormat",
    "SensorProperty",
    "ShutterType",
    "SnapshotSettings",
]

# Defaults applied by a freshly opened session
DEFAULT_EXPOSURE_MS = 1000.0
DEFAULT_GAIN = 4.0


class DeviceError(RuntimeError):
    """Raised by a sensor driver when a device call fails.

    Covers disconnection mid-stream, SDK error codes and timeouts. Higher
    layers treat every ``DeviceError`` the same way: the handle is no longer
    trusted and is closed.
    """


class SensorProperty(str, Enum):
    """Device properties exchanged as floats."""

    MAX_WIDTH = "max_width"
    MAX_HEIGHT = "max_height"
    GAMMA = "gamma"
    DIGITAL_GAIN = "digital_gain"
    CONTRAST = "contrast"
    BRIGHTNESS = "brightness"


#: Processing properties reset to unity when a session opens, so the raw
#: frames carry sensor data and not the SDK's image pipeline.
PROCESSING_PROPERTIES: tuple[SensorProperty, ...] = (
    SensorProperty.GAMMA,
    SensorProperty.DIGITAL_GAIN,
    SensorProperty.CONTRAST,
    SensorProperty.BRIGHTNESS,
)


class PixelFormat(Enum):
    """Sample layout of captured frames."""

    MONO16 = "mono16"  # one unsigned 16-bit sample per pixel


class ShutterType(Enum):
    """Shutter mode requested when streaming starts."""

    GLOBAL = "global"
    ROLLING = "rolling"


@dataclass(frozen=True, slots=True)
class FrameFormat:
    """Geometry and sample format of streamed frames.

    Attributes:
        width: Frame width in pixels.
        height: Frame height in pixels.
        pixel_format: Sample layout, always MONO16.
        binning_x: Horizontal binning factor (1 = none).
        binning_y: Vertical binning factor.
        subsample_x: Horizontal subsampling factor (1 = none).
        subsample_y: Vertical subsampling factor.
        flags: Driver specific flip/mirror flags, 0 for none.
    """

    width: int
    height: int
    pixel_format: PixelFormat = PixelFormat.MONO16
    binning_x: int = 1
    binning_y: int = 1
    subsample_x: int = 1
    subsample_y: int = 1
    flags: int = 0

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Frame size must be positive, got {self.width}x{self.height}"
            )

    @property
    def shape(self) -> tuple[int, int]:
        """numpy shape ``(height, width)`` of a raw frame."""
        return (self.height, self.width)


@dataclass(frozen=True, slots=True)
class SnapshotSettings:
    """Streaming configuration handed to ``SensorDevice.start_streaming``.

    Attributes:
        format: Frame geometry, full sensor resolution by default.
        exposure_ms: Exposure time in milliseconds.
        gain: Analog gain.
        exposure_delay_ms: Delay between trigger and exposure start.
        strobe_delay_ms: Strobe output delay.
        shutter: Shutter mode.
        timeout_ms: Capture timeout, -1 blocks until a frame arrives.
        use_hw_trigger: Wait for a hardware trigger instead of free running.
        gain_red: Per-channel gain, unity for monochrome sensors.
        gain_green1: Per-channel gain.
        gain_green2: Per-channel gain.
        gain_blue: Per-channel gain.
    """

    format: FrameFormat
    exposure_ms: float = DEFAULT_EXPOSURE_MS
    gain: float = DEFAULT_GAIN
    exposure_delay_ms: float = 0.0
    strobe_delay_ms: float = 0.1
    shutter: ShutterType = ShutterType.GLOBAL
    timeout_ms: int = -1
    use_hw_trigger: bool = False
    gain_red: float = 1.0
    gain_green1: float = 1.0
    gain_green2: float = 1.0
    gain_blue: float = 1.0

    def __post_init__(self) -> None:
        if not math.isfinite(self.exposure_ms) or self.exposure_ms <= 0:
            raise ValueError(f"exposure_ms must be > 0, got {self.exposure_ms}")
        if not math.isfinite(self.gain) or self.gain < 0:
            raise ValueError(f"gain must be >= 0, got {self.gain}")

    def with_exposure(self, exposure_ms: float) -> SnapshotSettings:
        """Return a copy with a different exposure."""
        return replace(self, exposure_ms=exposure_ms)

    def with_gain(self, gain: float) -> SnapshotSettings:
        """Return a copy with a different gain."""
        return replace(self, gain=gain)
