"""Capture session: one opened sensor and its streaming configuration.

A session owns the device handle, the raw frame buffer and the exposure/gain
configuration. Setters only record the new value and mark the configuration
dirty; the next ``capture_frame`` performs a stop-then-start streaming cycle
with the accumulated settings before capturing. While nothing changes, frames
are captured back to back with no device reconfiguration.

``capture_frame`` never raises for device failures. It returns either
:class:`FrameCaptured` or :class:`CaptureFailed`, and the caller decides what a
failure means (the capture loop drops the session).

Example:
    session = CaptureSession.open(driver, device_id=0)
    session.set_exposure_seconds(0.5)
    outcome = session.capture_frame()
    if isinstance(outcome, FrameCaptured):
        preview = render_preview(outcome.frame, config)
    session.close()
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from types import TracebackType
from typing import TYPE_CHECKING

import numpy as np

from telescope_preview.drivers.cameras.types import (
    DEFAULT_EXPOSURE_MS,
    DEFAULT_GAIN,
    PROCESSING_PROPERTIES,
    DeviceError,
    FrameFormat,
    SensorProperty,
    SnapshotSettings,
)
from telescope_preview.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from telescope_preview.drivers.cameras import SensorDevice, SensorDriver

logger = get_logger(__name__)

__all__ = [
    "CaptureError",
    "CaptureFailed",
    "CaptureOutcome",
    "CaptureSession",
    "DeviceOpenError",
    "FrameCaptured",
    "SessionClosedError",
]


# --- Exceptions ---


class DeviceOpenError(Exception):
    """Raised when a session cannot be opened on a device."""

    def __init__(self, device_id: int, reason: str) -> None:
        super().__init__(f"Cannot open camera {device_id}: {reason}")
        self.device_id = device_id
        self.reason = reason


class CaptureError(Exception):
    """A capture attempt failed. Carried in CaptureFailed, not raised."""


class SessionClosedError(CaptureError):
    """Capture attempted on a session that has been closed."""


# --- Capture outcomes ---


@dataclass(frozen=True, slots=True)
class FrameCaptured:
    """Successful capture.

    Attributes:
        frame: The session's raw ``uint16`` buffer. Overwritten in place by
            the next capture; copy it to keep it.
        reconfigured: True if streaming was reconfigured before this frame.
    """

    frame: NDArray[np.uint16]
    reconfigured: bool = False


@dataclass(frozen=True, slots=True)
class CaptureFailed:
    """Failed capture; ``error.__cause__`` holds the device exception."""

    error: CaptureError


CaptureOutcome = FrameCaptured | CaptureFailed


# --- Session ---


class CaptureSession:
    """Opened sensor with lazily applied exposure and gain.

    Use :meth:`open` rather than the constructor. Sessions are single-use:
    once closed every capture returns ``CaptureFailed(SessionClosedError)``.

    Thread Safety:
        ``capture_frame`` and the setters are called from the capture thread
        only. ``close`` may be called from any thread, any number of times;
        the device handle is released exactly once.
    """

    def __init__(
        self,
        device: SensorDevice,
        device_id: int,
        frame_format: FrameFormat,
        frame_rate: float = 0.0,
    ) -> None:
        self._device = device
        self._device_id = device_id
        self._format = frame_format
        self._frame_rate = frame_rate
        self._frame: NDArray[np.uint16] = np.zeros(frame_format.shape, dtype=np.uint16)
        self._exposure_seconds = DEFAULT_EXPOSURE_MS / 1000.0
        self._gain = DEFAULT_GAIN
        # Streaming has not been started yet
        self._dirty = True
        self._closed = False
        self._close_lock = threading.Lock()

    @classmethod
    def open(cls, driver: SensorDriver, device_id: int) -> CaptureSession:
        """Open ``device_id`` and prepare it for streaming.

        Negotiates the minimum frame rate, reads the full sensor size for the
        frame buffer and resets the SDK's processing properties (gamma,
        digital gain, contrast, brightness) to unity. If any step fails the
        device is closed before the error is raised.

        Raises:
            DeviceOpenError: If no such device exists or setup fails.
        """
        try:
            device = driver.open(device_id)
        except DeviceError as e:
            raise DeviceOpenError(device_id, str(e)) from e
        if device is None:
            raise DeviceOpenError(device_id, "no such camera")

        try:
            frame_rate = device.negotiate_frame_rate(minimum=True)
            width = int(device.get_property(SensorProperty.MAX_WIDTH))
            height = int(device.get_property(SensorProperty.MAX_HEIGHT))
            for prop in PROCESSING_PROPERTIES:
                device.set_property(prop, 1.0)
            frame_format = FrameFormat(width=width, height=height)
        except (DeviceError, ValueError) as e:
            device.close()
            raise DeviceOpenError(device_id, str(e)) from e

        logger.info(
            "Camera connected",
            device_id=device_id,
            width=width,
            height=height,
            frame_rate=frame_rate,
        )
        return cls(device, device_id, frame_format, frame_rate)

    def __repr__(self) -> str:
        return (
            f"CaptureSession(device_id={self._device_id}, "
            f"{self._format.width}x{self._format.height}, "
            f"exposure={self._exposure_seconds}s, gain={self._gain}, "
            f"closed={self._closed})"
        )

    # --- Properties ---

    @property
    def device_id(self) -> int:
        return self._device_id

    @property
    def width(self) -> int:
        return self._format.width

    @property
    def height(self) -> int:
        return self._format.height

    @property
    def frame(self) -> NDArray[np.uint16]:
        """Raw frame buffer, fixed shape ``(height, width)`` for the session."""
        return self._frame

    @property
    def frame_rate(self) -> float:
        """Rate selected when the session opened."""
        return self._frame_rate

    @property
    def exposure_seconds(self) -> float:
        return self._exposure_seconds

    @property
    def gain(self) -> float:
        return self._gain

    @property
    def dirty(self) -> bool:
        """True when settings changed since streaming was last configured."""
        return self._dirty

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def settings(self) -> SnapshotSettings:
        """Streaming settings the next reconfiguration will apply."""
        return SnapshotSettings(
            format=self._format,
            exposure_ms=self._exposure_seconds * 1000.0,
            gain=self._gain,
        )

    # --- Configuration ---

    def set_gain(self, value: float) -> None:
        """Record a new gain; applied before the next capture.

        Raises:
            ValueError: If value is negative or not finite.
        """
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"gain must be >= 0, got {value}")
        self._gain = float(value)
        self._dirty = True

    def set_exposure_seconds(self, value: float) -> None:
        """Record a new exposure; applied before the next capture.

        Raises:
            ValueError: If value is not a finite positive number.
        """
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"exposure must be > 0 seconds, got {value}")
        self._exposure_seconds = float(value)
        self._dirty = True

    # --- Capture ---

    def _reconfigure(self) -> None:
        settings = self.settings
        self._device.stop_streaming()
        self._device.start_streaming(settings)
        self._dirty = False
        logger.debug(
            "Streaming reconfigured",
            device_id=self._device_id,
            exposure_ms=settings.exposure_ms,
            gain=settings.gain,
        )

    def capture_frame(self) -> CaptureOutcome:
        """Capture one frame into the session buffer.

        Reconfigures streaming first when dirty; the dirty flag is cleared
        only if reconfiguration succeeded. Blocks for the frame.

        Returns:
            FrameCaptured with the buffer, or CaptureFailed wrapping the
            device error. A closed session yields SessionClosedError.
        """
        if self._closed:
            return CaptureFailed(
                SessionClosedError(f"Session for camera {self._device_id} is closed")
            )

        reconfigured = False
        try:
            if self._dirty:
                self._reconfigure()
                reconfigured = True
            self._device.capture_frame(self._frame)
        except Exception as e:
            error: CaptureError
            if self._closed:
                error = SessionClosedError(
                    f"Session for camera {self._device_id} closed during capture"
                )
            else:
                error = CaptureError(str(e) or type(e).__name__)
            error.__cause__ = e
            return CaptureFailed(error)

        return FrameCaptured(self._frame, reconfigured)

    # --- Lifecycle ---

    def close(self) -> None:
        """Release the device. Idempotent and safe across threads.

        Device errors during close are logged, not raised.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        try:
            self._device.close()
        except Exception as e:
            logger.warning(
                "Error closing camera", device_id=self._device_id, error=str(e)
            )
            return
        logger.info("Camera session closed", device_id=self._device_id)

    def __enter__(self) -> CaptureSession:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
