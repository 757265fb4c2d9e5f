"""Logical device layer - capture session, shared state and capture loop."""

from telescope_preview.devices.capture_loop import (
    DEFAULT_IDLE_DELAY_S,
    MAX_CONSECUTIVE_WRITE_FAILURES,
    CaptureLoop,
    Clock,
    LoopHooks,
    LoopState,
    SystemClock,
)
from telescope_preview.devices.capture_session import (
    CaptureError,
    CaptureFailed,
    CaptureOutcome,
    CaptureSession,
    DeviceOpenError,
    FrameCaptured,
    SessionClosedError,
)
from telescope_preview.devices.state import (
    ExposureState,
    SaveRequest,
    SessionState,
)

__all__ = [
    # Session
    "CaptureError",
    "CaptureFailed",
    "CaptureOutcome",
    "CaptureSession",
    "DeviceOpenError",
    "FrameCaptured",
    "SessionClosedError",
    # State
    "ExposureState",
    "SaveRequest",
    "SessionState",
    # Loop
    "DEFAULT_IDLE_DELAY_S",
    "MAX_CONSECUTIVE_WRITE_FAILURES",
    "CaptureLoop",
    "Clock",
    "LoopHooks",
    "LoopState",
    "SystemClock",
]
