"""Shared operator state between the command shell and the capture loop.

:class:`SessionState` holds everything the operator can change: the attached
camera session, exposure settings, the pending save request and the render
configuration. The shell mutates it through the setters below; the capture
loop reads immutable snapshots once per cycle, so a command issued mid-cycle
takes effect on the next cycle and never tears the current one.

Every field has a single writer path and every mutation happens under one
lock. The capture loop is the only caller of :meth:`SessionState.complete_save`
and :meth:`SessionState.detach_camera`; only ``request_save`` can increase the
remaining save count.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from telescope_preview.display.transform import RenderConfig

if TYPE_CHECKING:
    from telescope_preview.devices.capture_session import CaptureSession

__all__ = [
    "DEFAULT_EXPOSURE_SECONDS",
    "DEFAULT_GAIN",
    "ExposureState",
    "SaveRequest",
    "SessionState",
]

DEFAULT_EXPOSURE_SECONDS = 1.0
DEFAULT_GAIN = 4.0


def _check_exposure(name: str, value: float) -> float:
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"{name} must be > 0 seconds, got {value}")
    return float(value)


@dataclass(frozen=True, slots=True)
class ExposureState:
    """Exposure and gain requested by the operator.

    Attributes:
        live_exposure_s: Exposure used for the live preview.
        save_exposure_s: Exposure used while saving frames.
        gain: Sensor gain, applied in both modes.
    """

    live_exposure_s: float = DEFAULT_EXPOSURE_SECONDS
    save_exposure_s: float = DEFAULT_EXPOSURE_SECONDS
    gain: float = DEFAULT_GAIN

    def __post_init__(self) -> None:
        _check_exposure("live_exposure_s", self.live_exposure_s)
        _check_exposure("save_exposure_s", self.save_exposure_s)
        if not math.isfinite(self.gain) or self.gain < 0:
            raise ValueError(f"gain must be >= 0, got {self.gain}")

    def exposure_for(self, saving: bool) -> float:
        """Exposure for the current mode."""
        return self.save_exposure_s if saving else self.live_exposure_s


@dataclass(frozen=True, slots=True)
class SaveRequest:
    """Pending save run.

    Attributes:
        remaining: Frames still to save; 0 means not saving.
        directory: Sub-directory hint under the save root, None for the root.
    """

    remaining: int = 0
    directory: str | None = None

    def __post_init__(self) -> None:
        if self.remaining < 0:
            raise ValueError(f"remaining must be >= 0, got {self.remaining}")

    @property
    def active(self) -> bool:
        return self.remaining > 0


class SessionState:
    """Lock-guarded operator state.

    Example:
        state = SessionState()
        state.set_live_exposure(0.2)
        state.request_save(3)
        state.save.remaining  # 3
    """

    def __init__(
        self,
        exposure: ExposureState | None = None,
        render: RenderConfig | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._camera: CaptureSession | None = None
        self._exposure = exposure if exposure is not None else ExposureState()
        self._save = SaveRequest()
        self._render = render if render is not None else RenderConfig()

    # --- Snapshots ---

    @property
    def camera(self) -> CaptureSession | None:
        with self._lock:
            return self._camera

    @property
    def exposure(self) -> ExposureState:
        with self._lock:
            return self._exposure

    @property
    def save(self) -> SaveRequest:
        with self._lock:
            return self._save

    @property
    def render(self) -> RenderConfig:
        with self._lock:
            return self._render

    # --- Camera ---

    def attach_camera(self, session: CaptureSession) -> CaptureSession | None:
        """Make ``session`` current and return the session it replaced.

        The caller is responsible for closing the returned session.
        """
        with self._lock:
            previous = self._camera
            self._camera = session
        return previous

    def detach_camera(self, session: CaptureSession) -> bool:
        """Clear the camera if it is still ``session``.

        Returns:
            False when another session was attached in the meantime, which
            is then left in place.
        """
        with self._lock:
            if self._camera is not session:
                return False
            self._camera = None
            return True

    # --- Exposure ---

    def set_live_exposure(self, seconds: float) -> ExposureState:
        with self._lock:
            self._exposure = replace(self._exposure, live_exposure_s=seconds)
            return self._exposure

    def set_save_exposure(self, seconds: float) -> ExposureState:
        with self._lock:
            self._exposure = replace(self._exposure, save_exposure_s=seconds)
            return self._exposure

    def set_gain(self, gain: float) -> ExposureState:
        with self._lock:
            self._exposure = replace(self._exposure, gain=gain)
            return self._exposure

    # --- Save request ---

    def request_save(self, count: int) -> SaveRequest:
        """Reset the remaining count to ``count``, replacing any running save.

        Raises:
            ValueError: If count is not positive.
        """
        if count <= 0:
            raise ValueError(f"count must be > 0, got {count}")
        with self._lock:
            self._save = replace(self._save, remaining=count)
            return self._save

    def set_save_directory(self, directory: str | None) -> SaveRequest:
        """Set the save sub-directory; None or blank selects the root."""
        if directory is not None and not directory.strip():
            directory = None
        with self._lock:
            self._save = replace(self._save, directory=directory)
            return self._save

    def complete_save(self) -> int:
        """Count one saved frame and return how many remain (never below 0)."""
        with self._lock:
            remaining = max(self._save.remaining - 1, 0)
            self._save = replace(self._save, remaining=remaining)
            return remaining

    def cancel_save(self) -> None:
        with self._lock:
            self._save = replace(self._save, remaining=0)

    # --- Render ---

    def set_render(self, config: RenderConfig) -> RenderConfig:
        with self._lock:
            self._render = config
            return config

    def update_render(self, **changes: Any) -> RenderConfig:
        """Replace fields of the render config, validating the result."""
        with self._lock:
            self._render = replace(self._render, **changes)
            return self._render
