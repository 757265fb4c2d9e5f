"""Capture loop: the capture, save and render state machine.

One background thread runs :meth:`CaptureLoop.run_cycle` back to back. Each
cycle is fully sequential: capture, optionally save, render, publish. There
is no sleep while a camera is attached; the device's exposure paces the loop.

States:
    DISCONNECTED: No camera attached. The cycle sleeps for the idle delay.
    LIVE: Capturing with the live exposure.
    SAVING: Capturing with the save exposure and writing every frame.

Per cycle, with a camera attached:

1. Snapshot the save request and exposure state once. ``remaining > 0``
   selects SAVING, otherwise LIVE.
2. Apply the mode's exposure and the gain to the session, touching it only
   when a value differs from what the session already has. A mode switch
   therefore reconfigures the device once, on the boundary.
3. Capture. A failure closes and detaches the session, calls the
   ``on_disconnect`` hook and moves to DISCONNECTED; nothing is saved or
   rendered for that cycle and the save count is unchanged.
4. While SAVING, write the raw frame; the save count is decremented only
   after the write succeeds.
5. Render the frame with the current RenderConfig and publish it to the
   display surface.

Example:
    loop = CaptureLoop(state, surface, writer, stats=CaptureStats())
    loop.start()
    ...
    loop.stop()
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from telescope_preview.data.frame_writer import FrameWriteError
from telescope_preview.devices.capture_session import CaptureFailed, CaptureError
from telescope_preview.display.transform import render_preview
from telescope_preview.observability import get_logger

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from telescope_preview.data.frame_writer import FrameWriter
    from telescope_preview.devices.capture_session import CaptureSession
    from telescope_preview.devices.state import SessionState
    from telescope_preview.display.surface import DisplaySurface
    from telescope_preview.observability.stats import CaptureStats

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_IDLE_DELAY_S",
    "MAX_CONSECUTIVE_WRITE_FAILURES",
    "CaptureLoop",
    "Clock",
    "LoopHooks",
    "LoopState",
    "SystemClock",
]

#: Sleep between cycles while no camera is attached.
DEFAULT_IDLE_DELAY_S = 1.0

#: Consecutive failed writes after which a save run is abandoned.
MAX_CONSECUTIVE_WRITE_FAILURES = 3


class LoopState(Enum):
    """Capture loop mode."""

    DISCONNECTED = "disconnected"
    LIVE = "live"
    SAVING = "saving"


# =============================================================================
# Injectable collaborators
# =============================================================================


class Clock(Protocol):  # pragma: no cover
    """Time source for cycle timing and the idle delay.

    Example:
        class FakeClock:
            def __init__(self):
                self.now = 0.0

            def monotonic(self) -> float:
                return self.now

            def sleep(self, seconds: float) -> None:
                self.now += seconds

        loop = CaptureLoop(state, surface, writer, clock=FakeClock())
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block for ``seconds``."""
        ...


class SystemClock:
    """Clock backed by the :mod:`time` module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


OnDisconnectCallback = Callable[[CaptureError], None]
OnSaveCallback = Callable[[Path, int], None]
OnStateChangeCallback = Callable[[LoopState, LoopState], None]


@dataclass(slots=True)
class LoopHooks:
    """Optional callbacks for loop events. Called on the capture thread.

    Attributes:
        on_disconnect: Called with the capture error after a session is
            dropped.
        on_save: Called with the written path and the remaining count.
        on_state_change: Called with ``(old, new)`` on every mode change.
    """

    on_disconnect: OnDisconnectCallback | None = None
    on_save: OnSaveCallback | None = None
    on_state_change: OnStateChangeCallback | None = None


# =============================================================================
# Capture loop
# =============================================================================


class CaptureLoop:
    """Drives capture, save and render for the attached camera.

    Args:
        state: Shared operator state; the loop reads snapshots and calls
            ``complete_save``, ``cancel_save`` and ``detach_camera``.
        surface: Display surface receiving every rendered preview.
        writer: Frame writer used while saving.
        stats: Capture statistics, optional.
        clock: Time source, SystemClock when None.
        hooks: Event callbacks, optional.
        idle_delay_s: Sleep per cycle while disconnected.
    """

    def __init__(
        self,
        state: SessionState,
        surface: DisplaySurface,
        writer: FrameWriter,
        stats: CaptureStats | None = None,
        clock: Clock | None = None,
        hooks: LoopHooks | None = None,
        idle_delay_s: float = DEFAULT_IDLE_DELAY_S,
    ) -> None:
        if idle_delay_s < 0:
            raise ValueError(f"idle_delay_s must be >= 0, got {idle_delay_s}")
        self._state = state
        self._surface = surface
        self._writer = writer
        self._stats = stats
        self._clock: Clock = clock if clock is not None else SystemClock()
        self._hooks = hooks if hooks is not None else LoopHooks()
        self._idle_delay_s = idle_delay_s
        self._loop_state = LoopState.DISCONNECTED
        self._write_failures = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> LoopState:
        """Mode of the most recent cycle."""
        return self._loop_state

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stats(self) -> CaptureStats | None:
        return self._stats

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    def run_cycle(self) -> LoopState:
        """Run one cycle and return the resulting loop state."""
        session = self._state.camera
        if session is None:
            self._transition(LoopState.DISCONNECTED)
            self._clock.sleep(self._idle_delay_s)
            return self._loop_state

        save = self._state.save
        exposure = self._state.exposure
        saving = save.active
        if not saving:
            self._write_failures = 0

        target = exposure.exposure_for(saving)
        if session.exposure_seconds != target:
            session.set_exposure_seconds(target)
        if session.gain != exposure.gain:
            session.set_gain(exposure.gain)
        self._transition(LoopState.SAVING if saving else LoopState.LIVE)

        start = self._clock.monotonic()
        outcome = session.capture_frame()
        duration_ms = (self._clock.monotonic() - start) * 1000.0

        if isinstance(outcome, CaptureFailed):
            if self._stats is not None:
                self._stats.record_capture(
                    duration_ms,
                    success=False,
                    error_type=type(outcome.error.__cause__ or outcome.error).__name__,
                )
            self._drop_session(session, outcome.error)
            return self._loop_state

        if self._stats is not None:
            self._stats.record_capture(duration_ms, success=True)
        logger.debug(
            "Frame captured",
            device_id=session.device_id,
            duration_ms=round(duration_ms, 2),
            reconfigured=outcome.reconfigured,
        )

        if saving:
            self._save_frame(outcome.frame, save.directory)

        self._surface.replace(render_preview(outcome.frame, self._state.render))
        return self._loop_state

    def _transition(self, new_state: LoopState) -> None:
        old_state = self._loop_state
        if new_state is old_state:
            return
        self._loop_state = new_state
        logger.info("Capture mode changed", old=old_state.value, new=new_state.value)
        if self._hooks.on_state_change is not None:
            self._hooks.on_state_change(old_state, new_state)

    def _drop_session(self, session: CaptureSession, error: CaptureError) -> None:
        session.close()
        if not self._state.detach_camera(session):
            # A newer session was attached while this one was capturing
            logger.info("Camera session replaced", device_id=session.device_id)
            return

        cause = error.__cause__ or error
        logger.error(
            "Camera disconnected",
            device_id=session.device_id,
            error=str(error),
            error_type=type(cause).__name__,
        )
        self._transition(LoopState.DISCONNECTED)
        if self._hooks.on_disconnect is not None:
            self._hooks.on_disconnect(error)

    def _save_frame(self, frame: NDArray[np.uint16], directory: str | None) -> None:
        try:
            path = self._writer.write_frame(directory, frame)
        except FrameWriteError as e:
            self._write_failures += 1
            if self._stats is not None:
                self._stats.record_save(success=False)
            logger.error(
                "Failed to save image",
                directory=directory,
                error=str(e),
                error_type=type(e).__name__,
                consecutive_failures=self._write_failures,
            )
            if self._write_failures >= MAX_CONSECUTIVE_WRITE_FAILURES:
                self._state.cancel_save()
                self._write_failures = 0
                logger.error(
                    "Save run abandoned",
                    failures=MAX_CONSECUTIVE_WRITE_FAILURES,
                )
            return

        self._write_failures = 0
        remaining = self._state.complete_save()
        if self._stats is not None:
            self._stats.record_save(success=True)
        logger.info("Saved image", remaining=remaining, path=str(path))
        if self._hooks.on_save is not None:
            self._hooks.on_save(path, remaining)

    # -------------------------------------------------------------------------
    # Thread lifecycle
    # -------------------------------------------------------------------------

    def run_forever(self) -> None:
        """Run cycles until :meth:`stop` is called.

        An unexpected error in a cycle is logged and followed by the idle
        delay; the loop keeps running.
        """
        logger.info("Capture loop started")
        while not self._stop.is_set():
            try:
                self.run_cycle()
            except Exception as e:
                logger.exception(
                    "Capture cycle failed", error=str(e), error_type=type(e).__name__
                )
                self._clock.sleep(self._idle_delay_s)
        logger.info("Capture loop stopped")

    def start(self) -> None:
        """Run the loop on the daemon thread ``telescope-capture``.

        Raises:
            RuntimeError: If already running.
        """
        if self.is_running:
            raise RuntimeError("Capture loop already running")
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run_forever, name="telescope-capture", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Ask the loop to exit after the current cycle.

        A blocking capture is never interrupted; with ``timeout`` the join
        gives up after that many seconds.
        """
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
