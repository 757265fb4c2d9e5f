"""Operator command shell.

Reads free-text commands, one per line, and applies each to the shared
:class:`~telescope_preview.devices.state.SessionState`. Every command changes
exactly one piece of state; the capture loop picks the change up on its next
cycle. Responses go to the shell's output stream (stdout by default) so they
stay separate from log records on stderr.

Commands:
    connect                open the configured camera
    cross                  toggle the crosshair
    zoom [radius]          set the zoom radius, or toggle zoom
    gamma [multiplier]     linear mapping with a gamma multiplier
    stretch [amount]       set the auto-stretch amount, or toggle it
    gain [number]          sensor gain
    exposure [seconds]     live exposure
    save [number]          save the next [number] frames
    saveexp [seconds]      exposure used while saving
    savedir [path|none]    save sub-directory under the save root
    status                 show the current state
    help                   list commands

Malformed commands print a message and leave all state unchanged.
"""

from __future__ import annotations

import math
import sys
from collections.abc import Callable
from typing import TYPE_CHECKING, TextIO

from telescope_preview.devices.capture_session import DeviceOpenError
from telescope_preview.display.transform import (
    DEFAULT_STRETCH,
    DEFAULT_ZOOM_RADIUS,
    IntensityMode,
)
from telescope_preview.observability import get_logger

if TYPE_CHECKING:
    from telescope_preview.devices.capture_loop import CaptureLoop
    from telescope_preview.devices.capture_session import CaptureSession
    from telescope_preview.devices.state import SessionState
    from telescope_preview.observability.stats import CaptureStats

logger = get_logger(__name__)

__all__ = ["COMMANDS", "CommandError", "CommandShell"]

#: Command names with their usage line, in help order.
COMMANDS: dict[str, str] = {
    "connect": "connect",
    "cross": "cross",
    "zoom": "zoom [radius]",
    "gamma": "gamma [multiplier]",
    "stretch": "stretch [amount]",
    "gain": "gain [number]",
    "exposure": "exposure [seconds]",
    "save": "save [number]",
    "saveexp": "saveexp [exposure in seconds]",
    "savedir": "savedir [path|none]",
    "status": "status",
    "help": "help",
}

SessionOpener = Callable[[int], "CaptureSession"]


class CommandError(ValueError):
    """Malformed or currently inapplicable operator command."""


def _parse_float(text: str) -> float | None:
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _parse_int(text: str) -> int | None:
    try:
        return int(text)
    except ValueError:
        return None


class CommandShell:
    """Line-oriented command interpreter over the shared session state.

    Args:
        state: Shared operator state.
        open_session: Opens a capture session for a device id; raises
            DeviceOpenError on failure.
        device_id: Camera opened by ``connect``.
        out: Response stream, stdout when None.
        loop: Capture loop, used by ``status``.
        stats: Capture statistics, used by ``status``.
        prompt: Prompt written before each line is read.
    """

    def __init__(
        self,
        state: SessionState,
        open_session: SessionOpener,
        device_id: int = 0,
        out: TextIO | None = None,
        loop: CaptureLoop | None = None,
        stats: CaptureStats | None = None,
        prompt: str = "> ",
    ) -> None:
        self._state = state
        self._open_session = open_session
        self._device_id = device_id
        self._out = out if out is not None else sys.stdout
        self._loop = loop
        self._stats = stats
        self._prompt = prompt
        self._handlers: dict[str, Callable[[list[str]], None]] = {
            "connect": self._connect,
            "cross": self._cross,
            "zoom": self._zoom,
            "gamma": self._gamma,
            "stretch": self._stretch,
            "gain": self._gain,
            "exposure": self._exposure,
            "save": self._save,
            "saveexp": self._saveexp,
            "savedir": self._savedir,
            "status": self._status,
            "help": self._help,
        }

    def _write(self, text: str = "", end: str = "\n") -> None:
        self._out.write(text + end)
        self._out.flush()

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def execute(self, line: str) -> bool:
        """Run one command line.

        Returns:
            True if the command was applied, False if it was unknown or
            rejected. Blank lines count as applied.
        """
        words = line.split()
        if not words:
            return True
        name, args = words[0], words[1:]
        handler = self._handlers.get(name)
        if handler is None:
            self._write(f"Unknown command {name}")
            return False
        try:
            handler(args)
        except CommandError as e:
            self._write(str(e))
            logger.debug("Command rejected", command=name, error=str(e))
            return False
        return True

    def run(self, stream: TextIO) -> int:
        """Read and execute commands until end of input.

        Returns:
            Number of lines read.
        """
        self._write("Commands: " + ", ".join(COMMANDS))
        count = 0
        while True:
            self._write(self._prompt, end="")
            line = stream.readline()
            if not line:
                break
            count += 1
            self.execute(line)
        self._write()
        return count

    def _bad(self, name: str) -> CommandError:
        return CommandError(f"Bad {name} command, syntax: {COMMANDS[name]}")

    def _require_camera(self, name: str) -> None:
        if self._state.camera is None:
            raise self._bad(name)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def _connect(self, args: list[str]) -> None:
        self._write("Connecting")
        try:
            session = self._open_session(self._device_id)
        except DeviceOpenError as e:
            logger.warning("Connect failed", device_id=self._device_id, error=str(e))
            raise CommandError(
                f"Couldn't connect to camera number {self._device_id}"
            ) from e
        previous = self._state.attach_camera(session)
        if previous is not None:
            previous.close()
        self._write(
            f"Connected to camera {session.device_id} ({session.width}x{session.height})"
        )

    def _cross(self, args: list[str]) -> None:
        enabled = not self._state.render.crosshair
        self._state.update_render(crosshair=enabled)
        self._write(f"Crosshair {'on' if enabled else 'off'}")

    def _zoom(self, args: list[str]) -> None:
        radius = _parse_int(args[0]) if len(args) == 1 else None
        if radius is None or radius <= 0:
            current = self._state.render.zoom_radius
            radius = DEFAULT_ZOOM_RADIUS if current == 0 else 0
        self._state.update_render(zoom_radius=radius)
        self._write(f"Zoom radius {radius}" if radius else "Zoom off")

    def _gamma(self, args: list[str]) -> None:
        if len(args) > 1:
            raise self._bad("gamma")
        multiplier = _parse_float(args[0]) if args else 1.0
        if multiplier is None or multiplier <= 0:
            raise self._bad("gamma")
        self._state.set_render(self._state.render.with_gamma(multiplier))
        self._write(f"Gamma {multiplier}")

    def _stretch(self, args: list[str]) -> None:
        amount = _parse_float(args[0]) if len(args) == 1 else None
        render = self._state.render
        if amount is not None and amount > 0:
            if amount > 1:
                raise CommandError("Bad stretch command, amount must be at most 1")
            self._state.set_render(render.with_stretch(amount))
        elif render.stretch_amount <= 0:
            self._state.set_render(render.with_stretch(DEFAULT_STRETCH))
        else:
            self._state.set_render(render.without_stretch())
        current = self._state.render
        if current.stretch_amount > 0:
            self._write(f"Stretch {current.stretch_amount}")
        else:
            self._write("Stretch off")

    def _gain(self, args: list[str]) -> None:
        self._require_camera("gain")
        value = _parse_float(args[0]) if len(args) == 1 else None
        if value is None or value < 0:
            raise self._bad("gain")
        self._state.set_gain(value)

    def _exposure(self, args: list[str]) -> None:
        self._require_camera("exposure")
        value = _parse_float(args[0]) if len(args) == 1 else None
        if value is None or value <= 0:
            raise self._bad("exposure")
        self._state.set_live_exposure(value)

    def _save(self, args: list[str]) -> None:
        self._require_camera("save")
        count = _parse_int(args[0]) if len(args) == 1 else None
        if count is None or count <= 0:
            raise self._bad("save")
        self._state.request_save(count)
        self._write(f"Saving {count} images")

    def _saveexp(self, args: list[str]) -> None:
        self._require_camera("saveexp")
        value = _parse_float(args[0]) if len(args) == 1 else None
        if value is None or value <= 0:
            raise self._bad("saveexp")
        self._state.set_save_exposure(value)

    def _savedir(self, args: list[str]) -> None:
        if len(args) > 1:
            raise CommandError("Bad savedir command")
        directory = args[0] if args and args[0].lower() != "none" else None
        self._state.set_save_directory(directory)
        self._write(f"Save directory {directory}" if directory else "Save directory cleared")

    def _status(self, args: list[str]) -> None:
        camera = self._state.camera
        exposure = self._state.exposure
        save = self._state.save
        render = self._state.render

        if camera is None:
            self._write("Camera: not connected")
        else:
            self._write(f"Camera: {camera.device_id} ({camera.width}x{camera.height})")
        if self._loop is not None:
            self._write(f"Mode: {self._loop.state.value}")
        self._write(
            f"Exposure: live {exposure.live_exposure_s}s, "
            f"save {exposure.save_exposure_s}s, gain {exposure.gain}"
        )
        self._write(
            f"Saving: {save.remaining} remaining, directory {save.directory or '(root)'}"
        )
        if render.mode is IntensityMode.STRETCH and render.stretch_amount > 0:
            mapping = f"stretch {render.stretch_amount}"
        else:
            mapping = f"gamma {render.gamma}"
        self._write(
            f"Render: {mapping}, zoom {render.zoom_radius}, "
            f"crosshair {'on' if render.crosshair else 'off'}"
        )
        if self._stats is not None:
            summary = self._stats.get_summary()
            self._write(
                f"Captures: {summary.total_captures} "
                f"({summary.success_rate:.0%} ok, avg {summary.avg_duration_ms:.0f} ms), "
                f"saved {summary.frames_saved}, save failures {summary.save_failures}"
            )

    def _help(self, args: list[str]) -> None:
        for usage in COMMANDS.values():
            self._write(f"  {usage}")
