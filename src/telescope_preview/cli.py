"""CLI entry point for telescope-preview.

Provides the ``telescope-preview`` console script. It wires the sensor
driver, shared state, capture loop, preview window and command shell, then
reads operator commands from stdin until end of input.

Usage::

    # Digital twin with a synthetic star field
    telescope-preview

    # Real ZWO camera 0, saving under ~/Pictures, connect at startup
    telescope-preview --mode hardware --save-root ~/Pictures --connect

    # Replay a directory of images through the digital twin
    telescope-preview --stub-images ./frames --log-level debug

The capture loop and the preview window run on daemon threads, so closing
stdin (Ctrl-D) ends the process.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from telescope_preview.data.frame_writer import FrameWriter, UniqueFileNamer
from telescope_preview.devices.capture_loop import CaptureLoop, LoopHooks
from telescope_preview.devices.capture_session import CaptureError, CaptureSession
from telescope_preview.devices.state import SessionState
from telescope_preview.display.surface import DisplaySurface
from telescope_preview.display.window import PreviewWindow
from telescope_preview.drivers.config import (
    DriverConfig,
    DriverMode,
    configure,
    get_factory,
)
from telescope_preview.observability import CaptureStats, configure_logging, get_logger
from telescope_preview.shell import CommandShell

logger = get_logger(__name__)

# Seconds to wait for the capture thread when shutting down
_SHUTDOWN_TIMEOUT_S = 2.0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        argv: Arguments without the program name; None reads sys.argv.

    Returns:
        argparse.Namespace with mode, device_id, save_root, stub_images,
        log_level, json_logs, no_window, no_realtime and connect.

    Raises:
        SystemExit: On --help or invalid arguments.
    """
    parser = argparse.ArgumentParser(
        prog="telescope-preview",
        description="Live telescope camera preview with frame saving",
    )
    parser.add_argument(
        "--mode",
        type=str,
        choices=[mode.value for mode in DriverMode],
        default=DriverMode.DIGITAL_TWIN.value,
        help=(
            "Driver mode: 'hardware' for a real ZWO camera, "
            "'digital_twin' for simulation (default)"
        ),
    )
    parser.add_argument(
        "--device-id",
        type=int,
        default=0,
        help="Camera index opened by the connect command (default: 0)",
    )
    parser.add_argument(
        "--save-root",
        type=Path,
        default=None,
        help="Root directory for saved frames (default: ~/Desktop)",
    )
    parser.add_argument(
        "--stub-images",
        type=Path,
        default=None,
        help="Image file or directory served by the digital twin",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["critical", "error", "warning", "info", "debug"],
        default="info",
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Write logs as JSON lines",
    )
    parser.add_argument(
        "--no-window",
        action="store_true",
        help="Run without the preview window",
    )
    parser.add_argument(
        "--no-realtime",
        action="store_true",
        help="Digital twin returns frames without waiting for the exposure",
    )
    parser.add_argument(
        "--connect",
        action="store_true",
        help="Connect to the camera at startup",
    )
    return parser.parse_args(argv)


@dataclass
class Application:
    """Wired components of a running preview."""

    config: DriverConfig
    state: SessionState
    surface: DisplaySurface
    stats: CaptureStats
    loop: CaptureLoop
    shell: CommandShell
    window: PreviewWindow | None = None

    def start(self) -> None:
        if self.window is not None:
            self.window.start()
        self.loop.start()

    def shutdown(self) -> None:
        """Stop the threads and release the camera."""
        self.loop.stop(timeout=_SHUTDOWN_TIMEOUT_S)
        if self.window is not None:
            self.window.stop()
        session = self.state.camera
        if session is not None:
            self.state.detach_camera(session)
            session.close()


def build_application(
    config: DriverConfig,
    out: TextIO,
    window: bool = True,
) -> Application:
    """Create every component for ``config``; nothing is started.

    Loop events (saved frames, disconnects) are reported on ``out`` next to
    the shell's responses.
    """
    configure(config)
    driver = get_factory().create_sensor_driver()

    def report_save(path: Path, remaining: int) -> None:
        out.write(f"Saved image, {remaining} to go\n")
        out.flush()

    def report_disconnect(error: CaptureError) -> None:
        cause = error.__cause__ or error
        out.write(f"Disconnected from camera\n{type(cause).__name__}: {cause}\n")
        out.flush()

    state = SessionState()
    surface = DisplaySurface()
    stats = CaptureStats()
    writer = FrameWriter(UniqueFileNamer(config.save_root))
    loop = CaptureLoop(
        state,
        surface,
        writer,
        stats=stats,
        hooks=LoopHooks(on_disconnect=report_disconnect, on_save=report_save),
    )
    shell = CommandShell(
        state,
        lambda device_id: CaptureSession.open(driver, device_id),
        device_id=config.device_id,
        out=out,
        loop=loop,
        stats=stats,
    )
    return Application(
        config=config,
        state=state,
        surface=surface,
        stats=stats,
        loop=loop,
        shell=shell,
        window=PreviewWindow(surface) if window else None,
    )


def main(
    argv: list[str] | None = None,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> int:
    """Main CLI entry point for telescope-preview.

    Runs the command shell on ``stdin`` until end of input, then stops the
    capture loop and window and closes the camera.

    Returns:
        Exit code 0.

    Raises:
        SystemExit: On --help or argument parsing errors.
    """
    args = parse_args(argv)
    configure_logging(
        level=args.log_level.upper(), json_format=args.json_logs, force=True
    )

    config = DriverConfig(
        mode=DriverMode(args.mode),
        device_id=args.device_id,
        stub_image_path=args.stub_images,
        twin_realtime=not args.no_realtime,
    )
    if args.save_root is not None:
        config.save_root = args.save_root.expanduser()

    app = build_application(
        config, stdout if stdout is not None else sys.stdout, window=not args.no_window
    )
    logger.info(
        "Starting telescope preview",
        mode=config.mode.value,
        device_id=config.device_id,
        save_root=str(config.save_root),
    )
    app.start()
    try:
        if args.connect:
            app.shell.execute("connect")
        app.shell.run(stdin if stdin is not None else sys.stdin)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        app.shutdown()
    logger.info("Telescope preview stopped", **app.stats.get_summary().to_dict())
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
