"""Tests for the telescope-preview CLI wiring.

``main`` runs with ``--no-window`` and ``--no-realtime`` against the digital
twin so no display or hardware is needed; stdin and stdout are StringIO.
"""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from telescope_preview.cli import build_application, main, parse_args
from telescope_preview.devices.capture_loop import LoopState
from telescope_preview.drivers import config as driver_config
from telescope_preview.drivers.cameras import DigitalTwinSensorDriver
from telescope_preview.drivers.config import DriverConfig, DriverMode


class TestParseArgs:
    def test_defaults(self) -> None:
        args = parse_args([])
        assert args.mode == "digital_twin"
        assert args.device_id == 0
        assert args.save_root is None
        assert args.stub_images is None
        assert args.log_level == "info"
        assert args.json_logs is False
        assert args.no_window is False
        assert args.no_realtime is False
        assert args.connect is False

    def test_all_options(self) -> None:
        args = parse_args(
            [
                "--mode",
                "hardware",
                "--device-id",
                "2",
                "--save-root",
                "/data/frames",
                "--stub-images",
                "stars.tiff",
                "--log-level",
                "debug",
                "--json-logs",
                "--no-window",
                "--no-realtime",
                "--connect",
            ]
        )
        assert args.mode == "hardware"
        assert args.device_id == 2
        assert args.save_root == Path("/data/frames")
        assert args.stub_images == Path("stars.tiff")
        assert args.log_level == "debug"
        assert args.json_logs and args.no_window and args.no_realtime and args.connect

    @pytest.mark.parametrize(
        "argv", [["--mode", "simulator"], ["--log-level", "loud"], ["--device-id", "x"]]
    )
    def test_invalid_arguments_exit(self, argv: list[str]) -> None:
        with pytest.raises(SystemExit):
            parse_args(argv)


class TestBuildApplication:
    @pytest.fixture
    def out(self) -> io.StringIO:
        return io.StringIO()

    @pytest.fixture
    def app(self, tmp_path: Path, out: io.StringIO):
        config = DriverConfig(save_root=tmp_path / "frames", twin_realtime=False)
        app = build_application(config, out, window=False)
        yield app
        app.shutdown()

    def test_configures_global_factory(self, app) -> None:
        assert driver_config.get_factory().config is app.config
        driver = driver_config.get_factory().create_sensor_driver()
        assert isinstance(driver, DigitalTwinSensorDriver)

    def test_nothing_started(self, app) -> None:
        assert app.window is None
        assert app.loop.is_running is False
        assert app.state.camera is None

    def test_save_run_reports_progress(
        self, app, out: io.StringIO, tmp_path: Path
    ) -> None:
        assert app.shell.execute("connect")
        assert app.shell.execute("save 2")

        assert app.loop.run_cycle() is LoopState.SAVING
        assert app.loop.run_cycle() is LoopState.SAVING
        assert app.loop.run_cycle() is LoopState.LIVE

        output = out.getvalue()
        assert "Saved image, 1 to go" in output
        assert "Saved image, 0 to go" in output
        assert len(list((tmp_path / "frames").glob("telescope.*.tiff"))) == 2
        assert app.surface.frames_published == 3

    def test_disconnect_is_reported(self, app, out: io.StringIO) -> None:
        app.shell.execute("connect")
        session = app.state.camera
        assert session is not None
        session.close()

        assert app.loop.run_cycle() is LoopState.DISCONNECTED

        assert "Disconnected from camera\nSessionClosedError:" in out.getvalue()
        assert app.state.camera is None

    def test_shutdown_closes_camera(self, app) -> None:
        app.shell.execute("connect")
        session = app.state.camera

        app.shutdown()

        assert app.state.camera is None
        assert session is not None and session.is_closed


class TestMain:
    def run_main(self, tmp_path: Path, commands: str, *extra: str) -> str:
        stdout = io.StringIO()
        code = main(
            [
                "--no-window",
                "--no-realtime",
                "--save-root",
                str(tmp_path),
                "--log-level",
                "warning",
                *extra,
            ],
            stdin=io.StringIO(commands),
            stdout=stdout,
        )
        assert code == 0
        return stdout.getvalue()

    def test_runs_until_end_of_input(self, tmp_path: Path) -> None:
        output = self.run_main(tmp_path, "status\n")
        assert output.startswith("Commands: connect, cross,")
        assert "Camera: not connected" in output

    def test_connect_option(self, tmp_path: Path) -> None:
        output = self.run_main(tmp_path, "", "--connect")
        assert "Connecting\nConnected to camera 0 (" in output

    def test_connect_to_missing_camera(self, tmp_path: Path) -> None:
        output = self.run_main(tmp_path, "connect\n", "--device-id", "4")
        assert "Couldn't connect to camera number 4" in output

    def test_factory_configured_from_arguments(self, tmp_path: Path) -> None:
        self.run_main(tmp_path, "", "--device-id", "1")
        config = driver_config.get_factory().config
        assert config.mode is DriverMode.DIGITAL_TWIN
        assert config.device_id == 1
        assert config.save_root == tmp_path
        assert config.twin_realtime is False

    def test_keyboard_interrupt_shuts_down(self, tmp_path: Path) -> None:
        class Interrupting(io.StringIO):
            def readline(self, size: int = -1) -> str:
                raise KeyboardInterrupt

        code = main(
            ["--no-window", "--no-realtime", "--save-root", str(tmp_path)],
            stdin=Interrupting(),
            stdout=io.StringIO(),
        )
        assert code == 0
