"""Pytest configuration and fixtures for telescope-preview tests.

Fixtures here build the collaborators most tests need: a scriptable fake
sensor driver, a frame writer rooted in ``tmp_path`` with a fixed clock, the
shared session state and a log capture stream. Logging is reset after each
test so a test that reconfigures it cannot leak handlers into the next.
"""

from __future__ import annotations

import io
from datetime import datetime
from pathlib import Path

import pytest

from telescope_preview.data.frame_writer import FrameWriter, UniqueFileNamer
from telescope_preview.devices.state import SessionState
from telescope_preview.display.surface import DisplaySurface
from telescope_preview.drivers import config as driver_config
from telescope_preview.observability import configure_logging, reset_logging
from telescope_preview.observability.stats import CaptureStats
from tests.helpers import FakeClock, FakeEncoder, FakeSensorDriver

#: Fixed local time used for saved frame names.
FIXED_NOW = datetime(2024, 3, 14, 21, 5, 9)


@pytest.fixture(autouse=True)
def _restore_logging():
    """Reset package logging after every test."""
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _reset_driver_factory():
    """Drop the global driver factory so tests start from defaults."""
    driver_config._factory = None
    yield
    driver_config._factory = None


@pytest.fixture
def log_stream() -> io.StringIO:
    """Route package logs at DEBUG into a StringIO and return it.

    The package logger does not propagate to the root logger, so pytest's
    caplog never sees its records; read this stream instead.

    Example:
        >>> def test_logs(log_stream):
        ...     get_logger("telescope_preview.x").info("hi", a=1)
        ...     assert "a=1" in log_stream.getvalue()
    """
    stream = io.StringIO()
    configure_logging(level="DEBUG", stream=stream, force=True)
    return stream


@pytest.fixture
def fake_driver() -> FakeSensorDriver:
    """Fake driver with one 8x6 device."""
    return FakeSensorDriver()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Clock that advances 10 ms per reading."""
    return FakeClock(tick=0.01)


@pytest.fixture
def save_root(tmp_path: Path) -> Path:
    """Root directory for saved frames."""
    return tmp_path / "Desktop"


@pytest.fixture
def namer(save_root: Path) -> UniqueFileNamer:
    """Namer rooted at ``save_root`` with the clock fixed to FIXED_NOW."""
    return UniqueFileNamer(save_root, clock=lambda: FIXED_NOW)


@pytest.fixture
def encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def writer(namer: UniqueFileNamer, encoder: FakeEncoder) -> FrameWriter:
    """Frame writer using the fake encoder (no cv2 needed)."""
    return FrameWriter(namer, encoder=encoder)


@pytest.fixture
def state() -> SessionState:
    return SessionState()


@pytest.fixture
def surface() -> DisplaySurface:
    return DisplaySurface()


@pytest.fixture
def stats() -> CaptureStats:
    return CaptureStats()
