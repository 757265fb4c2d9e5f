"""Test helper functions and fakes for telescope-preview.

Provides protocol compliance verification and a scriptable in-memory sensor
used by the session, loop and shell tests.

Example:
    from tests.helpers import FakeSensorDriver, assert_implements_protocol
    from telescope_preview.drivers.cameras import SensorDevice

    def test_fake_device_implements_protocol():
        device = FakeSensorDriver().open(0)
        assert_implements_protocol(device, SensorDevice)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

import numpy as np

from telescope_preview.drivers.cameras.types import (
    DeviceError,
    SensorProperty,
    SnapshotSettings,
)


def assert_implements_protocol(
    instance: object,
    protocol: type[Protocol],
) -> None:
    """Assert that an instance implements a Protocol interface.

    Uses isinstance() (the Protocol must be @runtime_checkable) and, on
    failure, lists the protocol members the instance is missing.

    Args:
        instance: Object to check for protocol compliance.
        protocol: Protocol class to check against.

    Raises:
        AssertionError: If instance doesn't implement protocol.
        TypeError: If protocol is not @runtime_checkable.

    Example:
        >>> from telescope_preview.display.window import HighGui
        >>> assert_implements_protocol(FakeHighGui(), HighGui)
    """
    if isinstance(instance, protocol):
        return

    instance_attrs = set(dir(instance))
    object_attrs = set(dir(object))
    protocol_methods = {
        attr
        for attr in set(dir(protocol)) - object_attrs
        if not attr.startswith("_")
    }
    missing = sorted(protocol_methods - instance_attrs)
    missing_str = ", ".join(missing) if missing else "unknown"
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {missing_str}"
    )


def assert_all_implement_protocol(
    instances: list[Any],
    protocol: type[Protocol],
) -> None:
    """Assert that all instances in a list implement a Protocol.

    Example:
        >>> drivers = [ASISensorDriver(sdk=MockASISDK()), DigitalTwinSensorDriver()]
        >>> assert_all_implement_protocol(drivers, SensorDriver)
    """
    for i, instance in enumerate(instances):
        try:
            assert_implements_protocol(instance, protocol)
        except AssertionError as e:
            raise AssertionError(f"Instance at index {i}: {e}") from e


# =============================================================================
# Fake sensor
# =============================================================================


class FakeSensorDevice:
    """In-memory SensorDevice with scriptable failures.

    Every protocol call is appended to ``calls`` as ``(name, args)``. Frames
    are filled with a counter value (1, 2, 3, ...) so tests can tell
    captures apart.

    Attributes:
        fail_on: Method names that raise DeviceError when called.
        calls: Recorded calls.
        close_count: Number of close() calls.
        on_capture: Called after each frame is filled, to act mid-cycle.
        properties: Current property values.
    """

    def __init__(self, width: int = 8, height: int = 6) -> None:
        self.width = width
        self.height = height
        self.fail_on: set[str] = set()
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.close_count = 0
        self.streaming = False
        self.settings: SnapshotSettings | None = None
        self.frames = 0
        self.on_capture: Callable[[], None] | None = None
        self.properties: dict[SensorProperty, float] = {
            SensorProperty.MAX_WIDTH: float(width),
            SensorProperty.MAX_HEIGHT: float(height),
            SensorProperty.GAMMA: 0.5,
            SensorProperty.DIGITAL_GAIN: 2.0,
            SensorProperty.CONTRAST: 3.0,
            SensorProperty.BRIGHTNESS: 4.0,
        }

    def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if name in self.fail_on:
            raise DeviceError(f"{name} failed")

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def get_property(self, name: SensorProperty) -> float:
        self._call("get_property", name)
        return self.properties[name]

    def set_property(self, name: SensorProperty, value: float) -> None:
        self._call("set_property", name, value)
        self.properties[name] = value

    def negotiate_frame_rate(self, minimum: bool = True) -> float:
        self._call("negotiate_frame_rate", minimum)
        return 2.5 if minimum else 15.0

    def start_streaming(self, settings: SnapshotSettings) -> None:
        self._call("start_streaming", settings)
        self.settings = settings
        self.streaming = True

    def stop_streaming(self) -> None:
        self._call("stop_streaming")
        self.streaming = False

    def capture_frame(self, buffer: np.ndarray) -> None:
        self._call("capture_frame", buffer.shape)
        if not self.streaming:
            raise DeviceError("not streaming")
        self.frames += 1
        buffer[...] = self.frames
        if self.on_capture is not None:
            self.on_capture()

    def close(self) -> None:
        self.close_count += 1
        self._call("close")


class FakeSensorDriver:
    """SensorDriver handing out FakeSensorDevice instances.

    Attributes:
        devices: Every device opened, in order.
        num_devices: IDs ``0 .. num_devices-1`` open successfully.
        fail_open: Raise DeviceError from open().
    """

    def __init__(self, width: int = 8, height: int = 6, num_devices: int = 1) -> None:
        self.width = width
        self.height = height
        self.num_devices = num_devices
        self.fail_open = False
        self.devices: list[FakeSensorDevice] = []
        self.prepare: list[set[str]] = []

    def open(self, device_id: int) -> FakeSensorDevice | None:
        if self.fail_open:
            raise DeviceError("USB error")
        if not 0 <= device_id < self.num_devices:
            return None
        device = FakeSensorDevice(self.width, self.height)
        if self.prepare:
            device.fail_on = self.prepare.pop(0)
        self.devices.append(device)
        return device


class FakeClock:
    """Deterministic Clock: ``sleep`` advances ``now``; ``tick`` per reading."""

    def __init__(self, tick: float = 0.0) -> None:
        self.now = 0.0
        self.tick = tick
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        self.now += self.tick
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeEncoder:
    """ImageEncoder returning a fixed payload, or failing on demand."""

    def __init__(self, payload: bytes = b"II*\x00frame", fail: bool = False) -> None:
        self.payload = payload
        self.fail = fail
        self.encoded: list[np.ndarray] = []

    def encode_tiff16(self, raster: np.ndarray) -> bytes:
        if self.fail:
            raise ValueError("encoder broken")
        self.encoded.append(raster.copy())
        return self.payload
