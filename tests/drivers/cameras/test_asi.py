"""Unit tests for the ASI sensor driver with a mock SDK.

Tests ASISensorDriver and ASISensorDevice against in-memory implementations
of the camera and SDK protocols, so no hardware or vendor library is needed.

Test Categories:
1. ASISensorDevice Tests
   - Property reads from camera info and live controls
   - Property writes and read-only sizes
   - USB bandwidth negotiation
   - Streaming start/stop and RAW16 ROI setup
   - Frame capture into a caller buffer
   - close() idempotence and error handling

2. ASISensorDriver Tests
   - Opening by index, out-of-range indices
   - SDK failures surfaced as DeviceError
   - Lazy SDK initialization
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pytest
import zwoasi as asi

from telescope_preview.drivers.cameras.asi import (
    PROPERTY_CONTROLS,
    ASICameraProtocol,
    ASISDKProtocol,
    ASISensorDevice,
    ASISensorDriver,
)
from telescope_preview.drivers.cameras.types import (
    DeviceError,
    FrameFormat,
    SensorProperty,
    SnapshotSettings,
)
from tests.helpers import assert_implements_protocol

# =============================================================================
# Mock SDK
# =============================================================================


class MockASICamera:
    """Mock implementation of ASICameraProtocol.

    Records every SDK call and returns frames filled with a counter.

    Attributes:
        calls: ``(method, args, kwargs)`` tuples in call order.
        control_values: Current control values by control type.
        fail_on: Method names that raise RuntimeError.
        frame_shape: Shape of frames returned by capture_video_frame.
    """

    def __init__(
        self, width: int = 64, height: int = 48, bandwidth: bool = True
    ) -> None:
        self.width = width
        self.height = height
        self.bandwidth = bandwidth
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.control_values: dict[int, int] = {asi.ASI_GAMMA: 50}
        self.fail_on: set[str] = set()
        self.frame_shape = (height, width)
        self.frames = 0

    def _record(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    def names(self) -> list[str]:
        return [name for name, _, _ in self.calls]

    def get_camera_property(self) -> dict[str, Any]:
        self._record("get_camera_property")
        return {
            "Name": "ZWO ASI462MM",
            "MaxWidth": self.width,
            "MaxHeight": self.height,
            "IsColorCam": False,
            "BitDepth": 12,
        }

    def get_controls(self) -> dict[str, dict[str, Any]]:
        self._record("get_controls")
        controls: dict[str, dict[str, Any]] = {
            "Gain": {"ControlType": asi.ASI_GAIN, "MinValue": 0, "MaxValue": 600},
            "Exposure": {
                "ControlType": asi.ASI_EXPOSURE,
                "MinValue": 32,
                "MaxValue": 2000000000,
            },
            "Gamma": {"ControlType": asi.ASI_GAMMA, "MinValue": 1, "MaxValue": 100},
            "HighSpeedMode": {
                "ControlType": asi.ASI_HIGH_SPEED_MODE,
                "MinValue": 0,
                "MaxValue": 1,
            },
        }
        if self.bandwidth:
            controls["BandWidth"] = {
                "ControlType": asi.ASI_BANDWIDTHOVERLOAD,
                "MinValue": 40,
                "MaxValue": 100,
            }
        return controls

    def set_control_value(self, control_type: int, value: int) -> None:
        self._record("set_control_value", control_type, value)
        self.control_values[control_type] = value

    def get_control_value(self, control_type: int) -> tuple[int, bool]:
        self._record("get_control_value", control_type)
        return self.control_values.get(control_type, 0), False

    def set_roi(
        self,
        start_x: int | None = None,
        start_y: int | None = None,
        width: int | None = None,
        height: int | None = None,
        bins: int | None = None,
        image_type: int | None = None,
    ) -> None:
        self._record(
            "set_roi", width=width, height=height, bins=bins, image_type=image_type
        )

    def start_video_capture(self) -> None:
        self._record("start_video_capture")

    def stop_video_capture(self) -> None:
        self._record("stop_video_capture")

    def capture_video_frame(self, timeout: int | None = None) -> Any:
        self._record("capture_video_frame", timeout=timeout)
        self.frames += 1
        return np.full(self.frame_shape, self.frames, dtype=np.uint16)

    def close(self) -> None:
        self._record("close")


class MockASISDK:
    """Mock implementation of ASISDKProtocol."""

    def __init__(self, cameras: list[MockASICamera] | None = None) -> None:
        self.cameras = cameras if cameras is not None else [MockASICamera()]
        self.init_paths: list[str] = []
        self.fail_open = False
        self.fail_count = False

    def init(self, library_path: str) -> None:
        self.init_paths.append(library_path)

    def get_num_cameras(self) -> int:
        if self.fail_count:
            raise RuntimeError("USB enumeration failed")
        return len(self.cameras)

    def open_camera(self, camera_id: int) -> MockASICamera:
        if self.fail_open:
            raise RuntimeError("Camera busy")
        return self.cameras[camera_id]


@pytest.fixture
def camera() -> MockASICamera:
    return MockASICamera()


@pytest.fixture
def device(camera: MockASICamera) -> ASISensorDevice:
    return ASISensorDevice(0, camera)


def settings_for(camera: MockASICamera, **overrides: Any) -> SnapshotSettings:
    return SnapshotSettings(
        format=FrameFormat(width=camera.width, height=camera.height), **overrides
    )


# =============================================================================
# Protocol compliance
# =============================================================================


class TestProtocols:
    def test_mocks_implement_protocols(self) -> None:
        """Verify the mocks satisfy the SDK protocols they stand in for.

        Business context:
            Driver tests are only meaningful if the mock exposes the same
            surface as zwoasi.Camera. A drifted mock would let tests pass
            against methods the real SDK lacks.
        """
        assert_implements_protocol(MockASICamera(), ASICameraProtocol)
        assert_implements_protocol(MockASISDK(), ASISDKProtocol)


# =============================================================================
# ASISensorDevice
# =============================================================================


class TestDeviceProperties:
    def test_sensor_size_from_camera_info(self, device: ASISensorDevice) -> None:
        assert device.get_property(SensorProperty.MAX_WIDTH) == 64.0
        assert device.get_property(SensorProperty.MAX_HEIGHT) == 48.0

    def test_gamma_is_scaled_from_control(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        camera.control_values[asi.ASI_GAMMA] = 75
        assert device.get_property(SensorProperty.GAMMA) == 1.5

    @pytest.mark.parametrize(
        "prop",
        [
            SensorProperty.DIGITAL_GAIN,
            SensorProperty.CONTRAST,
            SensorProperty.BRIGHTNESS,
        ],
    )
    def test_unmapped_properties_read_as_unity(
        self, device: ASISensorDevice, prop: SensorProperty
    ) -> None:
        assert prop not in PROPERTY_CONTROLS
        assert device.get_property(prop) == 1.0

    def test_set_gamma_writes_scaled_control(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        device.set_property(SensorProperty.GAMMA, 1.0)
        assert camera.control_values[asi.ASI_GAMMA] == 50

    def test_set_unmapped_property_is_noop(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        device.set_property(SensorProperty.CONTRAST, 1.0)
        assert "set_control_value" not in camera.names()

    @pytest.mark.parametrize(
        "prop", [SensorProperty.MAX_WIDTH, SensorProperty.MAX_HEIGHT]
    )
    def test_sensor_size_is_read_only(
        self, device: ASISensorDevice, prop: SensorProperty
    ) -> None:
        with pytest.raises(DeviceError, match="read-only"):
            device.set_property(prop, 10.0)

    def test_control_write_failure_raises_device_error(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        camera.fail_on.add("set_control_value")
        with pytest.raises(DeviceError, match="rejected control"):
            device.set_property(SensorProperty.GAMMA, 1.0)

    def test_query_failure_at_construction(self) -> None:
        camera = MockASICamera()
        camera.fail_on.add("get_controls")
        with pytest.raises(DeviceError, match="Cannot query"):
            ASISensorDevice(0, camera)


class TestNegotiateFrameRate:
    def test_minimum_bandwidth(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        """Verify the lowest USB bandwidth is selected for long exposures.

        Business context:
            Telescope exposures run for seconds; the lowest bandwidth
            allowance avoids dropped frames on shared USB hubs without
            costing anything at that rate.

        Assertion Strategy:
            - Returned value is the control minimum.
            - Bandwidth control written with that value.
            - High-speed mode disabled for full 16-bit readout.
        """
        assert device.negotiate_frame_rate(minimum=True) == 40.0
        assert camera.control_values[asi.ASI_BANDWIDTHOVERLOAD] == 40
        assert camera.control_values[asi.ASI_HIGH_SPEED_MODE] == 0

    def test_maximum_bandwidth(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        assert device.negotiate_frame_rate(minimum=False) == 100.0
        assert camera.control_values[asi.ASI_BANDWIDTHOVERLOAD] == 100

    def test_without_bandwidth_control(self) -> None:
        camera = MockASICamera(bandwidth=False)
        device = ASISensorDevice(0, camera)
        assert device.negotiate_frame_rate() == 100.0
        assert asi.ASI_BANDWIDTHOVERLOAD not in camera.control_values


class TestStreaming:
    def test_start_streaming_configures_raw16(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        device.start_streaming(settings_for(camera, exposure_ms=250.0, gain=12.0))

        assert (
            "set_roi",
            (),
            {"width": 64, "height": 48, "bins": 1, "image_type": asi.ASI_IMG_RAW16},
        ) in camera.calls
        assert camera.control_values[asi.ASI_EXPOSURE] == 250_000
        assert camera.control_values[asi.ASI_GAIN] == 12
        assert camera.names()[-1] == "start_video_capture"

    def test_start_failure_leaves_stream_stopped(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        camera.fail_on.add("start_video_capture")
        with pytest.raises(DeviceError, match="Cannot start streaming"):
            device.start_streaming(settings_for(camera))
        with pytest.raises(DeviceError, match="not streaming"):
            device.capture_frame(np.zeros((48, 64), dtype=np.uint16))

    def test_stop_when_not_streaming_is_noop(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        device.stop_streaming()
        assert "stop_video_capture" not in camera.names()

    def test_stop_streaming(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        device.start_streaming(settings_for(camera))
        device.stop_streaming()
        assert camera.names()[-1] == "stop_video_capture"


class TestCaptureFrame:
    def test_capture_copies_into_buffer(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        device.start_streaming(settings_for(camera, timeout_ms=5000))
        buffer = np.zeros((48, 64), dtype=np.uint16)

        device.capture_frame(buffer)

        assert int(buffer[0, 0]) == 1
        assert ("capture_video_frame", (), {"timeout": 5000}) in camera.calls

    def test_capture_requires_streaming(self, device: ASISensorDevice) -> None:
        with pytest.raises(DeviceError, match="not streaming"):
            device.capture_frame(np.zeros((48, 64), dtype=np.uint16))

    def test_sdk_error_raises_device_error(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        device.start_streaming(settings_for(camera))
        camera.fail_on.add("capture_video_frame")
        with pytest.raises(DeviceError, match="Capture failed") as exc_info:
            device.capture_frame(np.zeros((48, 64), dtype=np.uint16))
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_size_mismatch_raises(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        device.start_streaming(settings_for(camera))
        camera.frame_shape = (24, 32)
        with pytest.raises(DeviceError, match="samples"):
            device.capture_frame(np.zeros((48, 64), dtype=np.uint16))

    def test_flat_frame_is_reshaped(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        device.start_streaming(settings_for(camera))
        camera.frame_shape = (48 * 64,)
        buffer = np.zeros((48, 64), dtype=np.uint16)
        device.capture_frame(buffer)
        assert np.all(buffer == 1)


class TestClose:
    def test_close_stops_streaming_and_releases(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        device.start_streaming(settings_for(camera))
        device.close()
        assert camera.names()[-2:] == ["stop_video_capture", "close"]

    def test_close_is_idempotent(
        self, device: ASISensorDevice, camera: MockASICamera
    ) -> None:
        device.close()
        device.close()
        assert camera.names().count("close") == 1

    def test_close_error_is_logged(
        self, device: ASISensorDevice, camera: MockASICamera, log_stream
    ) -> None:
        camera.fail_on.add("close")
        device.close()
        assert "Error closing ASI camera" in log_stream.getvalue()


# =============================================================================
# ASISensorDriver
# =============================================================================


class TestDriver:
    def test_open_returns_device(self) -> None:
        sdk = MockASISDK()
        device = ASISensorDriver(sdk=sdk).open(0)
        assert isinstance(device, ASISensorDevice)
        assert device.get_property(SensorProperty.MAX_WIDTH) == 64.0

    def test_injected_sdk_is_not_initialized(self) -> None:
        sdk = MockASISDK()
        ASISensorDriver(sdk=sdk).open(0)
        assert sdk.init_paths == []

    @pytest.mark.parametrize("device_id", [1, 5, -1])
    def test_out_of_range_returns_none(self, device_id: int) -> None:
        assert ASISensorDriver(sdk=MockASISDK()).open(device_id) is None

    def test_open_failure_raises_device_error(self) -> None:
        sdk = MockASISDK()
        sdk.fail_open = True
        with pytest.raises(DeviceError, match="Cannot open ASI camera 0"):
            ASISensorDriver(sdk=sdk).open(0)

    def test_enumeration_failure_raises_device_error(self) -> None:
        sdk = MockASISDK()
        sdk.fail_count = True
        with pytest.raises(DeviceError, match="enumerate"):
            ASISensorDriver(sdk=sdk).open(0)

    def test_query_failure_closes_camera(self) -> None:
        camera = MockASICamera()
        camera.fail_on.add("get_camera_property")
        with pytest.raises(DeviceError):
            ASISensorDriver(sdk=MockASISDK([camera])).open(0)
        assert camera.names()[-1] == "close"

    def test_missing_library_raises_device_error(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path
    ) -> None:
        """Without an injected SDK the vendor library is resolved on open."""
        monkeypatch.setenv(
            "TELESCOPE_PREVIEW_ASI_LIBRARY", str(tmp_path / "missing.so")
        )
        with pytest.raises(DeviceError, match="initialization failed"):
            ASISensorDriver().open(0)
