"""ASI Sensor Driver - Real Hardware Implementation.

Wraps the zwoasi library to stream 16-bit monochrome frames from ZWO ASI
cameras following the SensorDriver protocol.

Streaming uses the SDK's video mode: the region of interest is set to the
full sensor in RAW16, exposure and gain are written as controls and
``capture_video_frame`` blocks for each frame.

Types:
    ASICameraProtocol: Protocol for the camera object (enables testing)
    ASISDKProtocol: Protocol for SDK module functions (enables testing)

Classes:
    ASISensorDevice: Opened camera handle
    ASISensorDriver: Driver opening cameras by index

Example:
    from telescope_preview.drivers.cameras.asi import ASISensorDriver

    driver = ASISensorDriver()
    device = driver.open(0)
    if device is not None:
        width = int(device.get_property(SensorProperty.MAX_WIDTH))
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol, final, runtime_checkable

import numpy as np
import zwoasi as asi

from telescope_preview.drivers.asi_sdk import get_sdk_library_path
from telescope_preview.drivers.cameras.types import (
    DeviceError,
    SensorProperty,
    SnapshotSettings,
)
from telescope_preview.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "ASICameraProtocol",
    "ASISDKProtocol",
    "ASISensorDevice",
    "ASISensorDriver",
    "PROPERTY_CONTROLS",
]

# =============================================================================
# Constants
# =============================================================================

# ASI gamma is an integer 1..100 where 50 leaves samples untouched
_GAMMA_UNITY = 50

#: Properties with an ASI control equivalent, and the scale from the float
#: property value to the integer control value. Others are accepted and
#: ignored because the SDK applies no such processing to RAW16 data.
PROPERTY_CONTROLS: Mapping[SensorProperty, tuple[int, float]] = MappingProxyType(
    {
        SensorProperty.GAMMA: (asi.ASI_GAMMA, float(_GAMMA_UNITY)),
    }
)


# =============================================================================
# SDK Protocol for Dependency Injection
# =============================================================================


@runtime_checkable
class ASICameraProtocol(Protocol):  # pragma: no cover
    """Protocol for ASI camera object (enables mocking in tests).

    Matches the subset of zwoasi.Camera interface used by this driver.
    """

    def get_camera_property(self) -> dict[str, Any]:
        """Get camera properties from hardware."""
        ...

    def get_controls(self) -> dict[str, dict[str, Any]]:
        """Get available controls and their ranges."""
        ...

    def set_control_value(self, control_type: int, value: int) -> None:
        """Set a control value."""
        ...

    def get_control_value(self, control_type: int) -> tuple[int, bool]:
        """Get current control value and auto status."""
        ...

    def set_roi(
        self,
        start_x: int | None = None,
        start_y: int | None = None,
        width: int | None = None,
        height: int | None = None,
        bins: int | None = None,
        image_type: int | None = None,
    ) -> None:
        """Set region of interest, binning and image type."""
        ...

    def start_video_capture(self) -> None:
        """Begin streaming."""
        ...

    def stop_video_capture(self) -> None:
        """End streaming."""
        ...

    def capture_video_frame(self, timeout: int | None = None) -> Any:
        """Block for the next streamed frame and return it as an ndarray."""
        ...

    def close(self) -> None:
        """Close camera and release resources."""
        ...


@runtime_checkable
class ASISDKProtocol(Protocol):  # pragma: no cover
    """Protocol for ASI SDK operations (enables mocking in tests).

    Example:
        class MockASISDK:
            def init(self, path: str) -> None:
                pass

            def get_num_cameras(self) -> int:
                return 1

            def open_camera(self, camera_id: int) -> ASICameraProtocol:
                return MockCamera()

        driver = ASISensorDriver(sdk=MockASISDK())
    """

    def init(self, library_path: str) -> None:
        """Initialize SDK with library path."""
        ...

    def get_num_cameras(self) -> int:
        """Return number of connected cameras."""
        ...

    def open_camera(self, camera_id: int) -> ASICameraProtocol:
        """Open camera by ID and return camera object.

        Note: Named open_camera to satisfy PEP8 (N802). The real zwoasi
        module uses Camera() which is automatically wrapped.
        """
        ...


class _ASISDKWrapper:
    """Adapts the zwoasi module to ASISDKProtocol."""

    def init(self, library_path: str) -> None:
        """Initialize SDK with library path."""
        asi.init(library_path)

    def get_num_cameras(self) -> int:
        """Return number of connected cameras."""
        result: int = asi.get_num_cameras()
        return result

    def open_camera(self, camera_id: int) -> ASICameraProtocol:
        """Open camera by ID and return camera object."""
        camera: ASICameraProtocol = asi.Camera(camera_id)
        return camera


# =============================================================================
# ASI Sensor Device
# =============================================================================


@final
class ASISensorDevice:
    """Opened ASI camera streaming RAW16 frames.

    Created by ASISensorDriver.open(). Every SDK failure is re-raised as
    :class:`DeviceError` so callers deal with one exception type.
    """

    __slots__ = (
        "_camera_id",
        "_camera",
        "_info",
        "_controls",
        "_settings",
        "_streaming",
        "_closed",
    )

    def __init__(self, camera_id: int, camera: ASICameraProtocol) -> None:
        """Wrap an opened zwoasi camera.

        Queries the camera properties and control table once; both are
        static for the lifetime of the handle.

        Args:
            camera_id: Camera index (0-based).
            camera: Opened zwoasi.Camera or a mock implementing the protocol.

        Raises:
            DeviceError: If the property or control query fails.
        """
        self._camera_id = camera_id
        self._camera = camera
        try:
            self._info = camera.get_camera_property()
            self._controls = camera.get_controls()
        except Exception as e:
            raise DeviceError(f"Cannot query ASI camera {camera_id}: {e}") from e
        self._settings: SnapshotSettings | None = None
        self._streaming = False
        self._closed = False

    def __repr__(self) -> str:
        return (
            f"ASISensorDevice(camera_id={self._camera_id}, "
            f"name={self._info.get('Name', '?')!r}, streaming={self._streaming})"
        )

    def _control(self, control_type: int) -> dict[str, Any] | None:
        """Look up a control definition by SDK control type."""
        for ctrl in self._controls.values():
            if ctrl.get("ControlType") == control_type:
                return ctrl
        return None

    def _set_control(self, control_type: int, value: int) -> None:
        try:
            self._camera.set_control_value(control_type, value)
        except Exception as e:
            raise DeviceError(
                f"ASI camera {self._camera_id} rejected control "
                f"{control_type}={value}: {e}"
            ) from e

    def get_property(self, name: SensorProperty) -> float:
        """Read a property from the cached camera info or a live control.

        Returns:
            Sensor size for MAX_WIDTH/MAX_HEIGHT, the scaled control value for
            mapped properties, 1.0 for processing the SDK does not perform.

        Raises:
            DeviceError: If the control read fails.
        """
        if name is SensorProperty.MAX_WIDTH:
            return float(self._info["MaxWidth"])
        if name is SensorProperty.MAX_HEIGHT:
            return float(self._info["MaxHeight"])

        mapping = PROPERTY_CONTROLS.get(name)
        if mapping is None:
            return 1.0
        control_type, scale = mapping
        try:
            value, _auto = self._camera.get_control_value(control_type)
        except Exception as e:
            raise DeviceError(
                f"Cannot read {name.value} from ASI camera {self._camera_id}: {e}"
            ) from e
        return value / scale

    def set_property(self, name: SensorProperty, value: float) -> None:
        """Write a mapped property; unmapped properties are a no-op.

        Raises:
            DeviceError: If the control write fails or the property is read-only.
        """
        if name in (SensorProperty.MAX_WIDTH, SensorProperty.MAX_HEIGHT):
            raise DeviceError(f"Property {name.value} is read-only")

        mapping = PROPERTY_CONTROLS.get(name)
        if mapping is None:
            logger.debug(
                "Property has no ASI equivalent, ignored",
                camera_id=self._camera_id,
                property=name.value,
                value=value,
            )
            return
        control_type, scale = mapping
        self._set_control(control_type, int(round(value * scale)))

    def negotiate_frame_rate(self, minimum: bool = True) -> float:
        """Pick the lowest (or highest) USB bandwidth allowance.

        ASI cameras have no frame-rate table; the rate is governed by the
        bandwidth-overload control. High-speed mode is turned off so 16-bit
        readout runs at full ADC depth.

        Returns:
            The bandwidth percentage selected.

        Raises:
            DeviceError: If a control write fails.
        """
        bandwidth = self._control(asi.ASI_BANDWIDTHOVERLOAD)
        if bandwidth is None:
            selected = 100.0
        else:
            selected = float(bandwidth["MinValue"] if minimum else bandwidth["MaxValue"])
            self._set_control(asi.ASI_BANDWIDTHOVERLOAD, int(selected))
        if self._control(asi.ASI_HIGH_SPEED_MODE) is not None:
            self._set_control(asi.ASI_HIGH_SPEED_MODE, 0)
        logger.debug(
            "Negotiated USB bandwidth",
            camera_id=self._camera_id,
            bandwidth_percent=selected,
        )
        return selected

    def start_streaming(self, settings: SnapshotSettings) -> None:
        """Configure RAW16 full-frame video mode and start it.

        Raises:
            DeviceError: If any SDK call fails. Streaming is left stopped.
        """
        fmt = settings.format
        try:
            self._camera.set_roi(
                width=fmt.width,
                height=fmt.height,
                bins=fmt.binning_x,
                image_type=asi.ASI_IMG_RAW16,
            )
        except Exception as e:
            raise DeviceError(
                f"Cannot set ROI on ASI camera {self._camera_id}: {e}"
            ) from e
        self._set_control(asi.ASI_EXPOSURE, int(round(settings.exposure_ms * 1000)))
        self._set_control(asi.ASI_GAIN, int(round(settings.gain)))
        try:
            self._camera.start_video_capture()
        except Exception as e:
            raise DeviceError(
                f"Cannot start streaming on ASI camera {self._camera_id}: {e}"
            ) from e
        self._settings = settings
        self._streaming = True
        logger.debug(
            "Streaming started",
            camera_id=self._camera_id,
            exposure_ms=settings.exposure_ms,
            gain=settings.gain,
        )

    def stop_streaming(self) -> None:
        """Stop video mode. No-op when not streaming.

        Raises:
            DeviceError: If the SDK call fails.
        """
        if not self._streaming:
            return
        self._streaming = False
        try:
            self._camera.stop_video_capture()
        except Exception as e:
            raise DeviceError(
                f"Cannot stop streaming on ASI camera {self._camera_id}: {e}"
            ) from e

    def capture_frame(self, buffer: NDArray[np.uint16]) -> None:
        """Block for the next frame and copy it into ``buffer``.

        Raises:
            DeviceError: If not streaming, on SDK error or timeout, or if the
                frame does not match the buffer size.
        """
        if not self._streaming or self._settings is None:
            raise DeviceError(f"ASI camera {self._camera_id} is not streaming")
        try:
            frame = self._camera.capture_video_frame(timeout=self._settings.timeout_ms)
        except Exception as e:
            raise DeviceError(
                f"Capture failed on ASI camera {self._camera_id}: {e}"
            ) from e
        frame = np.asarray(frame)
        if frame.size != buffer.size:
            raise DeviceError(
                f"Frame has {frame.size} samples, expected {buffer.size}"
            )
        np.copyto(buffer, frame.reshape(buffer.shape), casting="unsafe")

    def close(self) -> None:
        """Stop streaming and release the camera.

        Safe to call multiple times. Errors are logged, not raised.
        """
        if self._closed:
            logger.debug("ASI camera already closed, skipping", camera_id=self._camera_id)
            return
        self._closed = True
        try:
            if self._streaming:
                self._streaming = False
                self._camera.stop_video_capture()
            self._camera.close()
            logger.info("Closed ASI camera", camera_id=self._camera_id)
        except Exception as e:
            logger.warning(
                "Error closing ASI camera", camera_id=self._camera_id, error=str(e)
            )


# =============================================================================
# ASI Sensor Driver
# =============================================================================


@final
class ASISensorDriver:
    """Sensor driver for real ZWO hardware.

    The SDK library is loaded lazily on the first ``open`` so the program
    starts, and the operator can retry ``connect``, with no camera attached.

    Example:
        # Production use
        driver = ASISensorDriver()

        # Testing with mock
        driver = ASISensorDriver(sdk=MockASISDK())
    """

    __slots__ = ("_sdk", "_sdk_initialized")

    def __init__(self, sdk: ASISDKProtocol | None = None) -> None:
        """Create the driver.

        Args:
            sdk: SDK implementation for dependency injection. None uses the
                real zwoasi module. Injected SDKs are treated as initialized.
        """
        self._sdk: ASISDKProtocol = sdk if sdk is not None else _ASISDKWrapper()
        self._sdk_initialized = sdk is not None

    def _ensure_sdk_initialized(self) -> None:
        """Load the SDK library on first use.

        Raises:
            DeviceError: If the library cannot be found or loaded.
        """
        if self._sdk_initialized:
            return
        try:
            sdk_path = get_sdk_library_path()
            self._sdk.init(sdk_path)
        except Exception as e:
            logger.error("Failed to initialize ASI SDK", error=str(e))
            raise DeviceError(f"ASI SDK initialization failed: {e}") from e
        self._sdk_initialized = True
        logger.info("ASI SDK initialized", library=sdk_path)

    def open(self, device_id: int) -> ASISensorDevice | None:
        """Open a camera by index.

        Args:
            device_id: Camera index (0-based).

        Returns:
            Opened device, or None if fewer than ``device_id + 1`` cameras
            are connected.

        Raises:
            DeviceError: If the SDK cannot be loaded or the camera cannot be
                opened (e.g. claimed by another process).
        """
        self._ensure_sdk_initialized()

        try:
            num_cameras = self._sdk.get_num_cameras()
        except Exception as e:
            raise DeviceError(f"Cannot enumerate ASI cameras: {e}") from e
        if not 0 <= device_id < num_cameras:
            logger.info(
                "No ASI camera with that index",
                device_id=device_id,
                num_cameras=num_cameras,
            )
            return None

        try:
            camera = self._sdk.open_camera(device_id)
        except Exception as e:
            logger.error("Failed to open ASI camera", device_id=device_id, error=str(e))
            raise DeviceError(f"Cannot open ASI camera {device_id}: {e}") from e

        try:
            device = ASISensorDevice(device_id, camera)
        except DeviceError:
            camera.close()
            raise
        logger.info("Opened ASI camera", device_id=device_id)
        return device
