"""Sensor driver module.

Provides streaming capture from ZWO ASI monochrome cameras (real hardware)
and a digital twin simulation for development without hardware.

Protocols:
    SensorDriver: Opens a device by numeric ID
    SensorDevice: Property access, streaming control and frame capture

Implementations:
    ASISensorDriver/ASISensorDevice: Real ZWO ASI cameras via zwoasi
    DigitalTwinSensorDriver/DigitalTwinSensorDevice: Simulated sensor
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from telescope_preview.drivers.cameras.asi import (
    ASISensorDevice,
    ASISensorDriver,
)
from telescope_preview.drivers.cameras.twin import (
    DigitalTwinConfig,
    DigitalTwinSensorDevice,
    DigitalTwinSensorDriver,
    ImageSource,
    create_directory_sensor,
    create_file_sensor,
)
from telescope_preview.drivers.cameras.types import (
    PROCESSING_PROPERTIES,
    DeviceError,
    FrameFormat,
    PixelFormat,
    SensorProperty,
    ShutterType,
    SnapshotSettings,
)

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray


@runtime_checkable
class SensorDevice(Protocol):  # pragma: no cover
    """Protocol for an opened sensor handle.

    Implemented by ASISensorDevice and DigitalTwinSensorDevice. Every method
    may raise :class:`DeviceError`; callers treat any failure as loss of the
    device.

    Business context: The capture session codes against this protocol so the
    acquisition loop runs identically against a camera on the USB bus and
    against the simulated sensor used in tests and demos.
    """

    def get_property(self, name: SensorProperty) -> float:
        """Read a device property.

        Args:
            name: Property to read, e.g. ``SensorProperty.MAX_WIDTH``.

        Returns:
            Current value as a float.

        Raises:
            DeviceError: If the device rejects the read.
        """
        ...

    def set_property(self, name: SensorProperty, value: float) -> None:
        """Write a device property.

        Properties the device has no equivalent for are ignored.

        Raises:
            DeviceError: If the device rejects the write.
        """
        ...

    def negotiate_frame_rate(self, minimum: bool = True) -> float:
        """Select the lowest (or highest) supported frame rate.

        Long exposures dominate the frame period, so the loop asks for the
        minimum rate, which also minimises USB bandwidth.

        Returns:
            The frame rate selected, in frames per second.
        """
        ...

    def start_streaming(self, settings: SnapshotSettings) -> None:
        """Enable streaming with the given configuration."""
        ...

    def stop_streaming(self) -> None:
        """Disable streaming. Safe to call when not streaming."""
        ...

    def capture_frame(self, buffer: NDArray[np.uint16]) -> None:
        """Block until one frame arrives and copy it into ``buffer``.

        Args:
            buffer: Preallocated ``uint16`` array of shape ``(height, width)``
                matching the streaming format. Overwritten in place.

        Raises:
            DeviceError: On timeout, disconnection or when not streaming.
        """
        ...

    def close(self) -> None:
        """Release the device. Idempotent."""
        ...


@runtime_checkable
class SensorDriver(Protocol):  # pragma: no cover
    """Protocol for opening sensor devices.

    Implemented by ASISensorDriver and DigitalTwinSensorDriver.
    """

    def open(self, device_id: int) -> SensorDevice | None:
        """Open a device by its zero-based ID.

        Returns:
            The opened device, or None when no device has that ID.

        Raises:
            DeviceError: If the device exists but cannot be opened.
        """
        ...


__all__ = [
    # Protocols
    "SensorDevice",
    "SensorDriver",
    # Types
    "PROCESSING_PROPERTIES",
    "DeviceError",
    "FrameFormat",
    "PixelFormat",
    "SensorProperty",
    "ShutterType",
    "SnapshotSettings",
    # ASI
    "ASISensorDriver",
    "ASISensorDevice",
    # Digital twin
    "DigitalTwinConfig",
    "DigitalTwinSensorDriver",
    "DigitalTwinSensorDevice",
    "ImageSource",
    "create_directory_sensor",
    "create_file_sensor",
]
