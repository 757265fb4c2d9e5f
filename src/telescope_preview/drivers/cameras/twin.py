"""Digital Twin Sensor Driver - Simulated Hardware for Testing.

Provides a simulated 16-bit monochrome sensor for development and testing
without physical hardware. Follows the SensorDriver protocol for drop-in
replacement of the ASI driver.

Image Sources:
    Synthetic: Deterministic star field scaled by exposure and gain, plus noise
    Directory: Cycle through images in a folder
    File: Return same image repeatedly

Enums:
    ImageSource: Source type for simulated frames

Classes:
    DigitalTwinConfig: Sensor geometry, image source and fault injection
    DigitalTwinSensorDriver: Driver opening simulated devices
    DigitalTwinSensorDevice: Opened simulated device

Factory Functions:
    create_file_sensor: Twin that returns a single image
    create_directory_sensor: Twin that cycles through an image directory

Example:
    from telescope_preview.drivers.cameras.twin import (
        DigitalTwinConfig,
        DigitalTwinSensorDriver,
    )

    driver = DigitalTwinSensorDriver(DigitalTwinConfig(width=320, height=240))
    device = driver.open(0)
    device.start_streaming(SnapshotSettings(format=FrameFormat(320, 240)))
    buffer = np.zeros((240, 320), dtype=np.uint16)
    device.capture_frame(buffer)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, final

import cv2
import numpy as np

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
    "DigitalTwinConfig",
    "DigitalTwinSensorDevice",
    "DigitalTwinSensorDriver",
    "ImageSource",
    "create_directory_sensor",
    "create_file_sensor",
]


class ImageSource(Enum):
    """Image source for the digital twin sensor."""

    SYNTHETIC = "synthetic"  # Generate a star field
    DIRECTORY = "directory"  # Cycle through images in a folder
    FILE = "file"  # Return same image repeatedly


# =============================================================================
# Constants
# =============================================================================

_IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".tif", ".tiff"})

# Synthetic star field
_SKY_BACKGROUND = 800.0  # ADU at 1 s, unity gain
_STAR_DENSITY = 1 / 4000  # stars per pixel
_STAR_PEAK_MAX = 40_000.0  # brightest star peak at 1 s, default gain
_STAR_SIGMA_PX = 1.4
_READ_NOISE_ADU = 40.0
_REFERENCE_GAIN = 4.0

# Simulated ASI120MM-S geometry
_DEFAULT_WIDTH = 1280
_DEFAULT_HEIGHT = 960


@dataclass
class DigitalTwinConfig:
    """Configuration for digital twin sensor behavior.

    Attributes:
        image_source: Where frames come from.
        image_path: File or directory for FILE / DIRECTORY sources.
        cycle_images: Loop back to the first image after the last one.
        width: Reported sensor width.
        height: Reported sensor height.
        realtime: Sleep for the exposure time on each capture, so the loop
            runs at the rate a real camera would.
        fail_after: Raise DeviceError on every capture after this many frames,
            simulating an unplugged camera. None never fails.
        frame_rates: Frame rates the simulated device offers.
        num_devices: Device IDs ``0 .. num_devices-1`` can be opened.
        seed: Seed for the star field and noise.
    """

    image_source: ImageSource = ImageSource.SYNTHETIC
    image_path: Path | None = None
    cycle_images: bool = True
    width: int = _DEFAULT_WIDTH
    height: int = _DEFAULT_HEIGHT
    realtime: bool = False
    fail_after: int | None = None
    frame_rates: tuple[float, ...] = (2.5, 5.0, 7.5, 15.0)
    num_devices: int = 1
    seed: int = 0

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Sensor size must be positive, got {self.width}x{self.height}"
            )
        if not self.frame_rates:
            raise ValueError("frame_rates must not be empty")


@final
class DigitalTwinSensorDriver:
    """Digital twin sensor driver for development without hardware.

    Example:
        # Synthetic star field (default)
        driver = DigitalTwinSensorDriver()

        # Frames from a directory of captures
        config = DigitalTwinConfig(
            image_source=ImageSource.DIRECTORY,
            image_path=Path("/data/test_images"),
        )
        driver = DigitalTwinSensorDriver(config)
    """

    __slots__ = ("config",)

    def __init__(self, config: DigitalTwinConfig | None = None) -> None:
        """Create the driver.

        Args:
            config: Simulation settings. Defaults to a synthetic 1280x960
                sensor that never fails.
        """
        self.config = config or DigitalTwinConfig()
        logger.info(
            "Digital twin sensor driver initialized",
            image_source=self.config.image_source.value,
            num_devices=self.config.num_devices,
        )

    def __repr__(self) -> str:
        return (
            f"DigitalTwinSensorDriver("
            f"source={self.config.image_source.value}, "
            f"devices={self.config.num_devices})"
        )

    def open(self, device_id: int) -> DigitalTwinSensorDevice | None:
        """Open a simulated device.

        Returns:
            The device, or None when ``device_id`` is out of range.
        """
        if not 0 <= device_id < self.config.num_devices:
            logger.info("No simulated sensor with that ID", device_id=device_id)
            return None
        logger.info("Opening simulated sensor", device_id=device_id)
        return DigitalTwinSensorDevice(device_id, self.config)


@final
class DigitalTwinSensorDevice:
    """Opened simulated sensor.

    Behaves like an ASI device in video mode: frames are only available
    while streaming, captures block for the exposure when ``realtime`` is
    set, and after ``fail_after`` frames every capture raises DeviceError.
    """

    __slots__ = (
        "_device_id",
        "_config",
        "_properties",
        "_settings",
        "_streaming",
        "_closed",
        "_frames_captured",
        "_frame_rate",
        "_rng",
        "_star_field",
        "_image_files",
        "_image_index",
        "_file_frame",
    )

    def __init__(self, device_id: int, config: DigitalTwinConfig) -> None:
        self._device_id = device_id
        self._config = config
        self._properties: dict[SensorProperty, float] = {
            SensorProperty.MAX_WIDTH: float(config.width),
            SensorProperty.MAX_HEIGHT: float(config.height),
            SensorProperty.GAMMA: 1.0,
            SensorProperty.DIGITAL_GAIN: 1.0,
            SensorProperty.CONTRAST: 1.0,
            SensorProperty.BRIGHTNESS: 1.0,
        }
        self._settings: SnapshotSettings | None = None
        self._streaming = False
        self._closed = False
        self._frames_captured = 0
        self._frame_rate = config.frame_rates[0]
        self._rng = np.random.default_rng(config.seed + device_id)
        self._star_field: NDArray[np.float32] | None = None
        self._image_files: list[Path] = []
        self._image_index = 0
        self._file_frame: NDArray[np.uint16] | None = None
        self._load_image_files()

    def __repr__(self) -> str:
        return (
            f"DigitalTwinSensorDevice(device_id={self._device_id}, "
            f"streaming={self._streaming}, frames={self._frames_captured})"
        )

    @property
    def frames_captured(self) -> int:
        """Frames delivered since open."""
        return self._frames_captured

    @property
    def is_streaming(self) -> bool:
        """True between start_streaming and stop_streaming."""
        return self._streaming

    @property
    def settings(self) -> SnapshotSettings | None:
        """Settings passed to the last start_streaming call."""
        return self._settings

    @property
    def frame_rate(self) -> float:
        """Frame rate chosen by the last negotiation."""
        return self._frame_rate

    def _check_open(self) -> None:
        if self._closed:
            raise DeviceError(f"Simulated sensor {self._device_id} is closed")

    def _load_image_files(self) -> None:
        """Collect sorted image paths for DIRECTORY mode."""
        if self._config.image_source != ImageSource.DIRECTORY:
            return
        path = self._config.image_path
        if path is None or not path.is_dir():
            logger.warning(
                "Image directory missing, using synthetic frames", path=str(path)
            )
            return
        self._image_files = sorted(
            f for f in path.iterdir() if f.suffix.lower() in _IMAGE_EXTENSIONS
        )

    # -------------------------------------------------------------------------
    # Properties and streaming
    # -------------------------------------------------------------------------

    def get_property(self, name: SensorProperty) -> float:
        """Read a simulated property."""
        self._check_open()
        return self._properties[name]

    def set_property(self, name: SensorProperty, value: float) -> None:
        """Write a simulated property.

        Raises:
            DeviceError: If closed or the property is read-only.
        """
        self._check_open()
        if name in (SensorProperty.MAX_WIDTH, SensorProperty.MAX_HEIGHT):
            raise DeviceError(f"Property {name.value} is read-only")
        self._properties[name] = float(value)

    def negotiate_frame_rate(self, minimum: bool = True) -> float:
        """Select the lowest (or highest) simulated frame rate."""
        self._check_open()
        rates = self._config.frame_rates
        self._frame_rate = min(rates) if minimum else max(rates)
        return self._frame_rate

    def start_streaming(self, settings: SnapshotSettings) -> None:
        """Start simulated streaming.

        Raises:
            DeviceError: If closed or the format does not fit the sensor.
        """
        self._check_open()
        fmt = settings.format
        if fmt.width > self._config.width or fmt.height > self._config.height:
            raise DeviceError(
                f"Format {fmt.width}x{fmt.height} exceeds sensor "
                f"{self._config.width}x{self._config.height}"
            )
        self._settings = settings
        self._streaming = True
        logger.debug(
            "Simulated streaming started",
            device_id=self._device_id,
            exposure_ms=settings.exposure_ms,
            gain=settings.gain,
        )

    def stop_streaming(self) -> None:
        """Stop simulated streaming."""
        self._check_open()
        self._streaming = False

    # -------------------------------------------------------------------------
    # Capture
    # -------------------------------------------------------------------------

    def capture_frame(self, buffer: NDArray[np.uint16]) -> None:
        """Produce one frame into ``buffer``.

        Raises:
            DeviceError: If closed, not streaming, the buffer shape does not
                match the streaming format, or the simulated unplug triggered.
        """
        self._check_open()
        if not self._streaming or self._settings is None:
            raise DeviceError(f"Simulated sensor {self._device_id} is not streaming")
        settings = self._settings
        if buffer.shape != settings.format.shape:
            raise DeviceError(
                f"Buffer shape {buffer.shape} does not match "
                f"format {settings.format.shape}"
            )

        fail_after = self._config.fail_after
        if fail_after is not None and self._frames_captured >= fail_after:
            raise DeviceError(
                f"Simulated sensor {self._device_id} disconnected "
                f"after {self._frames_captured} frames"
            )

        if self._config.realtime:
            time.sleep(settings.exposure_ms / 1000.0)

        source = self._config.image_source
        frame: NDArray[Any] | None = None
        if source == ImageSource.FILE:
            frame = self._frame_from_file()
        elif source == ImageSource.DIRECTORY:
            frame = self._frame_from_directory()
        if frame is None:
            frame = self._synthetic_frame(settings)

        h, w = buffer.shape
        np.copyto(buffer, frame[:h, :w])
        self._frames_captured += 1

    def _frame_from_file(self) -> NDArray[np.uint16] | None:
        """Load and cache the configured image; None falls back to synthetic."""
        if self._file_frame is None and self._config.image_path is not None:
            self._file_frame = self._load_image(self._config.image_path)
        return self._file_frame

    def _frame_from_directory(self) -> NDArray[np.uint16] | None:
        """Load the next image and advance; None falls back to synthetic."""
        if not self._image_files:
            return None

        image_path = self._image_files[self._image_index]
        self._image_index += 1
        if self._config.cycle_images:
            self._image_index %= len(self._image_files)
        else:
            self._image_index = min(self._image_index, len(self._image_files) - 1)

        return self._load_image(image_path)

    def _load_image(self, path: Path) -> NDArray[np.uint16] | None:
        """Read an image as 16-bit grayscale at sensor resolution.

        Colour images are converted to gray, 8-bit samples are shifted into
        the high byte so full scale stays full scale.
        """
        img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if img is None:
            logger.warning("Unreadable image, using synthetic frame", path=str(path))
            return None

        if img.ndim == 3:
            code = cv2.COLOR_BGRA2GRAY if img.shape[2] == 4 else cv2.COLOR_BGR2GRAY
            img = cv2.cvtColor(img, code)

        if img.dtype == np.uint8:
            img = img.astype(np.uint16) << 8
        elif img.dtype != np.uint16:
            img = np.clip(img, 0, 65535).astype(np.uint16)

        target = (self._config.width, self._config.height)
        if (img.shape[1], img.shape[0]) != target:
            img = cv2.resize(img, target, interpolation=cv2.INTER_AREA)
        return img

    def _synthetic_frame(self, settings: SnapshotSettings) -> NDArray[np.uint16]:
        """Render the star field for the current exposure and gain.

        Signal scales linearly with exposure seconds and with gain relative
        to the default gain; read noise is added on top and the result is
        clipped to the 16-bit range.
        """
        if self._star_field is None:
            self._star_field = self._make_star_field()

        scale = (settings.exposure_ms / 1000.0) * (settings.gain / _REFERENCE_GAIN)
        signal = (self._star_field + _SKY_BACKGROUND) * scale
        noise = self._rng.normal(0.0, _READ_NOISE_ADU, signal.shape)
        return np.clip(signal + noise, 0, 65535).astype(np.uint16)

    def _make_star_field(self) -> NDArray[np.float32]:
        """Generate the fixed star field for this device's seed."""
        width, height = self._config.width, self._config.height
        field_rng = np.random.default_rng(self._config.seed)
        count = max(10, int(width * height * _STAR_DENSITY))

        stars = np.zeros((height, width), dtype=np.float32)
        xs = field_rng.integers(0, width, count)
        ys = field_rng.integers(0, height, count)
        # Power-law brightness: many faint stars, few bright ones
        peaks = _STAR_PEAK_MAX * field_rng.power(0.3, count)
        stars[ys, xs] = peaks.astype(np.float32)

        # Blurring spreads each point; rescale so peaks keep their value
        blurred = cv2.GaussianBlur(stars, (0, 0), _STAR_SIGMA_PX)
        return blurred * np.float32(2 * np.pi * _STAR_SIGMA_PX**2)

    def close(self) -> None:
        """Close the simulated device. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._streaming = False
        logger.info(
            "Closed simulated sensor",
            device_id=self._device_id,
            frames=self._frames_captured,
        )


# Convenience functions for creating pre-configured twins
def create_file_sensor(
    image_path: Path | str, **options: Any
) -> DigitalTwinSensorDriver:
    """Create a digital twin that always returns the same image.

    Args:
        image_path: Image file readable by OpenCV (PNG, JPEG, TIFF).
        **options: Other DigitalTwinConfig fields.

    Example:
        driver = create_file_sensor("/data/m42_16bit.tiff", realtime=True)
    """
    config = DigitalTwinConfig(
        image_source=ImageSource.FILE,
        image_path=Path(image_path),
        **options,
    )
    return DigitalTwinSensorDriver(config)


def create_directory_sensor(
    image_dir: Path | str,
    cycle: bool = True,
    **options: Any,
) -> DigitalTwinSensorDriver:
    """Create a digital twin that cycles through images in a directory.

    Args:
        image_dir: Directory of images, returned in sorted order.
        cycle: Loop back to the first image after the last (default True).
        **options: Other DigitalTwinConfig fields.
    """
    config = DigitalTwinConfig(
        image_source=ImageSource.DIRECTORY,
        image_path=Path(image_dir),
        cycle_images=cycle,
        **options,
    )
    return DigitalTwinSensorDriver(config)
