"""Driver configuration and factory.

Supports switching between the real ASI driver and the digital twin for
testing and development without physical hardware.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from telescope_preview.drivers.cameras import (
    ASISensorDriver,
    DigitalTwinConfig,
    DigitalTwinSensorDriver,
    ImageSource,
    SensorDriver,
)


class DriverMode(Enum):
    """Driver mode selection."""

    HARDWARE = "hardware"  # Real ZWO ASI camera
    DIGITAL_TWIN = "digital_twin"  # Simulated sensor


def _default_save_root() -> Path:
    """Return the root directory for saved frames (``~/Desktop``).

    The directory need not exist; it is created on the first save.
    """
    return Path.home() / "Desktop"


@dataclass
class DriverConfig:
    """Configuration for driver selection and frame output.

    Attributes:
        mode: HARDWARE for a real camera, DIGITAL_TWIN for simulation.
        device_id: Camera index opened by ``connect`` (default 0).
        save_root: Root directory for saved frames; ``savedir`` hints are
            resolved below it.
        stub_image_path: Image file or directory for the digital twin
            (None = synthetic star field).
        twin_realtime: Digital twin sleeps for the exposure time per frame.
    """

    mode: DriverMode = DriverMode.DIGITAL_TWIN
    device_id: int = 0
    save_root: Path = field(default_factory=_default_save_root)
    stub_image_path: Path | None = None
    twin_realtime: bool = True


class DriverFactory:
    """Factory for creating the sensor driver based on configuration.

    Thread Safety:
        Not thread-safe. Configure once at startup before the capture
        thread starts.
    """

    def __init__(self, config: DriverConfig | None = None):
        """Create the factory.

        Args:
            config: Driver settings. None uses DriverConfig() defaults
                (digital twin, device 0, ``~/Desktop``).

        Example:
            >>> factory = DriverFactory()  # Digital twin mode
            >>> driver = factory.create_sensor_driver()
        """
        self.config = config or DriverConfig()

    def create_sensor_driver(self) -> SensorDriver:
        """Create the sensor driver for the configured mode.

        In DIGITAL_TWIN mode a ``stub_image_path`` that is a directory
        cycles through its images, a file is returned on every frame, and no
        path gives the synthetic star field.

        Returns:
            ASISensorDriver in HARDWARE mode, DigitalTwinSensorDriver otherwise.

        Example:
            >>> factory = DriverFactory(DriverConfig(mode=DriverMode.HARDWARE))
            >>> driver = factory.create_sensor_driver()  # ASISensorDriver
        """
        if self.config.mode == DriverMode.HARDWARE:
            return ASISensorDriver()

        path = self.config.stub_image_path
        if path is None:
            source = ImageSource.SYNTHETIC
        elif path.is_dir():
            source = ImageSource.DIRECTORY
        else:
            source = ImageSource.FILE
        twin_config = DigitalTwinConfig(
            image_source=source,
            image_path=path,
            realtime=self.config.twin_realtime,
        )
        return DigitalTwinSensorDriver(twin_config)


# =============================================================================
# Global Singletons
# =============================================================================
# Not thread-safe. Configure once at startup before spawning threads.

_factory: DriverFactory | None = None


def get_factory() -> DriverFactory:
    """Get the global driver factory, creating a default one on first use.

    Example:
        >>> factory = get_factory()  # Default digital twin
        >>> use_hardware()
        >>> get_factory().config.mode
        <DriverMode.HARDWARE: 'hardware'>
    """
    global _factory
    if _factory is None:
        _factory = DriverFactory()
    return _factory


def configure(config: DriverConfig) -> None:
    """Replace the global factory with one using ``config``."""
    global _factory
    _factory = DriverFactory(config)


def use_digital_twin() -> None:
    """Switch the global factory to DIGITAL_TWIN mode, keeping other settings."""
    get_factory().config.mode = DriverMode.DIGITAL_TWIN


def use_hardware() -> None:
    """Switch the global factory to HARDWARE mode, keeping other settings."""
    get_factory().config.mode = DriverMode.HARDWARE
