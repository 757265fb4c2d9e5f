"""Sensor drivers for telescope-preview.

Supports two modes:
- HARDWARE: A real ZWO ASI camera
- DIGITAL_TWIN: A simulated sensor for testing without hardware

Use drivers.config to switch modes:
    from telescope_preview.drivers import config
    config.use_digital_twin()  # or config.use_hardware()
"""

from telescope_preview.drivers import asi_sdk, cameras, config
from telescope_preview.drivers.config import (
    DriverConfig,
    DriverFactory,
    DriverMode,
    configure,
    get_factory,
    use_digital_twin,
    use_hardware,
)

__all__ = [
    # Submodules
    "asi_sdk",
    "cameras",
    "config",
    # Configuration
    "DriverMode",
    "DriverConfig",
    "DriverFactory",
    "get_factory",
    "configure",
    "use_digital_twin",
    "use_hardware",
]
