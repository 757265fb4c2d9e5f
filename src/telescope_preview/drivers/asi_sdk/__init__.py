"""ZWO ASI Camera 2 SDK location.

The ``zwoasi`` package is a ctypes binding and needs the path of the vendor's
``libASICamera2`` shared library before any camera can be opened.

Resolution order:
    1. ``TELESCOPE_PREVIEW_ASI_LIBRARY`` environment variable
    2. Library copied next to this module under ``<arch>/``

Source: https://www.zwoastro.com/software/

Usage:
    import zwoasi as asi
    from telescope_preview.drivers.asi_sdk import get_sdk_library_path

    asi.init(get_sdk_library_path())
"""

import os
import platform
from pathlib import Path

SDK_VERSION = "1.40"

#: Environment variable naming an explicit SDK library path.
LIBRARY_ENV_VAR = "TELESCOPE_PREVIEW_ASI_LIBRARY"

# Map platform.machine() to SDK library subdirectory
_ARCH_MAP = {
    "x86_64": "x64",
    "AMD64": "x64",
    "aarch64": "armv8",
    "armv7l": "armv7",
}


def get_sdk_library_path() -> str:
    """Get the ASI Camera SDK library path for this machine.

    An explicit path in ``TELESCOPE_PREVIEW_ASI_LIBRARY`` wins. Otherwise the
    architecture reported by ``platform.machine()`` selects the bundled
    ``<arch>/libASICamera2.so.<version>`` beside this module.

    Business context: ZWO ships one binary per architecture and loading the
    wrong one fails with an exec format error deep inside ctypes. Resolving
    and checking the path up front turns that into a readable message when
    the operator runs ``connect``.

    Returns:
        Absolute path string to the SDK library.

    Raises:
        RuntimeError: If the override does not exist, the architecture is
            unsupported, or the bundled library is missing.

    Example:
        >>> os.environ["TELESCOPE_PREVIEW_ASI_LIBRARY"] = "/opt/asi/libASICamera2.so"
        >>> get_sdk_library_path()
        '/opt/asi/libASICamera2.so'
    """
    override = os.environ.get(LIBRARY_ENV_VAR)
    if override:
        override_path = Path(override).expanduser()
        if not override_path.exists():
            raise RuntimeError(
                f"ASI SDK library from {LIBRARY_ENV_VAR} not found at {override_path}"
            )
        return str(override_path)

    machine = platform.machine()
    arch_dir = _ARCH_MAP.get(machine)

    if arch_dir is None:
        supported = list(_ARCH_MAP.keys())
        raise RuntimeError(
            f"Unsupported architecture: {machine}. "
            f"Supported architectures: {supported}"
        )

    lib_path = Path(__file__).parent / arch_dir / f"libASICamera2.so.{SDK_VERSION}"

    if not lib_path.exists():
        raise RuntimeError(
            f"ASI SDK library not found at {lib_path}. "
            f"Install the SDK there or set {LIBRARY_ENV_VAR}."
        )

    return str(lib_path)
