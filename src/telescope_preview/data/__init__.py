"""Frame persistence: collision-free naming and 16-bit TIFF output.

Example:
    from pathlib import Path

    from telescope_preview.data import FrameWriter, UniqueFileNamer

    writer = FrameWriter(UniqueFileNamer(Path.home() / "Desktop"))
    path = writer.write_frame("orion", raw_frame)
"""

from telescope_preview.data.frame_writer import (
    FrameWriteError,
    FrameWriter,
    UniqueFileNamer,
    telescope_basename,
)

__all__ = [
    "FrameWriteError",
    "FrameWriter",
    "UniqueFileNamer",
    "telescope_basename",
]
