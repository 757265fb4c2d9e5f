"""Raw frame persistence.

Saved frames are single-frame 16-bit grayscale TIFFs named after the local
time they were written:

    <root>[/<directory hint>]/telescope.<M>-<D>.<H>-<M>-<S>[.<N>].tiff

Fields are not zero padded. When the bare name is taken the first free
numeric suffix, scanning up from ``.1``, is used, so several frames written
in the same second sort in capture order and nothing is ever overwritten.

Example:
    namer = UniqueFileNamer(Path.home() / "Desktop")
    writer = FrameWriter(namer)
    path = writer.write_frame("m42", frame)
    # ~/Desktop/m42/telescope.3-14.21-5-9.tiff
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from telescope_preview.observability import get_logger
from telescope_preview.utils.image import TIFF_EXTENSION, CV2ImageEncoder, ImageEncoder

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "FrameWriteError",
    "FrameWriter",
    "UniqueFileNamer",
    "telescope_basename",
]

# Exclusive-create attempts before giving up on a directory that keeps
# gaining files between the scan and the open.
_MAX_CREATE_ATTEMPTS = 100


class FrameWriteError(OSError):
    """Raised when a frame cannot be encoded or written."""


def telescope_basename(now: datetime) -> str:
    """Return the file stem for a frame written at ``now``.

    Example:
        >>> telescope_basename(datetime(2024, 3, 14, 21, 5, 9))
        'telescope.3-14.21-5-9'
    """
    return (
        f"telescope.{now.month}-{now.day}."
        f"{now.hour}-{now.minute}-{now.second}"
    )


class UniqueFileNamer:
    """Resolves collision-free output paths below a root directory.

    Args:
        root: Directory all frames are written under.
        clock: Returns the local time used for names. Injectable for tests.
    """

    def __init__(
        self,
        root: Path | str,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._root = Path(root).expanduser()
        self._clock = clock

    @property
    def root(self) -> Path:
        """Root directory for saved frames."""
        return self._root

    def directory_for(self, hint: str | None) -> Path:
        """Resolve and create the output directory for ``hint``.

        A None, empty or whitespace-only hint means the root itself. Relative
        hints are joined below the root; an absolute hint replaces it.

        Raises:
            OSError: If the directory cannot be created.
        """
        directory = self._root
        if hint is not None and hint.strip():
            directory = self._root / Path(hint.strip()).expanduser()
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def unique_path(
        self, directory: Path, base: str, extension: str = TIFF_EXTENSION
    ) -> Path:
        """Return the first path for ``base`` in ``directory`` that is free.

        Tries ``base + extension``, then ``base.1``, ``base.2``, ... in order.

        Example:
            >>> namer.unique_path(Path("/tmp/x"), "telescope.3-14.21-5-9")
            PosixPath('/tmp/x/telescope.3-14.21-5-9.1.tiff')  # bare name taken
        """
        candidate = directory / f"{base}{extension}"
        suffix = 0
        while candidate.exists():
            suffix += 1
            candidate = directory / f"{base}.{suffix}{extension}"
        return candidate

    def next_path(self, hint: str | None = None) -> Path:
        """Resolve the directory for ``hint`` and return a free path in it."""
        directory = self.directory_for(hint)
        return self.unique_path(directory, telescope_basename(self._clock()))


class FrameWriter:
    """Encodes raw frames and writes them to unique paths.

    Files are opened with exclusive creation, so a name taken by another
    writer between the existence scan and the open is skipped rather than
    overwritten.

    Example:
        >>> writer = FrameWriter(UniqueFileNamer(tmp_path))
        >>> writer.write_frame(None, np.zeros((4, 4), dtype=np.uint16))
        PosixPath('.../telescope.3-14.21-5-9.tiff')
    """

    def __init__(
        self,
        namer: UniqueFileNamer,
        encoder: ImageEncoder | None = None,
    ) -> None:
        self._namer = namer
        self._encoder = encoder if encoder is not None else CV2ImageEncoder()

    @property
    def namer(self) -> UniqueFileNamer:
        return self._namer

    def write_frame(self, directory_hint: str | None, frame: NDArray[Any]) -> Path:
        """Encode ``frame`` and write it to a new file.

        Args:
            directory_hint: Sub-directory below the root, or None.
            frame: Raw ``uint16`` frame. Read, never modified.

        Returns:
            Path of the written file.

        Raises:
            FrameWriteError: If encoding, directory creation or the write
                fails. No partial file is left behind.
        """
        try:
            data = self._encoder.encode_tiff16(frame)
        except ValueError as e:
            raise FrameWriteError(f"Cannot encode frame: {e}") from e

        try:
            for _ in range(_MAX_CREATE_ATTEMPTS):
                path = self._namer.next_path(directory_hint)
                try:
                    handle = path.open("xb")
                except FileExistsError:
                    continue
                with handle:
                    try:
                        handle.write(data)
                    except OSError:
                        handle.close()
                        path.unlink(missing_ok=True)
                        raise
                logger.debug("Frame written", path=str(path), size_bytes=len(data))
                return path
        except OSError as e:
            raise FrameWriteError(f"Cannot write frame: {e}") from e

        raise FrameWriteError(
            f"No free file name after {_MAX_CREATE_ATTEMPTS} attempts "
            f"for directory hint {directory_hint!r}"
        )
