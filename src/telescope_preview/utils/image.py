"""Image container encoding for saved frames.

Provides a Protocol-based interface for turning a raw 16-bit raster into the
bytes of a single-frame grayscale TIFF, so the frame writer can be tested
with a fake encoder. CV2ImageEncoder is the real implementation.

Usage:
    # Production (default)
    encoder = CV2ImageEncoder()
    tiff_bytes = encoder.encode_tiff16(frame)

    # Testing
    class FakeEncoder:
        def encode_tiff16(self, raster):
            return b"II*\\x00fake"

Architecture:
    ImageEncoder (Protocol) <- CV2ImageEncoder (real)
                            <- fake encoders (tests)

cv2 is imported when a CV2ImageEncoder is instantiated, not at module import
time.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["ImageEncoder", "CV2ImageEncoder", "TIFF_EXTENSION"]

TIFF_EXTENSION = ".tiff"


@runtime_checkable
class ImageEncoder(Protocol):
    """Protocol for encoding raw frames into an image container.

    Example:
        >>> class FakeEncoder:
        ...     def encode_tiff16(self, raster):
        ...         return b"II*\\x00"
        >>> encoder: ImageEncoder = FakeEncoder()
    """

    def encode_tiff16(self, raster: NDArray[Any]) -> bytes:
        """Encode a 16-bit grayscale raster as a single-frame TIFF.

        Args:
            raster: 2-D ``uint16`` array ``(height, width)``.

        Returns:
            Complete TIFF file contents.

        Raises:
            ValueError: If the raster is not 2-D uint16 or encoding fails.
        """
        ...  # pragma: no cover


class CV2ImageEncoder(ImageEncoder):
    """OpenCV-based encoder.

    ``cv2.imencode(".tiff", ...)`` writes 16-bit single-channel input as a
    16 bits-per-sample grayscale TIFF, preserving every raw sample.

    Example:
        >>> encoder = CV2ImageEncoder()
        >>> data = encoder.encode_tiff16(np.zeros((4, 6), dtype=np.uint16))
        >>> data[:2] in (b"II", b"MM")
        True
    """

    def __init__(self) -> None:
        """Import cv2 and keep a reference to it.

        Raises:
            ImportError: If opencv-python is not installed.
        """
        import cv2

        self._cv2 = cv2

    def encode_tiff16(self, raster: NDArray[Any]) -> bytes:
        """Encode ``raster`` as a 16-bit grayscale TIFF.

        Raises:
            ValueError: If the raster is not 2-D uint16, is empty, or
                OpenCV reports an encoding failure.
        """
        if raster.ndim != 2 or raster.dtype != np.uint16:
            raise ValueError(
                f"Expected a 2-D uint16 raster, got shape={raster.shape}, "
                f"dtype={raster.dtype}"
            )
        if raster.size == 0:
            raise ValueError("Cannot encode an empty raster")
        success, data = self._cv2.imencode(TIFF_EXTENSION, raster)
        if not success:
            raise ValueError(
                f"TIFF encoding failed for image shape={raster.shape}, "
                f"dtype={raster.dtype}"
            )
        return data.tobytes()
