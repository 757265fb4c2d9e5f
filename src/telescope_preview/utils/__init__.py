"""Utility modules for telescope-preview.

Exports are resolved lazily through ``__getattr__`` so importing the package
does not import cv2 until an encoder class is accessed.

Available exports (lazy-loaded):
    ImageEncoder: Protocol for image container encoding
    CV2ImageEncoder: OpenCV-based implementation

Example:
    from telescope_preview.utils import CV2ImageEncoder
    encoder = CV2ImageEncoder()
"""

__all__ = ["ImageEncoder", "CV2ImageEncoder"]


def __getattr__(name: str) -> type:
    """Import the encoder classes on first access and cache them.

    Raises:
        AttributeError: If name is not a public export.
    """
    if name in ("ImageEncoder", "CV2ImageEncoder"):
        from telescope_preview.utils.image import CV2ImageEncoder, ImageEncoder

        globals()["ImageEncoder"] = ImageEncoder
        globals()["CV2ImageEncoder"] = CV2ImageEncoder
        return globals()[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    """Return public API, including exports not loaded yet."""
    return [*__all__, "__all__", "__doc__", "__name__", "__file__"]
