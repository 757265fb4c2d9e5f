"""Preview display: frame transform, thread-safe surface and window.

Example:
    from telescope_preview.display import (
        DisplaySurface,
        PreviewWindow,
        RenderConfig,
        render_preview,
    )

    surface = DisplaySurface()
    PreviewWindow(surface).start()
    surface.replace(render_preview(raw_frame, RenderConfig(crosshair=True)))
"""

from telescope_preview.display.surface import CROSSHAIR_COLOR, DisplaySurface, fit_size
from telescope_preview.display.transform import (
    DEFAULT_STRETCH,
    DEFAULT_ZOOM_RADIUS,
    IntensityMode,
    PreviewRaster,
    RenderConfig,
    render_preview,
    scale_intensity,
    stretch_intensity,
)
from telescope_preview.display.window import CV2HighGui, HighGui, PreviewWindow

__all__ = [
    # Transform
    "DEFAULT_STRETCH",
    "DEFAULT_ZOOM_RADIUS",
    "IntensityMode",
    "PreviewRaster",
    "RenderConfig",
    "render_preview",
    "scale_intensity",
    "stretch_intensity",
    # Surface
    "CROSSHAIR_COLOR",
    "DisplaySurface",
    "fit_size",
    # Window
    "CV2HighGui",
    "HighGui",
    "PreviewWindow",
]
