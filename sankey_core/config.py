"""
Chart configuration.

All tunable constants of the flow editor live here so that layout, viewport,
overlay and export code read them from one place instead of scattering
magic numbers across modules.
"""

from pydantic import BaseModel, Field


class Margins(BaseModel):
    """Space reserved around the layout extent inside the chart surface."""
    top: float = 60
    right: float = 40
    bottom: float = 40
    left: float = 40


class ChartConfig(BaseModel):
    """Tunable chart, interaction and export parameters."""
    margins: Margins = Field(default_factory=Margins)

    # Layout
    node_thickness: float = 18
    node_padding: float = 16
    layout_cache_size: int = 16

    # Chart surface sizing
    fallback_width: float = 900    # Used before the container has been measured
    min_width: float = 480
    aspect_ratio: float = 0.6      # height = width * aspect_ratio
    min_height: float = 420
    min_height_fullscreen: float = 480

    # Validation
    balance_tolerance: float = 1e-2

    # Editing
    debounce_seconds: float = 0.2

    # Viewport
    min_scale: float = 0.5
    max_scale: float = 3.0
    reset_duration: float = 0.25   # Seconds for the double-click reset animation

    # Tooltip overlay
    tooltip_margin: float = 14
    tooltip_inset: float = 8

    # Export
    png_scale: int = 2

    def chart_size(self, container_width: float | None, fullscreen: bool = False) -> tuple[float, float]:
        """
        Derive the chart surface size from the measured container width.

        Height is derived from width rather than measured, so that resizing the
        chart never feeds back into the container measurement.
        """
        base_width = container_width or self.fallback_width
        width = max(base_width, self.min_width)
        height_from_width = _round_half_up(width * self.aspect_ratio)
        min_height = self.min_height_fullscreen if fullscreen else self.min_height
        return width, max(height_from_width, min_height)


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


DEFAULT_CONFIG = ChartConfig()
