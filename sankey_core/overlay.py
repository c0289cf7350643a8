"""
Overlay positioning - viewport-aware placement of the hover tooltip.

The tooltip sits below-right of the pointer by default and flips to the
other side of the pointer on each axis where it would overflow the viewport.
"""

from dataclasses import dataclass
from typing import Optional

from .config import ChartConfig, DEFAULT_CONFIG
from .models import TooltipContent, TooltipState


@dataclass(frozen=True)
class OverlayPosition:
    left: float
    top: float


def compute_overlay_position(
    anchor_x: float,
    anchor_y: float,
    width: float,
    height: float,
    viewport_width: float,
    viewport_height: float,
    margin: float = 14,
    inset: float = 8
) -> OverlayPosition:
    """
    Place a box of size (width, height) next to an anchor point.

    Horizontal and vertical placement are decided independently:
    - Right of the anchor, unless the right edge would pass viewport_width - inset
    - Below the anchor, unless the bottom edge would pass viewport_height - inset
    The left and top edges are then clamped to inset.

    Args:
        anchor_x, anchor_y: Pointer position in viewport coordinates
        width, height: Measured content box
        viewport_width, viewport_height: Viewport size
        margin: Gap between the anchor and the box
        inset: Minimum distance from the viewport edges

    Returns:
        OverlayPosition with the box's left/top
    """
    left = anchor_x + margin
    top = anchor_y + margin

    if left + width > viewport_width - inset:
        left = anchor_x - width - margin
    if left < inset:
        left = inset

    if top + height > viewport_height - inset:
        top = anchor_y - height - margin
    if top < inset:
        top = inset

    return OverlayPosition(left=left, top=top)


class OverlayPositioner:
    """
    Stateful positioner that only recomputes on anchor or visibility changes.

    While hidden, the last computed position is kept, so re-showing the
    overlay before the next anchor update does not jump to a default spot.
    """

    def __init__(self, config: ChartConfig = DEFAULT_CONFIG):
        self._margin = config.tooltip_margin
        self._inset = config.tooltip_inset
        self._position = OverlayPosition(left=0, top=0)
        self._last_key: Optional[tuple[bool, float, float]] = None
        self.recomputations = 0

    @property
    def position(self) -> OverlayPosition:
        return self._position

    def update(
        self,
        visible: bool,
        anchor_x: float,
        anchor_y: float,
        content_size: tuple[float, float],
        viewport_size: tuple[float, float]
    ) -> OverlayPosition:
        """Return the overlay position for the current anchor/visibility."""
        key = (visible, anchor_x, anchor_y)
        if key == self._last_key:
            return self._position
        self._last_key = key

        if not visible:
            return self._position

        width, height = content_size
        viewport_width, viewport_height = viewport_size
        self._position = compute_overlay_position(
            anchor_x, anchor_y, width, height,
            viewport_width, viewport_height,
            margin=self._margin, inset=self._inset
        )
        self.recomputations += 1
        return self._position


class TooltipController:
    """Hover state for the chart: show on enter, follow on move, hide on leave."""

    def __init__(self):
        self._state = TooltipState()

    @property
    def state(self) -> TooltipState:
        return self._state

    def show(self, x: float, y: float, content: TooltipContent) -> TooltipState:
        self._state = TooltipState(visible=True, anchor_x=x, anchor_y=y, content=content)
        return self._state

    def move(self, x: float, y: float) -> TooltipState:
        self._state = self._state.model_copy(update={"visible": True, "anchor_x": x, "anchor_y": y})
        return self._state

    def hide(self) -> TooltipState:
        # Anchor and content are kept for a smooth re-show
        self._state = self._state.model_copy(update={"visible": False})
        return self._state
