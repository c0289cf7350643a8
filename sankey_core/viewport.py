"""
Viewport transform - pan/zoom state shared between chart presentations.

The same diagram can be shown in the normal chart frame and in a fullscreen
view at the same time, and both must show the same pan/zoom. Each
presentation owns a ViewportController; a SharedViewport owns the logical
transform and relays changes between them.

Every transform update carries an origin tag:
- INTERACTION: a gesture on this presentation. Applied and emitted outward.
- EXTERNAL: pushed in by the owner from another presentation. Applied, never
  emitted, otherwise the two presentations would echo updates back and forth.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .config import ChartConfig, DEFAULT_CONFIG
from .models import Transform, clamp_scale

logger = logging.getLogger(__name__)

# Wheel delta (pixels) to zoom exponent, matching common browser zoom feel
WHEEL_ZOOM_RATE = 0.002


class TransformOrigin(str, Enum):
    """Where a transform update came from."""
    INTERACTION = "interaction"
    EXTERNAL = "external"


class InteractionState(str, Enum):
    IDLE = "idle"
    INTERACTING = "interacting"   # Between gesture start and gesture end


@dataclass(frozen=True)
class TransformChange:
    """Outward notification of an interaction-origin transform update."""
    presentation: str
    transform: Transform
    origin: TransformOrigin = TransformOrigin.INTERACTION


def ease_cubic_in_out(t: float) -> float:
    t = min(1.0, max(0.0, t))
    if t < 0.5:
        return 4 * t * t * t
    return 1 - ((-2 * t + 2) ** 3) / 2


@dataclass(frozen=True)
class ResetAnimation:
    """Eased interpolation from one transform to another over `duration` seconds."""
    start: Transform
    end: Transform
    duration: float

    def at(self, elapsed: float) -> Transform:
        if self.duration <= 0 or elapsed >= self.duration:
            return self.end
        t = ease_cubic_in_out(elapsed / self.duration)
        return Transform(
            k=self.start.k + (self.end.k - self.start.k) * t,
            x=self.start.x + (self.end.x - self.start.x) * t,
            y=self.start.y + (self.end.y - self.start.y) * t,
        )

    def finished(self, elapsed: float) -> bool:
        return elapsed >= self.duration


class ViewportController:
    """
    Pan/zoom state machine for one presentation of the diagram.

    Interaction path: begin_gesture / drag / end_gesture, wheel, reset.
    External path: apply_external.
    """

    def __init__(
        self,
        name: str = "normal",
        on_change: Optional[Callable[[TransformChange], None]] = None,
        config: ChartConfig = DEFAULT_CONFIG
    ):
        self.name = name
        self._on_change = on_change
        self._min_scale = config.min_scale
        self._max_scale = config.max_scale
        self._reset_duration = config.reset_duration
        self._transform = Transform.identity()
        self._state = InteractionState.IDLE
        self._pointer: Optional[tuple[float, float]] = None
        self._animation: Optional[ResetAnimation] = None

    # --- Properties ---

    @property
    def transform(self) -> Transform:
        return self._transform

    @property
    def state(self) -> InteractionState:
        return self._state

    @property
    def animation(self) -> Optional[ResetAnimation]:
        return self._animation

    # --- State updates ---

    def _apply(self, transform: Transform, origin: TransformOrigin):
        """Single write path for the transform; only interaction updates are emitted."""
        self._transform = Transform(
            k=clamp_scale(transform.k, self._min_scale, self._max_scale),
            x=transform.x,
            y=transform.y
        )
        if origin is TransformOrigin.INTERACTION and self._on_change is not None:
            self._on_change(TransformChange(self.name, self._transform, origin))

    # --- Interaction path ---

    def begin_gesture(self, x: float, y: float):
        """Pointer pressed on the diagram surface."""
        self._state = InteractionState.INTERACTING
        self._pointer = (x, y)
        self._animation = None

    def drag(self, x: float, y: float) -> Transform:
        """Pointer moved; pans by the pointer delta while a gesture is active."""
        if self._state is not InteractionState.INTERACTING or self._pointer is None:
            return self._transform

        last_x, last_y = self._pointer
        self._pointer = (x, y)
        t = self._transform
        self._apply(Transform(k=t.k, x=t.x + (x - last_x), y=t.y + (y - last_y)),
                    TransformOrigin.INTERACTION)
        return self._transform

    def end_gesture(self):
        """Pointer released."""
        self._state = InteractionState.IDLE
        self._pointer = None

    def wheel(self, delta_y: float, x: float, y: float) -> Transform:
        """
        Zoom about the pointer position (x, y) in surface coordinates.

        A wheel step is a complete gesture on its own: it enters the
        interacting state, applies one update, and returns to the previous
        state.
        """
        previous = self._state
        self._state = InteractionState.INTERACTING
        self._animation = None

        t = self._transform
        k = clamp_scale(t.k * 2 ** (-delta_y * WHEEL_ZOOM_RATE), self._min_scale, self._max_scale)
        # Keep the diagram point under the pointer fixed
        px = (x - t.x) / t.k
        py = (y - t.y) / t.k
        self._apply(Transform(k=k, x=x - px * k, y=y - py * k), TransformOrigin.INTERACTION)

        self._state = previous
        return self._transform

    def reset(self) -> Transform:
        """
        Double-click: return to the identity transform.

        The logical transform jumps to identity immediately and is emitted
        once; frame() animates the displayed transform over reset_duration.
        """
        start = self._transform
        self._state = InteractionState.IDLE
        self._pointer = None
        self._animation = ResetAnimation(start=start, end=Transform.identity(), duration=self._reset_duration)
        self._apply(Transform.identity(), TransformOrigin.INTERACTION)
        return self._transform

    def frame(self, elapsed: float) -> Transform:
        """Transform to display `elapsed` seconds after the last reset."""
        if self._animation is None:
            return self._transform
        if self._animation.finished(elapsed):
            self._animation = None
            return self._transform
        return self._animation.at(elapsed)

    # --- External path ---

    def apply_external(self, transform: Transform):
        """Apply a transform pushed in by the owner. Never emits."""
        if transform == self._transform:
            return
        self._animation = None
        self._apply(transform, TransformOrigin.EXTERNAL)


class SharedViewport:
    """
    Owner of the logical transform shared by all mounted presentations.

    An interaction on one presentation updates the shared transform and is
    pushed to every other presentation through their external path.
    """

    def __init__(self, config: ChartConfig = DEFAULT_CONFIG):
        self._config = config
        self._transform = Transform.identity()
        self._presentations: dict[str, ViewportController] = {}
        self._on_change_callbacks: list[Callable[[TransformChange], None]] = []

    @property
    def transform(self) -> Transform:
        return self._transform

    @property
    def presentations(self) -> list[str]:
        return list(self._presentations)

    def on_change(self, callback: Callable[[TransformChange], None]):
        """Register a callback for shared transform changes."""
        self._on_change_callbacks.append(callback)

    def _notify_change(self, change: TransformChange):
        for callback in self._on_change_callbacks:
            try:
                callback(change)
            except Exception:
                logger.exception("Transform change callback failed")

    def mount(self, name: str) -> ViewportController:
        """Create (or return) the controller for a presentation, synced to the shared transform."""
        controller = self._presentations.get(name)
        if controller is None:
            controller = ViewportController(name=name, on_change=self._relay, config=self._config)
            self._presentations[name] = controller
        controller.apply_external(self._transform)
        return controller

    def unmount(self, name: str) -> bool:
        return self._presentations.pop(name, None) is not None

    def presentation(self, name: str) -> Optional[ViewportController]:
        return self._presentations.get(name)

    def _relay(self, change: TransformChange):
        """Interaction on one presentation: store it and push it to the others."""
        self._transform = change.transform
        for name, controller in self._presentations.items():
            if name != change.presentation:
                controller.apply_external(change.transform)
        self._notify_change(change)

    def apply_external(self, transform: Transform):
        """Set the shared transform from outside (e.g. an API client)."""
        self._transform = transform
        for controller in self._presentations.values():
            controller.apply_external(transform)
        self._notify_change(TransformChange("owner", transform, TransformOrigin.EXTERNAL))
