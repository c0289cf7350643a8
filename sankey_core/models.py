"""
Core data models for the flow editor.

These models define the canonical schema for an editable flow graph:
- Edge rows, the single source of truth for nodes and links
- Node and link style tables keyed by node id / link key
- The viewport transform shared by the chart presentations
- The snapshot that bundles rows, styles and selection

Field Naming Convention:
- Rows use `source` and `target` internally
- JSON serialization outputs `from`/`to`, which is what the row editor speaks
- Both `from`/`to` and `source`/`target` are accepted on input
"""

import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Reserved separator for link keys; not expected to appear in node ids
LINK_SEPARATOR = "→"

MIN_SCALE = 0.5
MAX_SCALE = 3.0

DEFAULT_NODE_FILL = "#111827"
DEFAULT_LINK_STROKE = "#9ca3af"
DEFAULT_LINK_OPACITY = 0.45


def make_link_key(source: str, target: str) -> str:
    """Build the canonical style key for the directed link source -> target."""
    return f"{source}{LINK_SEPARATOR}{target}"


def split_link_key(key: str) -> tuple[str, str]:
    """Decompose a link key back into its (source, target) pair."""
    source, _, target = key.partition(LINK_SEPARATOR)
    return source, target


def check_node_id(node_id: str) -> None:
    """Reject ids that would make link keys ambiguous."""
    if LINK_SEPARATOR in node_id:
        raise ValueError(f"Node id cannot contain {LINK_SEPARATOR!r}: {node_id!r}")


def parse_amount(value: Any) -> float:
    """
    Coerce user input for an amount to a non-negative finite number.

    Non-numeric, non-finite and negative input all become 0; amounts are
    never rejected.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    else:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
    if not math.isfinite(number):
        return 0.0
    return max(0.0, number)


def parse_optional_amount(value: Any) -> Optional[float]:
    """Like parse_amount, but blank input means "no value" rather than 0."""
    if value is None:
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    return parse_amount(value)


def clamp_scale(k: float, min_scale: float = MIN_SCALE, max_scale: float = MAX_SCALE) -> float:
    """Clamp a zoom factor into the allowed scale extent."""
    return min(max_scale, max(min_scale, k))


class EdgeRow(BaseModel):
    """
    One editable row: a weighted flow from one node to another.

    `comparison` is the prior-period amount. None means "no prior-period
    data" and suppresses year-over-year figures; 0 is a real value.
    """
    model_config = ConfigDict(frozen=True)

    source: str = ""
    target: str = ""
    current: float = 0.0
    comparison: Optional[float] = None

    @model_validator(mode='before')
    @classmethod
    def convert_editor_fields(cls, data: Any) -> Any:
        """Convert editor 'from'/'to' fields to 'source'/'target'."""
        if isinstance(data, dict):
            data = dict(data)
            # 'from' is a Python keyword, so it can only arrive via dicts
            if 'from' in data and 'source' not in data:
                data['source'] = data.pop('from')
            if 'to' in data and 'target' not in data:
                data['target'] = data.pop('to')
        return data

    @field_validator('source', 'target', mode='before')
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        value = "" if value is None else str(value)
        check_node_id(value)
        return value

    @field_validator('current', mode='before')
    @classmethod
    def coerce_current(cls, value: Any) -> float:
        return parse_amount(value)

    @field_validator('comparison', mode='before')
    @classmethod
    def coerce_comparison(cls, value: Any) -> Optional[float]:
        return parse_optional_amount(value)

    @property
    def is_drawable(self) -> bool:
        """True if the row contributes a link to the diagram."""
        return bool(self.source.strip()) and bool(self.target.strip()) and self.current > 0

    def to_json_dict(self) -> dict:
        """Convert to JSON-serializable dict using the editor's field names."""
        result = {
            "from": self.source,
            "to": self.target,
            "current": self.current,
        }
        # Absent comparison stays absent rather than becoming null/0
        if self.comparison is not None:
            result["comparison"] = self.comparison
        return result


class NodeStyle(BaseModel):
    """Per-node style override."""
    model_config = ConfigDict(frozen=True)

    fill: str = DEFAULT_NODE_FILL


class LinkStyle(BaseModel):
    """Per-link style override."""
    model_config = ConfigDict(frozen=True)

    stroke: str = DEFAULT_LINK_STROKE
    opacity: float = Field(default=DEFAULT_LINK_OPACITY, ge=0.0, le=1.0)


class Transform(BaseModel):
    """Affine pan/zoom transform: translate(x, y) then scale(k)."""
    model_config = ConfigDict(frozen=True)

    k: float = 1.0
    x: float = 0.0
    y: float = 0.0

    @field_validator('k')
    @classmethod
    def clamp_k(cls, value: float) -> float:
        return clamp_scale(value)

    @classmethod
    def identity(cls) -> "Transform":
        return cls()

    def is_identity(self) -> bool:
        return self.k == 1.0 and self.x == 0.0 and self.y == 0.0

    def to_svg(self) -> str:
        """Render as an SVG transform attribute value."""
        return f"translate({_fmt(self.x)},{_fmt(self.y)}) scale({_fmt(self.k)})"


class Selection(BaseModel):
    """What the inspector is attached to: one node, one link, or nothing."""
    model_config = ConfigDict(frozen=True)

    node_id: Optional[str] = None
    link: Optional[tuple[str, str]] = None

    @model_validator(mode='after')
    def check_exclusive(self) -> "Selection":
        if self.node_id is not None and self.link is not None:
            raise ValueError("Selection can hold a node or a link, not both")
        return self

    @classmethod
    def of_node(cls, node_id: str) -> "Selection":
        return cls(node_id=node_id)

    @classmethod
    def of_link(cls, source: str, target: str) -> "Selection":
        return cls(link=(source, target))

    @property
    def is_empty(self) -> bool:
        return self.node_id is None and self.link is None

    def to_json_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "link": {"source": self.link[0], "target": self.link[1]} if self.link else None,
        }


class Snapshot(BaseModel):
    """
    The complete editor state at one instant.

    Snapshots are never mutated; every edit produces a new snapshot that
    replaces the old one wholesale.
    """
    model_config = ConfigDict(frozen=True)

    rows: tuple[EdgeRow, ...] = ()
    node_styles: dict[str, NodeStyle] = Field(default_factory=dict)
    link_styles: dict[str, LinkStyle] = Field(default_factory=dict)
    selection: Selection = Field(default_factory=Selection)

    def to_json_dict(self) -> dict:
        return {
            "rows": [r.to_json_dict() for r in self.rows],
            "node_styles": {k: v.model_dump() for k, v in self.node_styles.items()},
            "link_styles": {k: v.model_dump() for k, v in self.link_styles.items()},
            "selection": self.selection.to_json_dict(),
        }


class TooltipContent(BaseModel):
    """Text shown in the hover overlay for a node."""
    model_config = ConfigDict(frozen=True)

    title: str
    value: Optional[str] = None   # Formatted current total, e.g. "$50M"
    yoy: Optional[str] = None     # Formatted change, e.g. "12% Y/Y"


class TooltipState(BaseModel):
    """Hover overlay state: anchor point in viewport coordinates plus content."""
    model_config = ConfigDict(frozen=True)

    visible: bool = False
    anchor_x: float = 0.0
    anchor_y: float = 0.0
    content: Optional[TooltipContent] = None


# --- API Request Models ---

class RowPatchRequest(BaseModel):
    """Partial update of one row. Omitted fields are left unchanged."""
    model_config = ConfigDict(populate_by_name=True)

    source: Optional[str] = Field(default=None, alias="from")
    target: Optional[str] = Field(default=None, alias="to")
    current: Optional[Any] = None
    comparison: Optional[Any] = None


class RenameRequest(BaseModel):
    """Request to rename a node (defaults to the selected node)."""
    new_id: str
    old_id: Optional[str] = None


class NodeStyleRequest(BaseModel):
    fill: str


class LinkStyleRequest(BaseModel):
    source: str
    target: str
    stroke: Optional[str] = None
    opacity: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class SelectionRequest(BaseModel):
    """Select a node, a link, or clear the selection when both are omitted."""
    node_id: Optional[str] = None
    source: Optional[str] = None
    target: Optional[str] = None


class SessionInfoRequest(BaseModel):
    title: Optional[str] = None
    flow_animation: Optional[bool] = None


def _fmt(value: float) -> str:
    """Format a coordinate without a trailing '.0' for integral values."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.4f}".rstrip("0").rstrip(".")
