"""
Flow analysis - node totals, year-over-year change and label formatting.

Node figures shown in labels and tooltips are based on incoming flow:
- current total: sum of `current` over rows pointing to the node
- comparison total: sum of `comparison` over those rows that have one
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional

from .models import EdgeRow, TooltipContent

PROFIT_COLOR = "#16a34a"
EXPENSE_COLOR = "#e11d48"
NEUTRAL_COLOR = "#9ca3af"


@dataclass
class NodeTotals:
    """Incoming totals for a single node."""
    node_id: str
    current: float = 0.0
    comparison: Optional[float] = None   # None if no incoming row had a comparison

    @property
    def yoy_percent(self) -> Optional[float]:
        """Change vs. comparison period in percent, or None if undefined."""
        if self.comparison is None or self.comparison <= 0:
            return None
        return (self.current - self.comparison) / self.comparison * 100

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "current": self.current,
            "comparison": self.comparison,
            "yoy_percent": self.yoy_percent,
        }


def compute_node_totals(rows: Iterable[EdgeRow]) -> dict[str, NodeTotals]:
    """
    Sum incoming current and comparison amounts per target node.

    Rows without a comparison amount add nothing to the comparison total; a
    node whose incoming rows all lack one has no comparison total at all.

    Args:
        rows: All editor rows

    Returns:
        Dictionary mapping node id to NodeTotals (targets only)
    """
    totals: dict[str, NodeTotals] = {}
    for row in rows:
        entry = totals.get(row.target)
        if entry is None:
            entry = totals[row.target] = NodeTotals(node_id=row.target)
        entry.current += row.current or 0.0
        if row.comparison is not None:
            entry.comparison = (entry.comparison or 0.0) + row.comparison
    return totals


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def format_money(value: float) -> str:
    """Format an amount in millions, e.g. 35 -> "$35M"."""
    return f"${_round_half_up(value)}M"


def format_percent(value: float) -> str:
    """Format a year-over-year change, e.g. 16.7 -> "17% Y/Y"."""
    return f"{_round_half_up(value)}% Y/Y"


def node_label_lines(node_id: str, totals: dict[str, NodeTotals]) -> list[str]:
    """Label lines drawn next to a node: id, current total, YoY change."""
    entry = totals.get(node_id)
    lines = [node_id]
    if entry is not None:
        if entry.current > 0:
            lines.append(format_money(entry.current))
        yoy = entry.yoy_percent
        if yoy is not None:
            lines.append(format_percent(yoy))
    return [line for line in lines if line]


def tooltip_content(node_id: str, totals: dict[str, NodeTotals]) -> TooltipContent:
    """Build tooltip content for a hovered node."""
    entry = totals.get(node_id)
    if entry is None:
        return TooltipContent(title=str(node_id))
    yoy = entry.yoy_percent
    return TooltipContent(
        title=str(node_id),
        value=format_money(entry.current) if entry.current > 0 else None,
        yoy=format_percent(yoy) if yoy is not None else None,
    )


def default_link_color(target: str) -> str:
    """Default link stroke, chosen from the target's name."""
    t = target.lower()
    if "profit" in t:
        return PROFIT_COLOR
    if "expense" in t or "cost" in t or "tax" in t:
        return EXPENSE_COLOR
    return NEUTRAL_COLOR
