"""
Balance validation - flow conservation check over intermediate nodes.

A node that both receives and passes on money must pass on exactly what it
receives (within a tolerance). Pure sources (e.g. product lines) and pure
sinks (e.g. tax, net profit) are exempt.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable

from .models import EdgeRow

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 1e-2


@dataclass
class BalanceReport:
    """Result of a balance check."""
    ok: bool
    not_balanced: list[str] = field(default_factory=list)
    inflow: dict[str, float] = field(default_factory=dict)
    outflow: dict[str, float] = field(default_factory=dict)

    def is_intermediate(self, node_id: str) -> bool:
        return self.inflow.get(node_id, 0.0) > 0 and self.outflow.get(node_id, 0.0) > 0

    def message(self) -> str:
        """Human-readable status line for the balance bar."""
        if self.ok:
            return "All nodes are balanced"
        return f"Not balanced: {', '.join(self.not_balanced)}"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "not_balanced": list(self.not_balanced),
            "message": self.message(),
            "inflow": dict(self.inflow),
            "outflow": dict(self.outflow),
        }


def _amount(value) -> float:
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def compute_balance(rows: Iterable[EdgeRow], tolerance: float = DEFAULT_TOLERANCE) -> BalanceReport:
    """
    Check flow conservation for every intermediate node.

    Inflow of a node is the sum of `current` over rows pointing to it,
    outflow the sum over rows leaving it. A node is intermediate when both
    are positive, and unbalanced when they differ by more than `tolerance`.

    Never raises: missing or non-finite amounts count as 0.

    Args:
        rows: All editor rows (including rows excluded from the diagram)
        tolerance: Allowed absolute difference between inflow and outflow

    Returns:
        BalanceReport; `not_balanced` lists nodes first seen as targets, then
        nodes only seen as sources, each group in row order
    """
    inflow: dict[str, float] = {}
    outflow: dict[str, float] = {}

    for row in rows:
        value = _amount(row.current)
        outflow[row.source] = outflow.get(row.source, 0.0) + value
        inflow[row.target] = inflow.get(row.target, 0.0) + value

    # Targets first, then sources not already seen
    node_ids = list(inflow)
    node_ids.extend(n for n in outflow if n not in inflow)

    not_balanced: list[str] = []
    for node_id in node_ids:
        ins = inflow.get(node_id, 0.0)
        outs = outflow.get(node_id, 0.0)

        if not (ins > 0 and outs > 0):
            continue

        if abs(ins - outs) > tolerance:
            not_balanced.append(node_id)

    if not_balanced:
        logger.debug("Unbalanced nodes: %s", ", ".join(not_balanced))

    return BalanceReport(
        ok=not not_balanced,
        not_balanced=not_balanced,
        inflow=inflow,
        outflow=outflow
    )
