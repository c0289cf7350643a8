"""
Graph model - derive the drawable node/link set from edge rows.

Nodes are never stored on their own: they are always derived from the rows,
so editing rows is the only way to add, remove or rename a node.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from .models import EdgeRow


@dataclass(frozen=True)
class GraphLink:
    """A drawable link: one valid row, weighted by its current amount."""
    source: str
    target: str
    value: float
    comparison: Optional[float] = None


@dataclass(frozen=True)
class SankeyGraph:
    """Validated node/link set handed to layout."""
    node_ids: tuple[str, ...]
    links: tuple[GraphLink, ...]

    @property
    def is_empty(self) -> bool:
        return not self.links

    def has_node(self, node_id: str) -> bool:
        return node_id in self.node_ids

    def has_link(self, source: str, target: str) -> bool:
        return any(l.source == source and l.target == target for l in self.links)


def build_graph(rows: Iterable[EdgeRow]) -> SankeyGraph:
    """
    Build the drawable graph from rows.

    Rows with a blank source/target or a non-positive current amount are
    left out of the diagram (they stay in the editable row list). Node ids
    are ordered by first appearance, source before target, in row order.

    Rows sharing the same (source, target) pair are passed through as
    separate links; they are not merged.

    Args:
        rows: Edge rows in editor order

    Returns:
        SankeyGraph with node ids and links
    """
    node_ids: dict[str, None] = {}  # Insertion-ordered set
    links: list[GraphLink] = []

    for row in rows:
        if not row.is_drawable:
            continue
        node_ids.setdefault(row.source, None)
        node_ids.setdefault(row.target, None)
        links.append(GraphLink(
            source=row.source,
            target=row.target,
            value=row.current,
            comparison=row.comparison
        ))

    return SankeyGraph(node_ids=tuple(node_ids), links=tuple(links))


def derivable_link_keys(graph: SankeyGraph) -> set[tuple[str, str]]:
    """All (source, target) pairs that currently have a link."""
    return {(l.source, l.target) for l in graph.links}
