"""
Layout adapter and default layered layout for flow diagrams.

The adapter is the typed boundary around a layout function: it turns a
SankeyGraph plus chart extent into a LayoutRequest, calls the function, and
memoizes results by a structural hash of the request so that re-rendering
an unchanged graph never recomputes geometry.

Any callable with the signature `(LayoutRequest) -> LayoutResult` can be
plugged in, provided it is deterministic. `layered_layout` is the default:
- Depth: longest path from the sources
- Alignment: justified (nodes without outgoing links go in the last column)
- Node height proportional to max(inflow, outflow)
- Link thickness proportional to link value
"""

import hashlib
import json
import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from typing import Callable, Optional

from .config import Margins
from .errors import CircularFlowError
from .graph import SankeyGraph

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LayoutLink:
    """Link as seen by the layout function: only the weight matters."""
    source: str
    target: str
    value: float


@dataclass(frozen=True)
class LayoutRequest:
    """Everything the layout function is allowed to depend on."""
    node_ids: tuple[str, ...]
    links: tuple[LayoutLink, ...]
    width: float
    height: float
    margins: Margins
    node_thickness: float
    node_padding: float

    @property
    def extent(self) -> tuple[tuple[float, float], tuple[float, float]]:
        """Layout extent ((x0, y0), (x1, y1)) after subtracting margins."""
        m = self.margins
        return (m.left, m.top), (self.width - m.right, self.height - m.bottom)

    def structural_key(self) -> str:
        """Hash of the request content, independent of object identity."""
        payload = {
            "nodes": list(self.node_ids),
            "links": [[l.source, l.target, l.value] for l in self.links],
            "size": [self.width, self.height],
            "margins": self.margins.model_dump(),
            "thickness": self.node_thickness,
            "padding": self.node_padding,
        }
        encoded = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class NodeBox:
    """Placed node rectangle."""
    id: str
    x0: float
    y0: float
    x1: float
    y1: float
    value: float
    depth: int

    @property
    def width(self) -> float:
        return self.x1 - self.x0

    @property
    def height(self) -> float:
        return self.y1 - self.y0


@dataclass(frozen=True)
class LinkGeometry:
    """Placed link: band centre at each end plus SVG path data."""
    source: str
    target: str
    value: float
    width: float
    y0: float   # Band centre where the link leaves the source
    y1: float   # Band centre where the link enters the target
    path: str


@dataclass(frozen=True)
class LayoutResult:
    nodes: tuple[NodeBox, ...]
    links: tuple[LinkGeometry, ...]

    def node(self, node_id: str) -> Optional[NodeBox]:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "nodes": [
                {"id": n.id, "x0": n.x0, "y0": n.y0, "x1": n.x1, "y1": n.y1,
                 "value": n.value, "depth": n.depth}
                for n in self.nodes
            ],
            "links": [
                {"source": l.source, "target": l.target, "value": l.value,
                 "width": l.width, "y0": l.y0, "y1": l.y1, "path": l.path}
                for l in self.links
            ],
        }


LayoutFunction = Callable[[LayoutRequest], LayoutResult]


# --- Default layered layout ---

def _assign_depths(node_ids: tuple[str, ...], links: tuple[LayoutLink, ...]) -> dict[str, int]:
    """Longest-path depth from the sources; raises on cycles."""
    outgoing: dict[str, list[str]] = defaultdict(list)
    indegree: dict[str, int] = {n: 0 for n in node_ids}
    for link in links:
        outgoing[link.source].append(link.target)
        indegree[link.target] += 1

    depths: dict[str, int] = {n: 0 for n in node_ids}
    queue = [n for n in node_ids if indegree[n] == 0]
    visited = 0

    while queue:
        current = queue.pop(0)
        visited += 1
        for child in outgoing[current]:
            depths[child] = max(depths[child], depths[current] + 1)
            indegree[child] -= 1
            if indegree[child] == 0:
                queue.append(child)

    if visited < len(node_ids):
        stuck = [n for n in node_ids if indegree[n] > 0]
        raise CircularFlowError(f"Circular flow through: {', '.join(stuck)}")

    return depths


def link_path(x0: float, y0: float, x1: float, y1: float) -> str:
    """Horizontal cubic link from (x0, y0) to (x1, y1)."""
    xm = (x0 + x1) / 2
    return f"M{x0:g},{y0:g}C{xm:g},{y0:g},{xm:g},{y1:g},{x1:g},{y1:g}"


def layered_layout(request: LayoutRequest) -> LayoutResult:
    """
    Place nodes in columns by depth and size them by the flow they carry.

    Deterministic: the output depends only on the request content. Nodes in
    a column keep their first-appearance order; no crossing minimization is
    attempted.

    Args:
        request: Nodes, weighted links and the layout extent

    Returns:
        LayoutResult with one NodeBox per node and one LinkGeometry per link
    """
    node_ids = request.node_ids
    links = request.links
    if not node_ids:
        return LayoutResult(nodes=(), links=())

    (ex0, ey0), (ex1, ey1) = request.extent
    dx = request.node_thickness
    py = request.node_padding

    depths = _assign_depths(node_ids, links)

    # Node value = max(inflow, outflow)
    inflow: dict[str, float] = defaultdict(float)
    outflow: dict[str, float] = defaultdict(float)
    has_outgoing: set[str] = set()
    for link in links:
        outflow[link.source] += link.value
        inflow[link.target] += link.value
        has_outgoing.add(link.source)
    values = {n: max(inflow[n], outflow[n]) for n in node_ids}

    # Justify: sinks go to the last column
    column_count = max(depths.values()) + 1
    columns_of: dict[str, int] = {
        n: depths[n] if n in has_outgoing else column_count - 1
        for n in node_ids
    }
    columns: list[list[str]] = [[] for _ in range(column_count)]
    for n in node_ids:
        columns[columns_of[n]].append(n)

    kx = (ex1 - ex0 - dx) / (column_count - 1) if column_count > 1 else 0.0

    # Vertical scale: the most crowded column must fit the extent
    ky = float("inf")
    for column in columns:
        total = sum(values[n] for n in column)
        if total <= 0:
            continue
        available = (ey1 - ey0) - (len(column) - 1) * py
        ky = min(ky, max(available, 0.0) / total)
    if ky == float("inf"):
        ky = 0.0

    boxes: dict[str, NodeBox] = {}
    for index, column in enumerate(columns):
        x0 = ex0 + index * kx
        heights = [values[n] * ky for n in column]
        used = sum(heights) + (len(column) - 1) * py if column else 0.0
        y = ey0 + max((ey1 - ey0) - used, 0.0) / 2
        for n, h in zip(column, heights):
            boxes[n] = NodeBox(id=n, x0=x0, y0=y, x1=x0 + dx, y1=y + h,
                               value=values[n], depth=columns_of[n])
            y += h + py

    # Stack link bands at each node, ordered by the position of the other end
    link_order = list(range(len(links)))
    source_offset: dict[str, float] = defaultdict(float)
    target_offset: dict[str, float] = defaultdict(float)
    band_y0: dict[int, float] = {}
    band_y1: dict[int, float] = {}

    for i in sorted(link_order, key=lambda i: (boxes[links[i].source].y0, boxes[links[i].target].y0, i)):
        link = links[i]
        w = link.value * ky
        band_y0[i] = boxes[link.source].y0 + source_offset[link.source] + w / 2
        source_offset[link.source] += w

    for i in sorted(link_order, key=lambda i: (boxes[links[i].target].y0, boxes[links[i].source].y0, i)):
        link = links[i]
        w = link.value * ky
        band_y1[i] = boxes[link.target].y0 + target_offset[link.target] + w / 2
        target_offset[link.target] += w

    geometries = []
    for i, link in enumerate(links):
        source_box = boxes[link.source]
        target_box = boxes[link.target]
        geometries.append(LinkGeometry(
            source=link.source,
            target=link.target,
            value=link.value,
            width=link.value * ky,
            y0=band_y0[i],
            y1=band_y1[i],
            path=link_path(source_box.x1, band_y0[i], target_box.x0, band_y1[i]),
        ))

    return LayoutResult(
        nodes=tuple(boxes[n] for n in node_ids),
        links=tuple(geometries)
    )


# --- Adapter ---

class LayoutAdapter:
    """
    Memoizing boundary around a deterministic layout function.

    Results are cached by the structural hash of the request, so a layout is
    only recomputed when the graph content, the chart size, or the margins
    actually change.
    """

    def __init__(
        self,
        layout_fn: LayoutFunction = layered_layout,
        node_thickness: float = 18,
        node_padding: float = 16,
        cache_size: int = 16
    ):
        self._layout_fn = layout_fn
        self._node_thickness = node_thickness
        self._node_padding = node_padding
        self._cache_size = max(1, cache_size)
        self._cache: OrderedDict[str, LayoutResult] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def build_request(self, graph: SankeyGraph, width: float, height: float, margins: Margins) -> LayoutRequest:
        """Translate a graph into a layout request; comparison amounts are dropped."""
        return LayoutRequest(
            node_ids=graph.node_ids,
            links=tuple(LayoutLink(l.source, l.target, l.value) for l in graph.links),
            width=width,
            height=height,
            margins=margins.model_copy(),
            node_thickness=self._node_thickness,
            node_padding=self._node_padding,
        )

    def compute(self, graph: SankeyGraph, width: float, height: float, margins: Margins) -> LayoutResult:
        """Return the layout for this graph and extent, reusing a cached result if possible."""
        request = self.build_request(graph, width, height, margins)
        key = request.structural_key()

        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            self.hits += 1
            logger.debug("Layout cache hit (%s)", key[:12])
            return cached

        self.misses += 1
        logger.debug("Layout cache miss (%s): %d nodes, %d links",
                     key[:12], len(request.node_ids), len(request.links))
        result = self._layout_fn(request)

        self._cache[key] = result
        if len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return result

    def clear(self):
        """Forget all cached layouts."""
        self._cache.clear()
