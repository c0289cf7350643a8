"""
Editor session - owner of the editable flow graph and everything derived from it.

This module implements:
- Whole-snapshot state management: every edit builds a new Snapshot
- Row editing, renaming, styling and selection on top of that snapshot
- A 200 ms debounce between row edits and layout/render
- Change callbacks for real-time sync
- Export commands reading the rendered scene
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from typing import Any, Callable, Iterable, Optional

from .analysis import NodeTotals, compute_node_totals
from .config import ChartConfig, DEFAULT_CONFIG
from .errors import LayoutError, RasterExportError, RowIndexError, UnknownElementError
from .export import ExportArtifact, export_svg, start_png_export
from .graph import SankeyGraph, build_graph
from .layout import LayoutAdapter, LayoutFunction, LayoutResult, layered_layout
from .models import (
    DEFAULT_LINK_OPACITY,
    DEFAULT_LINK_STROKE,
    EdgeRow,
    LinkStyle,
    NodeStyle,
    Selection,
    Snapshot,
    Transform,
    make_link_key,
)
from .rename import prune_styles, rename_node
from .scene import render_scene
from .validation import BalanceReport, compute_balance
from .viewport import SharedViewport

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Example Inc FY24 Income Statement"

SEED_ROWS: list[dict] = [
    {"from": "Product A", "to": "Revenue", "current": 35, "comparison": 30},
    {"from": "Product B", "to": "Revenue", "current": 10, "comparison": 11},
    {"from": "Product C", "to": "Revenue", "current": 5, "comparison": 4},
    {"from": "Revenue", "to": "Gross profit", "current": 30, "comparison": 26},
    {"from": "Revenue", "to": "Cost of revenue", "current": 20, "comparison": 19},
    {"from": "Gross profit", "to": "Operating profit", "current": 15, "comparison": 12},
    {"from": "Gross profit", "to": "Operating expenses", "current": 15, "comparison": 14},
    {"from": "Operating profit", "to": "Net profit", "current": 10, "comparison": 8},
    {"from": "Operating profit", "to": "Tax", "current": 5, "comparison": 4},
]

NEW_ROW = {"from": "New source", "to": "New target", "current": 0, "comparison": 0}

_UNSET = object()


class RowDebouncer:
    """
    Coalesce rapid row edits into one delayed update.

    Each push restarts the timer; the callback receives only the latest
    value. Without a running event loop the callback fires immediately.
    """

    def __init__(self, delay: float, callback: Callable[[Any], None]):
        self._delay = delay
        self._callback = callback
        self._pending: Any = _UNSET
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._pending is not _UNSET

    def push(self, value: Any):
        self._pending = value
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._fire()
            return

        self._handle = loop.call_later(self._delay, self._fire)

    def flush(self):
        """Deliver a pending value now."""
        if self.pending:
            if self._handle is not None:
                self._handle.cancel()
            self._fire()

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._pending = _UNSET

    def _fire(self):
        self._handle = None
        value, self._pending = self._pending, _UNSET
        if value is not _UNSET:
            self._callback(value)


class EditorSession:
    """
    Owns one editable flow graph and its auxiliary state.

    Rows are the single source of truth. Node and link styles, the
    selection and the viewport transform are auxiliary state tied to the
    ids derived from rows. All of rows/styles/selection live in one frozen
    Snapshot which is replaced wholesale by every edit, so observers only
    ever see complete states.
    """

    def __init__(
        self,
        rows: Optional[Iterable[Any]] = None,
        title: str = DEFAULT_TITLE,
        config: ChartConfig = DEFAULT_CONFIG,
        layout_fn: LayoutFunction = layered_layout
    ):
        self._config = config
        self._title = title
        self._flow_animation = False
        initial = SEED_ROWS if rows is None else rows
        self._snapshot = Snapshot(rows=tuple(EdgeRow.model_validate(r) for r in initial))
        self._rendered_rows = self._snapshot.rows

        self._on_change_callbacks: list[Callable] = []
        self._on_render_callbacks: list[Callable] = []
        self._on_error_callbacks: list[Callable] = []
        self.last_export_error: Optional[str] = None

        self._debouncer = RowDebouncer(config.debounce_seconds, self._on_rows_settled)
        self._layout = LayoutAdapter(
            layout_fn,
            node_thickness=config.node_thickness,
            node_padding=config.node_padding,
            cache_size=config.layout_cache_size
        )
        self.viewport = SharedViewport(config)
        self.viewport.mount("normal")
        self.viewport.on_change(lambda change: self._notify_change())

    # --- Properties ---

    @property
    def config(self) -> ChartConfig:
        return self._config

    @property
    def snapshot(self) -> Snapshot:
        """The current, complete editor state."""
        return self._snapshot

    @property
    def rows(self) -> tuple[EdgeRow, ...]:
        return self._snapshot.rows

    @property
    def rendered_rows(self) -> tuple[EdgeRow, ...]:
        """Rows as of the last settled debounce; what layout and scene use."""
        return self._rendered_rows

    @property
    def selection(self) -> Selection:
        return self._snapshot.selection

    @property
    def title(self) -> str:
        return self._title

    @property
    def flow_animation(self) -> bool:
        return self._flow_animation

    @property
    def transform(self) -> Transform:
        return self.viewport.transform

    @property
    def layout_adapter(self) -> LayoutAdapter:
        return self._layout

    @property
    def has_pending_edits(self) -> bool:
        return self._debouncer.pending

    # --- Callbacks ---

    def on_change(self, callback: Callable):
        """Register a callback for any state change (snapshot, title, transform)."""
        self._register(self._on_change_callbacks, callback)

    def on_render(self, callback: Callable):
        """Register a callback for when debounced rows settle."""
        self._register(self._on_render_callbacks, callback)

    def on_error(self, callback: Callable[[Exception], None]):
        """Register a callback for asynchronous export failures."""
        self._register(self._on_error_callbacks, callback)

    def remove_callback(self, callback: Callable):
        """Unregister a callback from every event it was registered for."""
        for callbacks in (self._on_change_callbacks, self._on_render_callbacks, self._on_error_callbacks):
            if callback in callbacks:
                callbacks.remove(callback)

    def _register(self, callbacks: list[Callable], callback: Callable):
        # Registering twice must not fire twice
        if callback not in callbacks:
            callbacks.append(callback)

    def _notify(self, callbacks: list[Callable], *args):
        for callback in callbacks:
            try:
                callback(*args)
            except Exception:
                logger.exception("Session callback %r failed", callback)

    def _notify_change(self):
        self._notify(self._on_change_callbacks)

    def _on_rows_settled(self, rows: tuple[EdgeRow, ...]):
        self._rendered_rows = rows
        self._notify(self._on_render_callbacks)

    def flush_pending_edits(self):
        """Apply debounced row edits to the rendered rows immediately."""
        self._debouncer.flush()

    # --- Snapshot publication ---

    def _commit(self, snapshot: Snapshot, rows_changed: bool = False) -> bool:
        """Publish a new snapshot. Returns False if nothing changed."""
        if snapshot is self._snapshot:
            return False
        self._snapshot = snapshot
        if rows_changed:
            self._debouncer.push(snapshot.rows)
        self._notify_change()
        return True

    def _commit_rows(self, rows: Iterable[EdgeRow]) -> bool:
        snapshot = prune_styles(self._snapshot.model_copy(update={"rows": tuple(rows)}))
        return self._commit(snapshot, rows_changed=True)

    # --- Session Info ---

    def set_title(self, title: str):
        self._title = title
        self._notify_change()

    def set_flow_animation(self, enabled: bool):
        self._flow_animation = bool(enabled)
        self._notify_change()

    # --- Row Operations ---

    def _check_index(self, index: int):
        if not 0 <= index < len(self._snapshot.rows):
            raise RowIndexError(f"Row index out of range: {index}")

    def set_rows(self, rows: Iterable[Any]) -> tuple[EdgeRow, ...]:
        """Replace all rows."""
        self._commit_rows(EdgeRow.model_validate(r) for r in rows)
        return self._snapshot.rows

    def add_row(self, **fields) -> EdgeRow:
        """Append a row; unspecified fields use the editor's new-row defaults."""
        row = EdgeRow.model_validate({**NEW_ROW, **_editor_fields(fields)})
        self._commit_rows(self._snapshot.rows + (row,))
        return row

    def update_row(self, index: int, **fields) -> EdgeRow:
        """
        Update fields of one row.

        Accepts from/to or source/target. Amounts are clamped to >= 0;
        passing comparison=None or "" makes the comparison absent.
        """
        self._check_index(index)
        rows = list(self._snapshot.rows)
        current = rows[index]
        merged = {
            "source": current.source,
            "target": current.target,
            "current": current.current,
            "comparison": current.comparison,
        }
        merged.update(_editor_fields(fields))
        rows[index] = EdgeRow.model_validate(merged)
        if rows[index] != current:
            self._commit_rows(rows)
        return rows[index]

    def delete_row(self, index: int) -> EdgeRow:
        """Delete a row, dropping styles for nodes/links that disappear with it."""
        self._check_index(index)
        rows = list(self._snapshot.rows)
        removed = rows.pop(index)
        self._commit_rows(rows)
        return removed

    # --- Rename ---

    def rename_node(self, new_id_raw: str, old_id: Optional[str] = None) -> bool:
        """
        Rename a node (the selected node unless old_id is given).

        Returns:
            True if anything changed; empty or unchanged names are a no-op
        """
        target = old_id if old_id is not None else self._snapshot.selection.node_id
        if target is None:
            return False
        renamed = rename_node(self._snapshot, target, new_id_raw)
        if not self._commit(renamed, rows_changed=True):
            return False
        # Styles are already re-keyed; render the renamed rows with them right away
        self._debouncer.flush()
        return True

    # --- Styling ---

    def _graph(self) -> SankeyGraph:
        return build_graph(self._snapshot.rows)

    def _require_node(self, node_id: str):
        if not self._graph().has_node(node_id):
            raise UnknownElementError(f"Node not found: {node_id}")

    def _require_link(self, source: str, target: str):
        if not self._graph().has_link(source, target):
            raise UnknownElementError(f"Link not found: {make_link_key(source, target)}")

    def set_node_fill(self, node_id: str, fill: str) -> NodeStyle:
        self._require_node(node_id)
        style = NodeStyle(fill=fill)
        node_styles = {**self._snapshot.node_styles, node_id: style}
        self._commit(self._snapshot.model_copy(update={"node_styles": node_styles}))
        return style

    def _update_link_style(self, source: str, target: str, **changes) -> LinkStyle:
        self._require_link(source, target)
        key = make_link_key(source, target)
        existing = self._snapshot.link_styles.get(key)
        style = LinkStyle(
            stroke=changes.get("stroke", existing.stroke if existing else DEFAULT_LINK_STROKE),
            opacity=changes.get("opacity", existing.opacity if existing else DEFAULT_LINK_OPACITY),
        )
        link_styles = {**self._snapshot.link_styles, key: style}
        self._commit(self._snapshot.model_copy(update={"link_styles": link_styles}))
        return style

    def set_link_stroke(self, source: str, target: str, stroke: str) -> LinkStyle:
        return self._update_link_style(source, target, stroke=stroke)

    def set_link_opacity(self, source: str, target: str, opacity: float) -> LinkStyle:
        return self._update_link_style(source, target, opacity=opacity)

    # --- Selection ---

    def select_node(self, node_id: str) -> Selection:
        self._require_node(node_id)
        self._commit(self._snapshot.model_copy(update={"selection": Selection.of_node(node_id)}))
        return self._snapshot.selection

    def select_link(self, source: str, target: str) -> Selection:
        self._require_link(source, target)
        self._commit(self._snapshot.model_copy(update={"selection": Selection.of_link(source, target)}))
        return self._snapshot.selection

    def clear_selection(self) -> Selection:
        if not self._snapshot.selection.is_empty:
            self._commit(self._snapshot.model_copy(update={"selection": Selection()}))
        return self._snapshot.selection

    # --- Derived views ---

    def balance(self) -> BalanceReport:
        """Balance of the live rows (not debounced)."""
        return compute_balance(self._snapshot.rows, self._config.balance_tolerance)

    def totals(self) -> dict[str, NodeTotals]:
        return compute_node_totals(self._rendered_rows)

    def chart_size(self, container_width: Optional[float] = None, fullscreen: bool = False) -> tuple[float, float]:
        return self._config.chart_size(container_width, fullscreen)

    def layout(self, container_width: Optional[float] = None, fullscreen: bool = False) -> LayoutResult:
        """Layout of the rendered rows for a container of the given width."""
        width, height = self.chart_size(container_width, fullscreen)
        return self._layout.compute(build_graph(self._rendered_rows), width, height, self._config.margins)

    def scene(
        self,
        container_width: Optional[float] = None,
        fullscreen: bool = False,
        presentation: str = "normal"
    ) -> ET.Element:
        """Render the current scene as an SVG element."""
        width, height = self.chart_size(container_width, fullscreen)
        controller = self.viewport.presentation(presentation)
        transform = controller.transform if controller is not None else self.viewport.transform
        return render_scene(
            self.layout(container_width, fullscreen),
            width,
            height,
            totals=self.totals(),
            node_styles=self._snapshot.node_styles,
            link_styles=self._snapshot.link_styles,
            selection=self._snapshot.selection,
            transform=transform,
            flow_animation=self._flow_animation
        )

    # --- Export ---

    def export_svg(self, container_width: Optional[float] = None) -> ExportArtifact:
        return export_svg(self.scene(container_width), self._title)

    def _report_export_error(self, error: RasterExportError):
        self.last_export_error = str(error)
        self._notify(self._on_error_callbacks, error)

    async def _fail_export(self, error: RasterExportError) -> None:
        self._report_export_error(error)
        return None

    def start_png_export(
        self,
        scale: Optional[int] = None,
        container_width: Optional[float] = None,
        on_done: Optional[Callable[[ExportArtifact], None]] = None
    ) -> "asyncio.Task[Optional[ExportArtifact]]":
        """
        Start a cancellable PNG export of the current scene.

        Never raises: a scene that cannot be laid out is reported through
        on_error like any other raster failure, and the task resolves to None.
        """
        self.last_export_error = None
        try:
            scene = self.scene(container_width)
        except LayoutError as e:
            logger.error("Failed to export PNG: %s", e)
            return asyncio.get_running_loop().create_task(
                self._fail_export(RasterExportError(str(e)))
            )
        return start_png_export(
            scene,
            self._title,
            scale=self._config.png_scale if scale is None else scale,
            on_done=on_done,
            on_error=self._report_export_error
        )

    async def export_png(
        self,
        scale: Optional[int] = None,
        container_width: Optional[float] = None
    ) -> Optional[ExportArtifact]:
        """Export PNG and wait for it. Returns None on failure (see last_export_error)."""
        return await self.start_png_export(scale, container_width)

    # --- State ---

    def get_state(self) -> dict:
        """Get the full current state for API responses."""
        return {
            "title": self._title,
            "flow_animation": self._flow_animation,
            **self._snapshot.to_json_dict(),
            "balance": self.balance().to_dict(),
            "transform": self.viewport.transform.model_dump(),
            "pending_edits": self.has_pending_edits,
        }


def _editor_fields(fields: dict) -> dict:
    """Normalize from/to keyword names to source/target."""
    normalized = dict(fields)
    if "from" in normalized:
        normalized["source"] = normalized.pop("from")
    if "to" in normalized:
        normalized["target"] = normalized.pop("to")
    return normalized
