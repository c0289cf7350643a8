"""
Sankey Flow Core - Editable flow graph, validation, layout, viewport and export.

This module provides the state-and-geometry engine used by both the backend
API and the MCP tools, ensuring a single source of truth for all flow
diagram logic.
"""

from .config import ChartConfig, Margins, DEFAULT_CONFIG
from .errors import (
    SankeyError,
    UnknownElementError,
    RowIndexError,
    LayoutError,
    CircularFlowError,
    RasterExportError,
)
from .models import (
    # Constants
    LINK_SEPARATOR,
    # Core models
    EdgeRow,
    NodeStyle,
    LinkStyle,
    Transform,
    Selection,
    Snapshot,
    TooltipContent,
    TooltipState,
    # Request models (for API)
    RowPatchRequest,
    RenameRequest,
    NodeStyleRequest,
    LinkStyleRequest,
    SelectionRequest,
    SessionInfoRequest,
    # Helpers
    check_node_id,
    make_link_key,
    split_link_key,
    parse_amount,
    parse_optional_amount,
)

from .graph import build_graph, SankeyGraph, GraphLink
from .validation import compute_balance, BalanceReport
from .rename import rename_node, prune_styles
from .layout import LayoutAdapter, LayoutRequest, LayoutResult, layered_layout
from .viewport import SharedViewport, ViewportController, TransformChange, TransformOrigin, InteractionState
from .overlay import compute_overlay_position, OverlayPositioner, TooltipController
from .analysis import compute_node_totals, tooltip_content, NodeTotals
from .scene import render_scene
from .export import export_svg, export_png, start_png_export, export_filename, normalize_svg_markup, ExportArtifact
from .session import EditorSession, RowDebouncer

__all__ = [
    # Config
    "ChartConfig",
    "Margins",
    "DEFAULT_CONFIG",
    # Errors
    "SankeyError",
    "UnknownElementError",
    "RowIndexError",
    "LayoutError",
    "CircularFlowError",
    "RasterExportError",
    # Models
    "LINK_SEPARATOR",
    "EdgeRow",
    "NodeStyle",
    "LinkStyle",
    "Transform",
    "Selection",
    "Snapshot",
    "TooltipContent",
    "TooltipState",
    # Request models
    "RowPatchRequest",
    "RenameRequest",
    "NodeStyleRequest",
    "LinkStyleRequest",
    "SelectionRequest",
    "SessionInfoRequest",
    # Helpers
    "check_node_id",
    "make_link_key",
    "split_link_key",
    "parse_amount",
    "parse_optional_amount",
    # Graph
    "build_graph",
    "SankeyGraph",
    "GraphLink",
    # Validation
    "compute_balance",
    "BalanceReport",
    # Rename
    "rename_node",
    "prune_styles",
    # Layout
    "LayoutAdapter",
    "LayoutRequest",
    "LayoutResult",
    "layered_layout",
    # Viewport
    "SharedViewport",
    "ViewportController",
    "TransformChange",
    "TransformOrigin",
    "InteractionState",
    # Overlay
    "compute_overlay_position",
    "OverlayPositioner",
    "TooltipController",
    # Analysis
    "compute_node_totals",
    "tooltip_content",
    "NodeTotals",
    # Scene / export
    "render_scene",
    "export_svg",
    "export_png",
    "start_png_export",
    "export_filename",
    "normalize_svg_markup",
    "ExportArtifact",
    # Session
    "EditorSession",
    "RowDebouncer",
]
