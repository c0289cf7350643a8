"""
Sankey Flow Backend - FastAPI Application

This is the main entry point for the flow editor backend.
It provides:
- REST API for editor operations (rows, rename, styles, selection, balance,
  layout, viewport, export)
- WebSocket endpoint for real-time updates
- CORS configuration for local frontend development
"""
import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, Optional
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Query, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

from sankey_core import (
    EditorSession,
    LayoutError,
    LinkStyleRequest,
    NodeStyleRequest,
    RenameRequest,
    RowIndexError,
    RowPatchRequest,
    SelectionRequest,
    SessionInfoRequest,
    Transform,
    TooltipController,
    UnknownElementError,
    compute_overlay_position,
    tooltip_content,
)
from sankey_core.export import ExportArtifact

from .websocket_manager import ws_manager

logger = logging.getLogger(__name__)

HOST = os.environ.get("SANKEY_HOST", "127.0.0.1")
PORT = int(os.environ.get("SANKEY_PORT", "8765"))
CORS_ORIGINS = os.environ.get(
    "SANKEY_CORS_ORIGINS",
    "http://localhost:5173,http://localhost:3000,http://127.0.0.1:5173"
).split(",")

# Global session for the application
editor_session = EditorSession()
tooltip = TooltipController()


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging with timestamped console output."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Reduce noise from verbose third-party libraries
    logging.getLogger("PIL").setLevel(logging.WARNING)


# --- Async change notification ---
# Bridge between sync EditorSession callbacks and async WebSocket broadcasts

# Created per lifespan so it is bound to the serving event loop
_change_event: Optional[asyncio.Event] = None
_background_tasks: set[asyncio.Task] = set()


def on_session_change():
    """Callback for editor changes - sets event for async handler."""
    if _change_event is not None:
        _change_event.set()


def on_export_error(error: Exception):
    """Callback for PNG export failures - forwards them to WebSocket clients."""
    task = asyncio.get_running_loop().create_task(ws_manager.notify_export_failed(str(error)))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


async def change_broadcaster(event: asyncio.Event):
    """Background task that broadcasts changes to WebSocket clients."""
    while True:
        await event.wait()
        event.clear()
        await ws_manager.notify_state_updated(editor_session.balance().ok)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup/shutdown tasks."""
    global _change_event
    _change_event = asyncio.Event()
    session = editor_session
    change_callback, error_callback = on_session_change, on_export_error
    session.on_change(change_callback)
    session.on_error(error_callback)

    broadcaster_task = asyncio.create_task(change_broadcaster(_change_event))

    yield

    session.remove_callback(change_callback)
    session.remove_callback(error_callback)
    broadcaster_task.cancel()
    try:
        await broadcaster_task
    except asyncio.CancelledError:
        pass
    _change_event = None


# --- FastAPI App ---

app = FastAPI(
    title="Sankey Flow API",
    description="Backend API for the income statement flow editor",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback plus the RFC 5987 UTF-8 name."""
    fallback = filename.encode("ascii", "ignore").decode("ascii")
    fallback = fallback.replace("\\", "_").replace('"', "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _download(artifact: ExportArtifact) -> Response:
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": _content_disposition(artifact.filename)}
    )


# --- Health Check ---

@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "connections": ws_manager.connection_count}


# --- Editor State ---

@app.get("/api/state")
async def get_state():
    """Get the current editor state."""
    return editor_session.get_state()


@app.patch("/api/state")
async def update_state(request: SessionInfoRequest):
    """Update the chart title or the flow animation toggle."""
    if request.title is not None:
        editor_session.set_title(request.title)
    if request.flow_animation is not None:
        editor_session.set_flow_animation(request.flow_animation)
    return {"success": True, "title": editor_session.title, "flow_animation": editor_session.flow_animation}


# --- Row Operations ---

@app.put("/api/rows")
async def replace_rows(rows: list[dict[str, Any]]):
    """Replace all rows."""
    try:
        editor_session.set_rows(rows)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "success": True,
        "rows": [r.to_json_dict() for r in editor_session.rows],
        "balance": editor_session.balance().to_dict()
    }


@app.post("/api/rows")
async def add_row(request: RowPatchRequest):
    """Append a row (unspecified fields use the new-row defaults)."""
    try:
        row = editor_session.add_row(**request.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "success": True,
        "index": len(editor_session.rows) - 1,
        "row": row.to_json_dict(),
        "balance": editor_session.balance().to_dict()
    }


@app.patch("/api/rows/{index}")
async def update_row(index: int, request: RowPatchRequest):
    """Update fields of one row."""
    try:
        row = editor_session.update_row(index, **request.model_dump(exclude_unset=True))
    except RowIndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "row": row.to_json_dict(), "balance": editor_session.balance().to_dict()}


@app.delete("/api/rows/{index}")
async def delete_row(index: int):
    """Delete a row."""
    try:
        row = editor_session.delete_row(index)
    except RowIndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "row": row.to_json_dict(), "balance": editor_session.balance().to_dict()}


# --- Nodes and Links ---

@app.post("/api/nodes/rename")
async def rename_node(request: RenameRequest):
    """Rename a node (the selected node unless old_id is given)."""
    try:
        changed = editor_session.rename_node(request.new_id, old_id=request.old_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "changed": changed, "state": editor_session.get_state()}


@app.patch("/api/nodes/{node_id:path}/style")
async def set_node_style(node_id: str, request: NodeStyleRequest):
    """Set a node's fill colour."""
    try:
        style = editor_session.set_node_fill(node_id, request.fill)
    except UnknownElementError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "node_id": node_id, "style": style.model_dump()}


@app.patch("/api/links/style")
async def set_link_style(request: LinkStyleRequest):
    """Set a link's stroke colour and/or opacity."""
    try:
        style = None
        if request.stroke is not None:
            style = editor_session.set_link_stroke(request.source, request.target, request.stroke)
        if request.opacity is not None:
            style = editor_session.set_link_opacity(request.source, request.target, request.opacity)
    except UnknownElementError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if style is None:
        raise HTTPException(status_code=400, detail="Nothing to update: give stroke and/or opacity")
    return {"success": True, "source": request.source, "target": request.target, "style": style.model_dump()}


@app.post("/api/selection")
async def select(request: SelectionRequest):
    """Select a node, a link, or clear the selection."""
    try:
        if request.node_id is not None:
            selection = editor_session.select_node(request.node_id)
        elif request.source is not None and request.target is not None:
            selection = editor_session.select_link(request.source, request.target)
        else:
            selection = editor_session.clear_selection()
    except UnknownElementError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "selection": selection.to_json_dict()}


# --- Validation and Geometry ---

@app.get("/api/balance")
async def get_balance():
    """Check flow conservation over intermediate nodes."""
    return {"success": True, "balance": editor_session.balance().to_dict()}


@app.get("/api/layout")
async def get_layout(
    width: Optional[float] = Query(default=None, gt=0),
    fullscreen: bool = Query(default=False)
):
    """Layout geometry for a chart container of the given width."""
    try:
        layout = editor_session.layout(width, fullscreen)
    except LayoutError as e:
        raise HTTPException(status_code=422, detail=str(e))
    chart_width, chart_height = editor_session.chart_size(width, fullscreen)
    return {"success": True, "width": chart_width, "height": chart_height, "layout": layout.to_dict()}


@app.get("/api/tooltip")
async def get_tooltip(
    node_id: str,
    x: float,
    y: float,
    width: float = Query(default=120, gt=0),
    height: float = Query(default=60, gt=0),
    viewport_width: float = Query(default=1280, gt=0),
    viewport_height: float = Query(default=800, gt=0)
):
    """Tooltip content and placement for a node hovered at (x, y)."""
    state = tooltip.show(x, y, tooltip_content(node_id, editor_session.totals()))
    position = compute_overlay_position(
        x, y, width, height, viewport_width, viewport_height,
        margin=editor_session.config.tooltip_margin,
        inset=editor_session.config.tooltip_inset
    )
    return {
        "success": True,
        "tooltip": state.model_dump(),
        "position": {"left": position.left, "top": position.top}
    }


# --- Viewport ---

@app.get("/api/transform")
async def get_transform():
    """Get the shared viewport transform."""
    return {"success": True, "transform": editor_session.transform.model_dump()}


@app.put("/api/transform")
async def put_transform(transform: Transform):
    """Apply a transform from outside; presentations update without echoing it back."""
    editor_session.viewport.apply_external(transform)
    return {"success": True, "transform": editor_session.transform.model_dump()}


@app.post("/api/viewport/{presentation}/mount")
async def mount_presentation(presentation: str):
    """Open a presentation (e.g. fullscreen) synced to the shared transform."""
    controller = editor_session.viewport.mount(presentation)
    return {"success": True, "presentation": presentation, "transform": controller.transform.model_dump()}


@app.post("/api/viewport/{presentation}/unmount")
async def unmount_presentation(presentation: str):
    """Close a presentation."""
    if not editor_session.viewport.unmount(presentation):
        raise HTTPException(status_code=404, detail="Presentation not mounted")
    return {"success": True}


@app.post("/api/viewport/{presentation}/reset")
async def reset_presentation(presentation: str):
    """Double-click reset on a presentation."""
    controller = editor_session.viewport.presentation(presentation)
    if controller is None:
        raise HTTPException(status_code=404, detail="Presentation not mounted")
    controller.reset()
    return {"success": True, "transform": editor_session.transform.model_dump()}


# --- Export ---

@app.get("/api/export/svg")
async def export_svg(width: Optional[float] = Query(default=None, gt=0)):
    """Download the chart as SVG."""
    editor_session.flush_pending_edits()
    try:
        artifact = editor_session.export_svg(width)
    except LayoutError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _download(artifact)


@app.get("/api/export/png")
async def export_png(
    scale: int = Query(default=2, ge=1, le=8),
    width: Optional[float] = Query(default=None, gt=0)
):
    """Download the chart as PNG at an integer upscale."""
    editor_session.flush_pending_edits()
    artifact = await editor_session.export_png(scale, width)
    if artifact is None:
        raise HTTPException(status_code=500, detail=f"Failed to export PNG: {editor_session.last_export_error}")
    return _download(artifact)


# --- WebSocket ---

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Clients connect here to receive state_updated events.
    """
    await ws_manager.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"type": "pong"}')
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception:
        logger.exception("WebSocket connection failed")
        await ws_manager.disconnect(websocket)


@app.get("/")
async def index():
    """Placeholder page; the chart UI is a separate frontend."""
    return HTMLResponse("<h1>Sankey Flow API</h1><p>See /docs for the API.</p>")


# --- Run with uvicorn ---

def run():
    """Console entry point."""
    import uvicorn
    configure_logging()
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    run()
