#!/usr/bin/env python3
"""
Sankey Flow MCP Server

Provides MCP tools for AI agents to edit the flow chart.
All changes are immediately reflected in the frontend via WebSocket updates.
"""

import json
import os
from typing import Optional
from urllib.parse import quote

import httpx
from mcp.server.fastmcp import FastMCP

# Backend API URL
API_BASE = os.environ.get("SANKEY_API_BASE", "http://127.0.0.1:8765/api")

# Create MCP server
mcp = FastMCP("sankey-flow")


# --- HTTP Client Helper ---

def api_request(method: str, endpoint: str, **kwargs) -> dict:
    """Make a request to the flow editor backend."""
    url = f"{API_BASE}{endpoint}"
    with httpx.Client(timeout=30.0) as client:
        if method == "GET":
            response = client.get(url, params=kwargs.get("params"))
        elif method == "POST":
            response = client.post(url, json=kwargs.get("json"), params=kwargs.get("params"))
        elif method == "PUT":
            response = client.put(url, json=kwargs.get("json"))
        elif method == "PATCH":
            response = client.patch(url, json=kwargs.get("json"))
        elif method == "DELETE":
            response = client.delete(url)
        else:
            raise ValueError(f"Unknown method: {method}")

        if response.status_code >= 400:
            error = response.json().get("detail", "Unknown error")
            raise Exception(f"API error: {error}")

        return response.json()


# ============================================================================
# INSPECTION TOOLS
# ============================================================================

@mcp.tool()
def flow_get_state() -> str:
    """
    Get the full current editor state.

    Returns the chart title, all rows (from, to, current, comparison),
    node and link styles, the selection, the balance report and the
    viewport transform. Use this before making changes.
    """
    result = api_request("GET", "/state")
    return json.dumps(result, indent=2)


@mcp.tool()
def flow_check_balance() -> str:
    """
    Check that every intermediate node's inflow equals its outflow.

    Source nodes (no inflow) and sink nodes (no outflow) are exempt.
    Returns ok plus the list of unbalanced nodes with their totals.
    """
    result = api_request("GET", "/balance")
    return json.dumps(result, indent=2)


@mcp.tool()
def flow_summarize() -> str:
    """
    Get a structured summary of the current flows.

    Returns:
    - Source nodes (where money enters) with their totals
    - Sink nodes (where money ends up) with their totals
    - Row count, and rows that are not drawn (zero amount or blank ids)
    """
    state = api_request("GET", "/state")
    rows = state.get("rows", [])

    inflow: dict[str, float] = {}
    outflow: dict[str, float] = {}
    hidden = []
    for index, row in enumerate(rows):
        source, target, current = row["from"], row["to"], row["current"]
        if not source.strip() or not target.strip() or current <= 0:
            hidden.append(index)
            continue
        outflow[source] = outflow.get(source, 0) + current
        inflow[target] = inflow.get(target, 0) + current

    sources = {n: v for n, v in outflow.items() if n not in inflow}
    sinks = {n: v for n, v in inflow.items() if n not in outflow}

    return json.dumps({
        "success": True,
        "summary": {
            "title": state.get("title"),
            "total_rows": len(rows),
            "hidden_rows": hidden,
            "sources": sources,
            "sinks": sinks,
            "total_in": sum(sources.values()),
            "total_out": sum(sinks.values()),
            "balanced": state.get("balance", {}).get("ok")
        }
    }, indent=2)


# ============================================================================
# ROW TOOLS
# ============================================================================

@mcp.tool()
def flow_add_row(
    source: str,
    target: str,
    current: float,
    comparison: Optional[float] = None
) -> str:
    """
    Add a flow from one node to another.

    Args:
        source: Node the money flows from (created if new)
        target: Node the money flows to (created if new)
        current: Current-period amount (negative values become 0)
        comparison: Prior-period amount, used for year-over-year figures

    Returns the new row, its index and the updated balance.
    """
    payload = {"from": source, "to": target, "current": current}
    if comparison is not None:
        payload["comparison"] = comparison
    result = api_request("POST", "/rows", json=payload)
    return json.dumps(result, indent=2)


@mcp.tool()
def flow_update_row(
    index: int,
    source: Optional[str] = None,
    target: Optional[str] = None,
    current: Optional[float] = None,
    comparison: Optional[float] = None
) -> str:
    """
    Update fields of an existing row.

    Args:
        index: Row position (0-based, as listed by flow_get_state)
        source: New source node
        target: New target node
        current: New current-period amount
        comparison: New prior-period amount

    Only provided fields are updated.
    """
    payload = {}
    if source is not None:
        payload["from"] = source
    if target is not None:
        payload["to"] = target
    if current is not None:
        payload["current"] = current
    if comparison is not None:
        payload["comparison"] = comparison

    result = api_request("PATCH", f"/rows/{index}", json=payload)
    return json.dumps(result, indent=2)


@mcp.tool()
def flow_delete_row(index: int) -> str:
    """
    Delete a row.

    Args:
        index: Row position (0-based)

    Styles of nodes and links that disappear with the row are dropped.
    """
    result = api_request("DELETE", f"/rows/{index}")
    return json.dumps(result, indent=2)


@mcp.tool()
def flow_replace_rows(rows: list[dict]) -> str:
    """
    Replace all rows at once.

    Args:
        rows: List of {"from", "to", "current", "comparison"} objects

    Returns the new rows and balance.
    """
    result = api_request("PUT", "/rows", json=rows)
    return json.dumps(result, indent=2)


# ============================================================================
# NODE / LINK TOOLS
# ============================================================================

@mcp.tool()
def flow_rename_node(old_id: str, new_id: str) -> str:
    """
    Rename a node everywhere it appears.

    Args:
        old_id: Current node name
        new_id: New node name (surrounding whitespace is trimmed)

    Rows, node colours, link styles and the selection follow the rename.
    """
    result = api_request("POST", "/nodes/rename", json={"old_id": old_id, "new_id": new_id})
    return json.dumps(result, indent=2)


@mcp.tool()
def flow_set_node_color(node_id: str, fill: str) -> str:
    """
    Set a node's fill colour.

    Args:
        node_id: Node name
        fill: CSS colour, e.g. "#16a34a"
    """
    result = api_request("PATCH", f"/nodes/{quote(node_id, safe='')}/style", json={"fill": fill})
    return json.dumps(result, indent=2)


@mcp.tool()
def flow_set_link_style(
    source: str,
    target: str,
    stroke: Optional[str] = None,
    opacity: Optional[float] = None
) -> str:
    """
    Set a link's stroke colour and/or opacity.

    Args:
        source: Link source node
        target: Link target node
        stroke: CSS colour
        opacity: 0 to 1
    """
    payload = {"source": source, "target": target}
    if stroke is not None:
        payload["stroke"] = stroke
    if opacity is not None:
        payload["opacity"] = opacity

    result = api_request("PATCH", "/links/style", json=payload)
    return json.dumps(result, indent=2)


@mcp.tool()
def flow_set_title(title: str) -> str:
    """
    Set the chart title. The title also names exported files.

    Args:
        title: New chart title
    """
    result = api_request("PATCH", "/state", json={"title": title})
    return json.dumps(result, indent=2)


# ============================================================================
# EXPORT
# ============================================================================

@mcp.tool()
def flow_export_svg(file_path: str) -> str:
    """
    Export the chart as a standalone SVG file.

    Args:
        file_path: Where to write the SVG

    Returns the written path and size.
    """
    with httpx.Client(timeout=30.0) as client:
        response = client.get(f"{API_BASE}/export/svg")
        if response.status_code >= 400:
            raise Exception(f"API error: {response.json().get('detail', 'Unknown error')}")

    with open(file_path, "wb") as f:
        f.write(response.content)

    return json.dumps({"success": True, "file_path": file_path, "bytes": len(response.content)}, indent=2)


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    mcp.run()
