"""
Scene rendering - turn a layout plus styles into an SVG element tree.

The scene is what presentations display and what the exporter serializes.
Rendering is a pure function of its inputs.
"""

import xml.etree.ElementTree as ET
from typing import Optional

from .analysis import NodeTotals, default_link_color, node_label_lines
from .layout import LayoutResult
from .models import (
    DEFAULT_LINK_OPACITY,
    DEFAULT_NODE_FILL,
    LinkStyle,
    NodeStyle,
    Selection,
    Transform,
    make_link_key,
)

WATERMARK = "created with LumenFlow Finance"

NODE_OPACITY = 0.85
SELECTED_NODE_STROKE = "#fbbf24"
LABEL_COLOR = "#111827"
LABEL_GAP = 8
LABEL_LINE_HEIGHT = 14
SHIMMER_STROKE = "#f9fafb"


def _num(value: float) -> str:
    return f"{value:g}"


def _link_element(parent: ET.Element, link, link_styles: dict[str, LinkStyle],
                  selection: Selection, flow_animation: bool):
    key = make_link_key(link.source, link.target)
    custom = link_styles.get(key)

    stroke = custom.stroke if custom else default_link_color(link.target)
    opacity = custom.opacity if custom else DEFAULT_LINK_OPACITY

    is_selected = selection.link == (link.source, link.target)
    stroke_width = max(1.0, link.width) + (2 if is_selected else 0)
    stroke_opacity = min(1.0, opacity + 0.25) if is_selected else opacity

    group = ET.SubElement(parent, "g", {"data-link": key})
    ET.SubElement(group, "path", {
        "d": link.path,
        "stroke": stroke,
        "stroke-width": _num(stroke_width),
        "stroke-opacity": _num(stroke_opacity),
    })
    if flow_animation:
        ET.SubElement(group, "path", {
            "d": link.path,
            "stroke": SHIMMER_STROKE,
            "stroke-width": _num(max(1.0, link.width) * 0.4),
            "stroke-opacity": "0.18",
            "class": "sankey-link-shimmer",
            "pointer-events": "none",
        })


def _node_element(parent: ET.Element, node, node_styles: dict[str, NodeStyle],
                  selection: Selection, totals: dict[str, NodeTotals], chart_width: float):
    style = node_styles.get(node.id)
    fill = style.fill if style else DEFAULT_NODE_FILL
    is_selected = selection.node_id == node.id

    group = ET.SubElement(parent, "g", {"data-node": node.id})
    ET.SubElement(group, "rect", {
        "x": _num(node.x0),
        "y": _num(node.y0),
        "width": _num(node.width),
        "height": _num(node.height),
        "fill": fill,
        "opacity": _num(NODE_OPACITY),
        "rx": "3",
        "stroke": SELECTED_NODE_STROKE if is_selected else "none",
        "stroke-width": "3" if is_selected else "0",
    })

    # Labels go outward: right of nodes in the left half, left of the others
    on_left = node.x0 < chart_width / 2
    label_x = node.x1 + LABEL_GAP if on_left else node.x0 - LABEL_GAP
    text = ET.SubElement(group, "text", {
        "x": _num(label_x),
        "y": _num(node.y0 + node.height / 2),
        "text-anchor": "start" if on_left else "end",
        "dominant-baseline": "middle",
        "style": f"font-size: 12px; fill: {LABEL_COLOR}; font-weight: 600",
    })
    for index, line in enumerate(node_label_lines(node.id, totals)):
        tspan = ET.SubElement(text, "tspan", {
            "x": _num(label_x),
            "dy": "0" if index == 0 else str(LABEL_LINE_HEIGHT),
        })
        tspan.text = line


def render_scene(
    layout: LayoutResult,
    width: float,
    height: float,
    totals: Optional[dict[str, NodeTotals]] = None,
    node_styles: Optional[dict[str, NodeStyle]] = None,
    link_styles: Optional[dict[str, LinkStyle]] = None,
    selection: Optional[Selection] = None,
    transform: Optional[Transform] = None,
    flow_animation: bool = False
) -> ET.Element:
    """
    Render the diagram as an <svg> element.

    Structure:
        <svg width height>
          <g transform="translate(x,y) scale(k)">
            <g fill="none"> link groups </g>
            <g> node groups (rect + label) </g>
          </g>
          <text> watermark </text>
        </svg>

    Style overrides win over defaults; a selected link is drawn thicker and
    more opaque, a selected node gets a highlight stroke.

    Returns:
        Root <svg> element (no namespace declaration; the exporter adds it)
    """
    totals = totals or {}
    node_styles = node_styles or {}
    link_styles = link_styles or {}
    selection = selection or Selection()
    transform = transform or Transform.identity()

    svg = ET.Element("svg", {
        "width": _num(width),
        "height": _num(height),
    })
    viewport = ET.SubElement(svg, "g", {"transform": transform.to_svg()})

    links_group = ET.SubElement(viewport, "g", {"fill": "none"})
    for link in layout.links:
        _link_element(links_group, link, link_styles, selection, flow_animation)

    nodes_group = ET.SubElement(viewport, "g")
    for node in layout.nodes:
        _node_element(nodes_group, node, node_styles, selection, totals, width)

    watermark = ET.SubElement(svg, "text", {
        "x": _num(width / 2),
        "y": _num(height - 10),
        "text-anchor": "middle",
        "style": "font-size: 11px; fill: #9ca3af",
    })
    watermark.text = WATERMARK

    return svg
