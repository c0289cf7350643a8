"""
Shared test fixtures for the flow editor test suite.

Provides: seed rows, editor sessions, a stand-in SVG decoder for PNG export
"""

import io

import pytest
from PIL import Image

from sankey_core import ChartConfig, EdgeRow, EditorSession
from sankey_core import export as export_module


@pytest.fixture
def seed_rows():
    """Small income statement: three products feed revenue, revenue splits twice."""
    return [
        EdgeRow.model_validate({"from": "Product A", "to": "Revenue", "current": 35, "comparison": 30}),
        EdgeRow.model_validate({"from": "Product B", "to": "Revenue", "current": 15, "comparison": 15}),
        EdgeRow.model_validate({"from": "Revenue", "to": "Gross profit", "current": 30, "comparison": 26}),
        EdgeRow.model_validate({"from": "Revenue", "to": "Cost of revenue", "current": 20}),
    ]


@pytest.fixture
def session():
    """Editor session with the built-in seed data."""
    return EditorSession()


@pytest.fixture
def fast_config():
    """Config with a short debounce for async tests."""
    return ChartConfig(debounce_seconds=0.05)


@pytest.fixture
def fake_svg_decoder(monkeypatch):
    """
    Replace the native SVG decoder with one that paints a solid image.

    Records the requested sizes so tests can check the upscale.
    """
    calls = []

    def _render(svg_bytes: bytes, width: int, height: int) -> bytes:
        calls.append({"svg": svg_bytes, "width": width, "height": height})
        buffer = io.BytesIO()
        Image.new("RGBA", (width, height), (17, 24, 39, 255)).save(buffer, format="PNG")
        return buffer.getvalue()

    monkeypatch.setattr(export_module, "_render_svg", _render)
    return calls


@pytest.fixture
def failing_svg_decoder(monkeypatch):
    """Replace the native SVG decoder with one that always fails."""

    def _render(svg_bytes: bytes, width: int, height: int) -> bytes:
        raise OSError("decoder unavailable")

    monkeypatch.setattr(export_module, "_render_svg", _render)
