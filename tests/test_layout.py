"""Tests for the layered layout and the memoizing layout adapter."""

import pytest

from sankey_core import (
    CircularFlowError,
    EdgeRow,
    LayoutAdapter,
    LayoutRequest,
    Margins,
    build_graph,
    layered_layout,
)


def graph_of(*flows):
    return build_graph(EdgeRow(source=s, target=t, current=c) for s, t, c in flows)


class CountingLayout:
    """Layout function wrapper that counts invocations."""

    def __init__(self):
        self.calls = 0

    def __call__(self, request: LayoutRequest):
        self.calls += 1
        return layered_layout(request)


class TestLayeredLayout:
    def test_nodes_fit_the_extent(self, seed_rows):
        adapter = LayoutAdapter()
        result = adapter.compute(build_graph(seed_rows), 900, 540, Margins())

        for node in result.nodes:
            assert node.x0 >= 40 - 1e-9
            assert node.x1 <= 900 - 40 + 1e-9
            assert node.y0 >= 60 - 1e-9
            assert node.y1 <= 540 - 40 + 1e-9
            assert node.width == 18

    def test_columns_follow_depth(self, seed_rows):
        result = LayoutAdapter().compute(build_graph(seed_rows), 900, 540, Margins())
        assert result.node("Product A").depth == 0
        assert result.node("Revenue").depth == 1
        # Sinks are justified to the last column
        assert result.node("Gross profit").depth == 2
        assert result.node("Cost of revenue").depth == 2
        assert result.node("Product A").x0 == 40
        assert result.node("Gross profit").x1 == pytest.approx(860)

    def test_node_height_proportional_to_flow(self, seed_rows):
        result = LayoutAdapter().compute(build_graph(seed_rows), 900, 540, Margins())
        revenue = result.node("Revenue")
        gross = result.node("Gross profit")
        cost = result.node("Cost of revenue")
        assert gross.height / cost.height == pytest.approx(30 / 20)
        assert revenue.height == pytest.approx(gross.height + cost.height)

    def test_link_width_matches_node_share(self, seed_rows):
        result = LayoutAdapter().compute(build_graph(seed_rows), 900, 540, Margins())
        cost = result.node("Cost of revenue")
        link = next(l for l in result.links if l.target == "Cost of revenue")
        assert link.width == pytest.approx(cost.height)
        assert link.path.startswith("M")

    def test_empty_graph(self):
        result = LayoutAdapter().compute(graph_of(), 900, 540, Margins())
        assert result.nodes == ()
        assert result.links == ()

    def test_cycle_raises(self):
        with pytest.raises(CircularFlowError):
            LayoutAdapter().compute(graph_of(("A", "B", 1), ("B", "A", 1)), 900, 540, Margins())

    def test_deterministic(self, seed_rows):
        graph = build_graph(seed_rows)
        first = LayoutAdapter().compute(graph, 900, 540, Margins())
        second = LayoutAdapter().compute(graph, 900, 540, Margins())
        assert first == second


class TestLayoutAdapter:
    """Memoization by structural hash."""

    def test_structurally_equal_input_hits_cache(self, seed_rows):
        layout_fn = CountingLayout()
        adapter = LayoutAdapter(layout_fn)

        first = adapter.compute(build_graph(seed_rows), 900, 540, Margins())
        # Freshly built but equal graph and margins
        second = adapter.compute(build_graph(list(seed_rows)), 900, 540, Margins())

        assert layout_fn.calls == 1
        assert second is first
        assert adapter.hits == 1
        assert adapter.misses == 1

    def test_comparison_amounts_do_not_affect_layout(self):
        layout_fn = CountingLayout()
        adapter = LayoutAdapter(layout_fn)
        adapter.compute(build_graph([EdgeRow(source="A", target="B", current=5, comparison=1)]), 900, 540, Margins())
        adapter.compute(build_graph([EdgeRow(source="A", target="B", current=5, comparison=9)]), 900, 540, Margins())
        assert layout_fn.calls == 1

    @pytest.mark.parametrize("width,height,margins", [
        (1000, 540, Margins()),
        (900, 600, Margins()),
        (900, 540, Margins(top=10)),
    ])
    def test_size_or_margin_change_recomputes(self, seed_rows, width, height, margins):
        layout_fn = CountingLayout()
        adapter = LayoutAdapter(layout_fn)
        graph = build_graph(seed_rows)

        adapter.compute(graph, 900, 540, Margins())
        adapter.compute(graph, width, height, margins)

        assert layout_fn.calls == 2

    def test_value_change_recomputes(self):
        layout_fn = CountingLayout()
        adapter = LayoutAdapter(layout_fn)
        adapter.compute(graph_of(("A", "B", 5)), 900, 540, Margins())
        adapter.compute(graph_of(("A", "B", 6)), 900, 540, Margins())
        assert layout_fn.calls == 2

    def test_cache_is_bounded(self):
        layout_fn = CountingLayout()
        adapter = LayoutAdapter(layout_fn, cache_size=2)
        for width in (500, 600, 700):
            adapter.compute(graph_of(("A", "B", 5)), width, 540, Margins())
        # 500 was evicted
        adapter.compute(graph_of(("A", "B", 5)), 500, 540, Margins())
        assert layout_fn.calls == 4

    def test_clear(self):
        layout_fn = CountingLayout()
        adapter = LayoutAdapter(layout_fn)
        adapter.compute(graph_of(("A", "B", 5)), 900, 540, Margins())
        adapter.clear()
        adapter.compute(graph_of(("A", "B", 5)), 900, 540, Margins())
        assert layout_fn.calls == 2
