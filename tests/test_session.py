"""Tests for the editor session: edits, debounce, styles, selection and exports."""

import asyncio

import pytest

from sankey_core import EditorSession, RasterExportError, RowIndexError, Selection, UnknownElementError
from sankey_core.session import DEFAULT_TITLE, SEED_ROWS


class TestSessionDefaults:
    def test_seed_data(self, session):
        assert len(session.rows) == len(SEED_ROWS) == 9
        assert session.title == DEFAULT_TITLE
        assert session.balance().ok
        assert session.transform.is_identity()
        assert session.viewport.presentations == ["normal"]

    def test_state(self, session):
        state = session.get_state()
        assert state["rows"][0] == {"from": "Product A", "to": "Revenue", "current": 35.0, "comparison": 30.0}
        assert state["balance"]["message"] == "All nodes are balanced"
        assert state["selection"] == {"node_id": None, "link": None}
        assert state["pending_edits"] is False


class TestRowEditing:
    def test_add_row_defaults(self, session):
        row = session.add_row()
        assert row.to_json_dict() == {"from": "New source", "to": "New target", "current": 0.0, "comparison": 0.0}
        # Zero-amount rows are listed but not drawn
        assert not session.layout().node("New source")

    def test_update_row_merges_fields(self, session):
        row = session.update_row(8, current="7")
        assert (row.source, row.target, row.current, row.comparison) == ("Operating profit", "Tax", 7.0, 4.0)
        assert session.balance().not_balanced == ["Operating profit"]

    def test_update_row_accepts_editor_names(self, session):
        row = session.update_row(0, **{"from": "Product Z"})
        assert row.source == "Product Z"

    def test_blank_comparison_becomes_absent(self, session):
        row = session.update_row(0, comparison="")
        assert row.comparison is None

    def test_delete_row_drops_orphaned_styles(self, session):
        session.set_node_fill("Tax", "#ff0000")
        session.set_link_stroke("Operating profit", "Tax", "#00ff00")
        session.select_node("Tax")

        session.delete_row(8)

        assert "Tax" not in session.snapshot.node_styles
        assert "Operating profit→Tax" not in session.snapshot.link_styles
        assert session.selection.is_empty

    def test_delete_keeps_styles_of_surviving_nodes(self, session):
        session.set_node_fill("Operating profit", "#ff0000")
        session.delete_row(8)
        assert session.snapshot.node_styles["Operating profit"].fill == "#ff0000"

    def test_bad_index(self, session):
        with pytest.raises(RowIndexError):
            session.update_row(99, current=1)
        with pytest.raises(RowIndexError):
            session.delete_row(-1)

    def test_set_rows(self, session):
        session.set_rows([{"from": "A", "to": "B", "current": 100}, {"from": "B", "to": "C", "current": 50}])
        assert session.balance().not_balanced == ["B"]
        assert session.layout().node("C") is not None

    def test_change_callback(self, session):
        calls = []
        session.on_change(lambda: calls.append(True))
        session.add_row(source="X", target="Y", current=1)
        assert calls == [True]

    def test_failing_callback_does_not_break_edit(self, session, caplog):
        def broken():
            raise RuntimeError("boom")

        session.on_change(broken)
        session.add_row()
        assert len(session.rows) == 10
        assert "Session callback" in caplog.text

    def test_callback_registered_twice_fires_once(self, session):
        calls = []

        def record():
            calls.append(True)

        session.on_change(record)
        session.on_change(record)
        session.add_row()
        assert calls == [True]

        session.remove_callback(record)
        session.add_row()
        assert calls == [True]


class TestRename:
    def test_rename_selected_node(self, session):
        session.set_node_fill("Revenue", "#000")
        session.set_link_stroke("Product A", "Revenue", "#123456")
        session.select_node("Revenue")

        assert session.rename_node("Total Revenue")

        snapshot = session.snapshot
        assert snapshot.node_styles["Total Revenue"].fill == "#000"
        assert "Revenue" not in snapshot.node_styles
        assert "Product A→Total Revenue" in snapshot.link_styles
        assert session.selection == Selection.of_node("Total Revenue")
        assert session.rendered_rows == session.rows

    def test_rename_without_selection_is_noop(self, session):
        assert not session.rename_node("Anything")

    def test_blank_rename_is_noop(self, session):
        session.select_node("Revenue")
        before = session.snapshot
        assert not session.rename_node("   ")
        assert session.snapshot is before

    def test_rename_to_separator_id_raises(self, session):
        session.select_node("Revenue")
        before = session.snapshot
        with pytest.raises(ValueError):
            session.rename_node("Revenue→Net")
        assert session.snapshot is before


class TestStylingAndSelection:
    def test_unknown_node(self, session):
        with pytest.raises(UnknownElementError):
            session.set_node_fill("Nope", "#000")
        with pytest.raises(UnknownElementError):
            session.select_node("Nope")

    def test_unknown_link(self, session):
        with pytest.raises(UnknownElementError):
            session.set_link_opacity("Product A", "Tax", 0.5)
        with pytest.raises(UnknownElementError):
            session.select_link("Product A", "Tax")

    def test_link_style_updates_merge(self, session):
        session.set_link_stroke("Revenue", "Gross profit", "#222")
        style = session.set_link_opacity("Revenue", "Gross profit", 0.9)
        assert (style.stroke, style.opacity) == ("#222", 0.9)

    def test_select_and_clear(self, session):
        session.select_link("Revenue", "Gross profit")
        assert session.selection.link == ("Revenue", "Gross profit")
        assert session.clear_selection().is_empty


class TestChartGeometry:
    @pytest.mark.parametrize("container,fullscreen,expected", [
        (None, False, (900, 540)),
        (300, False, (480, 420)),
        (1200, False, (1200, 720)),
        (600, True, (600, 480)),
    ])
    def test_chart_size(self, session, container, fullscreen, expected):
        assert session.chart_size(container, fullscreen) == expected

    def test_layout_is_memoized(self, session):
        first = session.layout()
        second = session.layout()
        assert first is second
        assert session.layout_adapter.misses == 1

    def test_scene_uses_presentation_transform(self, session):
        session.viewport.presentation("normal").wheel(-500, 0, 0)
        scene = session.scene()
        assert scene[0].get("transform") == "translate(0,0) scale(2)"


class TestDebounce:
    """Row edits reach layout only after the debounce settles."""

    @pytest.mark.asyncio
    async def test_edits_are_coalesced(self, fast_config):
        session = EditorSession(rows=[{"from": "A", "to": "B", "current": 10}], config=fast_config)
        renders = []
        session.on_render(lambda: renders.append(session.rendered_rows))

        session.update_row(0, current=20)
        session.update_row(0, current=30)

        assert session.has_pending_edits
        assert session.rendered_rows[0].current == 10
        # Balance is computed from the live rows
        assert session.balance().inflow["B"] == 30

        await asyncio.sleep(0.15)

        assert len(renders) == 1
        assert session.rendered_rows[0].current == 30
        assert not session.has_pending_edits

    @pytest.mark.asyncio
    async def test_flush(self, fast_config):
        session = EditorSession(rows=[{"from": "A", "to": "B", "current": 10}], config=fast_config)
        session.update_row(0, current=20)
        session.flush_pending_edits()
        assert session.rendered_rows[0].current == 20


class TestSessionExport:
    def test_svg(self, session):
        artifact = session.export_svg()
        assert artifact.filename == "Example-Inc-FY24-Income-Statement.svg"
        assert b'xmlns="http://www.w3.org/2000/svg"' in artifact.content

    @pytest.mark.asyncio
    async def test_png(self, session, fake_svg_decoder):
        artifact = await session.export_png()
        assert artifact.filename == "Example-Inc-FY24-Income-Statement.png"
        assert (fake_svg_decoder[0]["width"], fake_svg_decoder[0]["height"]) == (1800, 1080)

    @pytest.mark.asyncio
    async def test_png_failure_leaves_state_alone(self, session, failing_svg_decoder):
        errors = []
        session.on_error(errors.append)
        before = session.snapshot

        assert await session.export_png() is None

        assert len(errors) == 1
        assert "decoder unavailable" in session.last_export_error
        assert session.snapshot is before

    @pytest.mark.asyncio
    async def test_png_of_cyclic_rows_reports_through_on_error(self):
        session = EditorSession(rows=[
            {"from": "A", "to": "B", "current": 1},
            {"from": "B", "to": "A", "current": 1},
        ])
        errors = []
        session.on_error(errors.append)

        task = session.start_png_export()

        assert await task is None
        assert len(errors) == 1
        assert isinstance(errors[0], RasterExportError)
        assert "Circular flow" in session.last_export_error
