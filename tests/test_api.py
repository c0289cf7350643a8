"""Tests for the FastAPI backend."""

import pytest
from fastapi.testclient import TestClient

from sankey_core import EditorSession
from sankey_server import main


@pytest.fixture
def client(monkeypatch):
    """Test client bound to a fresh editor session."""
    monkeypatch.setattr(main, "editor_session", EditorSession())
    with TestClient(main.app) as test_client:
        yield test_client


class TestStateEndpoints:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_get_state(self, client):
        data = client.get("/api/state").json()
        assert data["title"] == "Example Inc FY24 Income Statement"
        assert len(data["rows"]) == 9
        assert data["balance"]["ok"] is True

    def test_patch_state(self, client):
        data = client.patch("/api/state", json={"title": "Q3", "flow_animation": True}).json()
        assert data["title"] == "Q3"
        assert data["flow_animation"] is True


class TestRowEndpoints:
    def test_add_row(self, client):
        response = client.post("/api/rows", json={"from": "Services", "to": "Revenue", "current": 5})
        data = response.json()
        assert response.status_code == 200
        assert data["index"] == 9
        assert data["row"] == {"from": "Services", "to": "Revenue", "current": 5.0, "comparison": 0.0}
        assert data["balance"]["not_balanced"] == ["Revenue"]

    def test_update_row(self, client):
        data = client.patch("/api/rows/8", json={"current": 7}).json()
        assert data["row"]["current"] == 7.0
        assert data["balance"]["ok"] is False

    def test_update_missing_row(self, client):
        assert client.patch("/api/rows/42", json={"current": 1}).status_code == 404

    def test_delete_row(self, client):
        data = client.delete("/api/rows/0").json()
        assert data["row"]["from"] == "Product A"
        assert len(client.get("/api/state").json()["rows"]) == 8

    def test_replace_rows(self, client):
        data = client.put("/api/rows", json=[
            {"from": "A", "to": "B", "current": 100},
            {"from": "B", "to": "C", "current": "50"},
        ]).json()
        assert len(data["rows"]) == 2
        assert data["balance"]["not_balanced"] == ["B"]

    def test_separator_in_node_id_is_rejected(self, client):
        response = client.post("/api/rows", json={"from": "Revenue→Net", "to": "Tax", "current": 1})
        assert response.status_code == 400
        assert len(client.get("/api/state").json()["rows"]) == 9


class TestNodeAndLinkEndpoints:
    def test_rename(self, client):
        client.patch("/api/nodes/Revenue/style", json={"fill": "#000"})
        data = client.post("/api/nodes/rename", json={"old_id": "Revenue", "new_id": "Total Revenue"}).json()

        assert data["changed"] is True
        assert data["state"]["node_styles"] == {"Total Revenue": {"fill": "#000"}}

    def test_rename_noop(self, client):
        data = client.post("/api/nodes/rename", json={"old_id": "Revenue", "new_id": " "}).json()
        assert data["changed"] is False

    def test_style_unknown_node(self, client):
        assert client.patch("/api/nodes/Nope/style", json={"fill": "#000"}).status_code == 404

    def test_rename_to_separator_id(self, client):
        response = client.post("/api/nodes/rename", json={"old_id": "Revenue", "new_id": "Revenue→Net"})
        assert response.status_code == 400

    def test_style_node_with_slash_in_id(self, client):
        client.put("/api/rows", json=[{"from": "R&D / Admin", "to": "Costs", "current": 5}])

        response = client.patch("/api/nodes/R%26D%20%2F%20Admin/style", json={"fill": "#0f0"})

        assert response.status_code == 200
        assert response.json()["node_id"] == "R&D / Admin"
        assert client.get("/api/state").json()["node_styles"] == {"R&D / Admin": {"fill": "#0f0"}}

    def test_link_style(self, client):
        data = client.patch("/api/links/style", json={
            "source": "Revenue", "target": "Gross profit", "stroke": "#222", "opacity": 0.8
        }).json()
        assert data["style"] == {"stroke": "#222", "opacity": 0.8}

    def test_link_style_requires_a_change(self, client):
        response = client.patch("/api/links/style", json={"source": "Revenue", "target": "Gross profit"})
        assert response.status_code == 400

    def test_link_style_opacity_range(self, client):
        response = client.patch("/api/links/style", json={
            "source": "Revenue", "target": "Gross profit", "opacity": 2
        })
        assert response.status_code == 422

    def test_selection(self, client):
        data = client.post("/api/selection", json={"source": "Revenue", "target": "Tax"})
        assert data.status_code == 404

        data = client.post("/api/selection", json={"node_id": "Revenue"}).json()
        assert data["selection"]["node_id"] == "Revenue"

        data = client.post("/api/selection", json={}).json()
        assert data["selection"] == {"node_id": None, "link": None}


class TestGeometryEndpoints:
    def test_balance(self, client):
        assert client.get("/api/balance").json()["balance"]["message"] == "All nodes are balanced"

    def test_layout(self, client):
        data = client.get("/api/layout", params={"width": 1200}).json()
        assert (data["width"], data["height"]) == (1200, 720)
        assert len(data["layout"]["nodes"]) == 10
        assert len(data["layout"]["links"]) == 9

    def test_layout_cycle(self, monkeypatch):
        cyclic = EditorSession(rows=[
            {"from": "A", "to": "B", "current": 1},
            {"from": "B", "to": "A", "current": 1},
        ])
        monkeypatch.setattr(main, "editor_session", cyclic)
        with TestClient(main.app) as client:
            response = client.get("/api/layout")
        assert response.status_code == 422
        assert "Circular flow" in response.json()["detail"]

    def test_tooltip(self, client):
        data = client.get("/api/tooltip", params={
            "node_id": "Revenue", "x": 790, "y": 590,
            "width": 120, "height": 60, "viewport_width": 800, "viewport_height": 600
        }).json()
        assert data["tooltip"]["content"]["value"] == "$50M"
        assert data["position"] == {"left": 656, "top": 516}


class TestViewportEndpoints:
    def test_put_transform(self, client):
        data = client.put("/api/transform", json={"k": 5, "x": 10, "y": 20}).json()
        assert data["transform"] == {"k": 3.0, "x": 10.0, "y": 20.0}
        assert client.get("/api/transform").json()["transform"]["k"] == 3.0

    def test_fullscreen_presentation(self, client):
        client.put("/api/transform", json={"k": 2, "x": 0, "y": 0})
        data = client.post("/api/viewport/fullscreen/mount").json()
        assert data["transform"]["k"] == 2.0

        data = client.post("/api/viewport/fullscreen/reset").json()
        assert data["transform"] == {"k": 1.0, "x": 0.0, "y": 0.0}

        assert client.post("/api/viewport/fullscreen/unmount").status_code == 200
        assert client.post("/api/viewport/fullscreen/unmount").status_code == 404


class TestExportEndpoints:
    def test_svg(self, client):
        response = client.get("/api/export/svg")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("image/svg+xml")
        assert 'filename="Example-Inc-FY24-Income-Statement.svg"' in response.headers["content-disposition"]
        assert response.text.startswith('<?xml version="1.0" standalone="no"?>')

    def test_png(self, client, fake_svg_decoder):
        response = client.get("/api/export/png", params={"scale": 1})
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")
        assert fake_svg_decoder[0]["width"] == 900

    def test_png_failure(self, client, failing_svg_decoder):
        response = client.get("/api/export/png")
        assert response.status_code == 500
        assert "decoder unavailable" in response.json()["detail"]

    def test_png_scale_validated(self, client):
        assert client.get("/api/export/png", params={"scale": 0}).status_code == 422

    def test_non_latin1_title_downloads(self, client, fake_svg_decoder):
        client.patch("/api/state", json={"title": "Umsatz – FY24 €"})

        for fmt in ("svg", "png"):
            response = client.get(f"/api/export/{fmt}")
            assert response.status_code == 200
            disposition = response.headers["content-disposition"]
            assert f'filename="Umsatz--FY24-.{fmt}"' in disposition
            assert f"filename*=UTF-8''Umsatz-%E2%80%93-FY24-%E2%82%AC.{fmt}" in disposition

    def test_png_of_cyclic_rows(self, monkeypatch):
        cyclic = EditorSession(rows=[
            {"from": "A", "to": "B", "current": 1},
            {"from": "B", "to": "A", "current": 1},
        ])
        monkeypatch.setattr(main, "editor_session", cyclic)
        with TestClient(main.app) as client:
            response = client.get("/api/export/png")
        assert response.status_code == 500
        assert "Circular flow" in response.json()["detail"]


class TestLifespan:
    def test_restarts_do_not_stack_session_callbacks(self, monkeypatch):
        session = EditorSession()
        calls = []
        monkeypatch.setattr(main, "editor_session", session)
        monkeypatch.setattr(main, "on_session_change", lambda: calls.append("change"))

        with TestClient(main.app):
            pass
        with TestClient(main.app):
            session.set_title("Q1")

        assert calls == ["change"]
        # Shutdown unregisters the server's callbacks
        session.set_title("Q2")
        assert calls == ["change"]


class TestWebSocket:
    def test_ping_pong(self, client):
        with client.websocket_connect("/ws") as websocket:
            websocket.send_text("ping")
            assert websocket.receive_json() == {"type": "pong"}

    def test_state_updated_broadcast(self, client):
        with client.websocket_connect("/ws") as websocket:
            # Round trip first so the connection is registered
            websocket.send_text("ping")
            websocket.receive_json()

            client.patch("/api/rows/8", json={"current": 7})
            message = websocket.receive_json()
            assert message == {"type": "state_updated", "balance_ok": False}
