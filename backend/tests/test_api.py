from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from backend.app.core.config import get_settings
from backend.app.main import create_app


def _client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("FASTSHADERS_DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    get_settings.cache_clear()
    app = create_app()
    return TestClient(app)


def _wave_graph() -> dict:
    return {
        "nodes": [
            {"id": "clock", "kind": "time", "label": "time"},
            {"id": "wave", "kind": "sin", "label": "sin"},
            {"id": "sink", "kind": "output", "label": "Output"},
        ],
        "connections": [
            {"from_node_id": "clock", "from_port_id": "out", "to_node_id": "wave", "to_port_id": "x"},
            {"from_node_id": "wave", "from_port_id": "out", "to_node_id": "sink", "to_port_id": "color"},
        ],
    }


def test_health_endpoint(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        response = client.get("/api/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["sessions"] == 0
        assert body["operations"] > 0


def test_operation_catalog_endpoints(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        listed = client.get("/api/operations")
        assert listed.status_code == 200
        kinds = {item["kind"] for item in listed.json()}
        assert {"time", "sin", "output", "noise"} <= kinds

        sin = client.get("/api/operations/sin")
        assert sin.status_code == 200
        assert [port["id"] for port in sin.json()["inputs"]] == ["x"]

        assert client.get("/api/operations/unknownKind").status_code == 404

        categories = client.get("/api/operations/categories").json()
        assert sum(categories.values()) == len(kinds)

        costs = client.get("/api/operations/costs").json()
        assert costs["sin"] == 4.0


def test_shader_crud_and_compile(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        created = client.post("/api/shaders", json={"name": "Wave", "graph": _wave_graph()})
        assert created.status_code == 201
        shader = created.json()
        assert "const sin = sin(time);" in shader["program_text"]

        listed = client.get("/api/shaders").json()
        assert [item["id"] for item in listed] == [shader["id"]]

        renamed = client.put(f"/api/shaders/{shader['id']}", json={"name": "Ripple"})
        assert renamed.status_code == 200
        assert renamed.json()["name"] == "Ripple"

        compiled = client.post(f"/api/shaders/{shader['id']}/compile")
        assert compiled.status_code == 200
        assert compiled.json()["import_groups"]["three/tsl"] == ["Fn", "sin", "time"]

        assert client.delete(f"/api/shaders/{shader['id']}").status_code == 204
        assert client.get(f"/api/shaders/{shader['id']}").status_code == 404


def test_invalid_shader_graph_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    graph = _wave_graph()
    graph["connections"].append(
        {"from_node_id": "ghost", "from_port_id": "out", "to_node_id": "sink", "to_port_id": "emissive"}
    )

    with _client(tmp_path, monkeypatch) as client:
        response = client.post("/api/shaders", json={"name": "Broken", "graph": graph})
        assert response.status_code == 422


def test_program_generate_and_parse(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        generated = client.post("/api/program/generate", json={"graph": _wave_graph()})
        assert generated.status_code == 200
        program_text = generated.json()["program_text"]

        parsed = client.post("/api/program/parse", json={"program_text": program_text})
        assert parsed.status_code == 200
        body = parsed.json()
        assert body["errors"] == []
        assert sorted(node["kind"] for node in body["nodes"]) == ["output", "sin", "time"]

        broken = client.post("/api/program/parse", json={"program_text": "const a = ;"}).json()
        assert broken["nodes"] == []
        assert broken["errors"][0]["line"] == 1


def test_program_merge_keeps_previous_ids(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        parsed = client.post(
            "/api/program/parse",
            json={"program_text": "const time = time;\nconst sin = sin(time);\nconst cos = cos(time);\nreturn sin;"},
        ).json()

        merged = client.post(
            "/api/program/merge",
            json={"graph": {"nodes": parsed["nodes"], "connections": parsed["connections"]}, "previous": _wave_graph()},
        )
        assert merged.status_code == 200
        body = merged.json()
        ids = {node["id"] for node in body["nodes"]}
        assert {"clock", "wave", "sink"} <= ids
        assert len(body["fresh_node_ids"]) == 1


def test_program_evaluate_and_cost(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        evaluated = client.post(
            "/api/program/evaluate",
            json={"graph": _wave_graph(), "node_ids": ["clock", "wave", "sink"], "time": 0.0},
        )
        assert evaluated.status_code == 200
        assert evaluated.json()["values"] == {"clock": [0.0], "wave": [0.0], "sink": None}

        cost = client.post("/api/program/cost", json={"graph": _wave_graph()}).json()
        assert cost["total"] == 5.0
        assert set(cost["reachable_node_ids"]) == {"clock", "wave"}


def test_session_flow(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        created = client.post("/api/sessions", json={"graph": _wave_graph()})
        assert created.status_code == 201
        session = created.json()
        session_id = session["session_id"]
        assert session["phase"] == "idle"
        assert session["authoritative_source"] == "initial"

        mutated = client.post(
            f"/api/sessions/{session_id}/graph",
            json={"type": "add_node", "node": {"id": "bias", "kind": "float", "params": {"value": 3}}},
        )
        assert mutated.status_code == 200
        assert mutated.json()["phase"] == "graph_authoritative"
        assert "const float = float(3);" in mutated.json()["program_text"]

        text = session["program_text"].replace("  return sin;", "  const cos = cos(time);\n  return cos;")
        pending = client.put(f"/api/sessions/{session_id}/text", json={"program_text": text})
        assert pending.status_code == 200
        assert pending.json()["authoritative_source"] == "text"

        synced = client.post(f"/api/sessions/{session_id}/sync").json()
        assert synced["last_applied_text"] == text
        kinds = sorted(node["kind"] for node in synced["graph"]["nodes"])
        assert kinds == ["cos", "output", "sin", "time"]

        value = client.get(f"/api/sessions/{session_id}/nodes/clock/value", params={"time": 1.5})
        assert value.status_code == 200
        assert value.json()["value"] == [1.5]

        undone = client.post(f"/api/sessions/{session_id}/undo").json()
        assert any(node["id"] == "bias" for node in undone["graph"]["nodes"])
        assert undone["can_redo"] is True

        assert len(client.get("/api/sessions").json()) == 1
        assert client.delete(f"/api/sessions/{session_id}").status_code == 204
        assert client.get(f"/api/sessions/{session_id}").status_code == 404


def test_session_request_validation(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        both = client.post("/api/sessions", json={"graph": _wave_graph(), "program_text": "return 1;"})
        assert both.status_code == 422

        session_id = client.post("/api/sessions", json={}).json()["session_id"]
        missing_node = client.post(f"/api/sessions/{session_id}/graph", json={"type": "add_node"})
        assert missing_node.status_code == 422

        nothing_to_undo = client.post(f"/api/sessions/{session_id}/undo")
        assert nothing_to_undo.status_code == 409

        assert client.post("/api/sessions", json={"shader_id": "missing"}).status_code == 404


def test_session_websocket_streams_events(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        session_id = client.post("/api/sessions", json={"graph": _wave_graph()}).json()["session_id"]

        with client.websocket_connect(f"/ws/sessions/{session_id}") as websocket:
            websocket.send_json({"type": "preview_subscribe"})
            preview = websocket.receive_json()
            assert preview["type"] == "preview_values"
            assert set(preview["payload"]["values"]) == {"clock", "wave", "sink"}

            client.post(
                f"/api/sessions/{session_id}/graph",
                json={"type": "move_node", "node_id": "wave", "position": {"x": 5, "y": 5}},
            )
            event = websocket.receive_json()
            while event["type"] == "preview_values":
                event = websocket.receive_json()
            assert event["type"] == "program_updated"
            assert event["payload"]["mutation"] == "move_node"

            websocket.send_json({"type": "preview_unsubscribe"})


def test_session_websocket_applies_text_messages(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        session = client.post("/api/sessions", json={"graph": _wave_graph()}).json()
        text = session["program_text"].replace("sin(time)", "cos(time)")

        with client.websocket_connect(f"/ws/sessions/{session['session_id']}") as websocket:
            websocket.send_json({"type": "text_update"})
            error = websocket.receive_json()
            assert error["type"] == "error"
            assert error["status"] == 422

            websocket.send_json({"type": "text_update", "program_text": text})
            websocket.send_json({"type": "sync"})
            event = websocket.receive_json()
            assert event["type"] == "graph_updated"
            assert event["payload"]["reason"] == "text"

        synced = client.get(f"/api/sessions/{session['session_id']}").json()
        assert synced["last_applied_text"] == text
        assert "wave" not in {node["id"] for node in synced["graph"]["nodes"]}


def test_session_websocket_filters_event_types(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        session = client.post("/api/sessions", json={"graph": _wave_graph()}).json()
        text = session["program_text"].replace("sin(time)", "cos(time)")

        with client.websocket_connect(f"/ws/sessions/{session['session_id']}?events=graph_updated") as websocket:
            websocket.send_json({"type": "preview_subscribe"})
            websocket.send_json({"type": "text_update", "program_text": text})
            websocket.send_json({"type": "sync"})
            event = websocket.receive_json()
            assert event["type"] == "graph_updated"
            websocket.send_json({"type": "preview_unsubscribe"})


def test_malformed_program_text_reports_parse_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        session = client.post("/api/sessions", json={"graph": _wave_graph()}).json()
        session_id = session["session_id"]

        for text in ("const a = 0x_;", "const a = ²;", "const a = " + "(" * 400 + "1" + ")" * 400 + ";"):
            assert client.put(f"/api/sessions/{session_id}/text", json={"program_text": text}).status_code == 200
            synced = client.post(f"/api/sessions/{session_id}/sync")
            assert synced.status_code == 200
            body = synced.json()
            assert len(body["errors"]) == 1
            assert body["graph"] == session["graph"]

        with client.websocket_connect(f"/ws/sessions/{session_id}") as websocket:
            websocket.send_json({"type": "text_update", "program_text": "const a = 0x" + "f" * 300 + ";"})
            websocket.send_json({"type": "sync"})
            event = websocket.receive_json()
            assert event["type"] == "parse_failed"
            assert event["payload"]["errors"][0]["line"] == 1

            recovered = session["program_text"].replace("sin(time)", "cos(time)")
            websocket.send_json({"type": "text_update", "program_text": recovered})
            websocket.send_json({"type": "sync"})
            assert websocket.receive_json()["type"] == "graph_updated"


def test_websocket_for_unknown_session_is_closed(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(tmp_path, monkeypatch) as client:
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect("/ws/sessions/missing") as websocket:
                websocket.receive_json()

        assert excinfo.value.code == 4404
