from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi import HTTPException

from backend.app.models.graph import (
    CURRENT_SCHEMA_VERSION,
    GraphEdge,
    GraphNode,
    ShaderCreateRequest,
    ShaderGraph,
    ShaderUpdateRequest,
)
from backend.app.services.compiler_service import CompilerService
from backend.app.services.operation_service import OperationService
from backend.app.services.shader_service import ShaderService, migrate_graph
from backend.app.storage.db import Database, ShaderRecord
from backend.app.storage.repositories.shader_repository import ShaderRepository


def _service(tmp_path: Path) -> tuple[ShaderService, Database]:
    database = Database(f"sqlite:///{tmp_path / 'shaders.db'}")
    database.create_all()
    operations = OperationService()
    service = ShaderService(
        repository=ShaderRepository(database.session),
        operation_service=operations,
        compiler_service=CompilerService(operations),
    )
    return service, database


def _color_graph() -> ShaderGraph:
    return ShaderGraph(
        nodes=[
            GraphNode(id="tint", kind="color", params={"hex": "#00ff00"}),
            GraphNode(id="sink", kind="output"),
        ],
        connections=[GraphEdge(from_node_id="tint", from_port_id="out", to_node_id="sink", to_port_id="color")],
    )


def test_create_generates_program_text_when_missing(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)

    created = service.create_shader(ShaderCreateRequest(name="Green", graph=_color_graph()))

    assert created.schema_version == CURRENT_SCHEMA_VERSION
    assert "const color = color(0x00ff00);" in created.program_text
    assert "return color;" in created.program_text
    assert service.get_shader(created.id).program_text == created.program_text


def test_crud_round_trip(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)

    created = service.create_shader(ShaderCreateRequest(name="First", description="one"))
    updated = service.update_shader(created.id, ShaderUpdateRequest(name="Renamed"))

    assert updated.name == "Renamed"
    assert updated.description == "one"
    assert [item.name for item in service.list_shaders()] == ["Renamed"]

    service.delete_shader(created.id)
    with pytest.raises(HTTPException) as excinfo:
        service.get_shader(created.id)
    assert excinfo.value.status_code == 404


def test_missing_shader_operations_raise_not_found(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)

    for call in (
        lambda: service.get_shader("missing"),
        lambda: service.update_shader("missing", ShaderUpdateRequest(name="x")),
        lambda: service.delete_shader("missing"),
        lambda: service.compile_shader("missing"),
    ):
        with pytest.raises(HTTPException) as excinfo:
            call()
        assert excinfo.value.status_code == 404


def test_compile_shader_uses_stored_graph(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    created = service.create_shader(ShaderCreateRequest(name="Green", graph=_color_graph(), program_text="// hand"))

    compiled = service.compile_shader(created.id)

    assert created.program_text == "// hand"
    assert "return color;" in compiled.program_text


def test_legacy_documents_are_migrated_on_load(tmp_path: Path) -> None:
    service, database = _service(tmp_path)
    legacy_graph = {
        "nodes": [
            {"id": "tint", "kind": "color", "params": {"hex": "#ffffff"}, "view": "preview"},
            {"id": "adder", "kind": "add", "view": "shader"},
            {"id": "sink", "kind": "output"},
        ],
        "connections": [
            {
                "from_node_id": "tint",
                "from_port_id": "out",
                "to_node_id": "sink",
                "to_port_id": "roughness",
            }
        ],
    }
    now = datetime.now(timezone.utc)
    with database.session() as db:
        db.add(
            ShaderRecord(
                id="legacy",
                name="Old",
                description="",
                schema_version=1,
                graph_json=json.dumps(legacy_graph),
                program_text="",
                created_at=now,
                updated_at=now,
            )
        )

    document = service.get_shader_document("legacy")

    assert document.schema_version == CURRENT_SCHEMA_VERSION
    nodes = {node.id: node for node in document.graph.nodes}
    assert nodes["tint"].view == "color"
    assert nodes["adder"].view == "math_preview"
    assert nodes["sink"].view == "output"
    assert nodes["sink"].exposed_ports == ["color", "emissive", "opacity", "roughness"]


def test_migration_leaves_current_graphs_untouched() -> None:
    graph = ShaderGraph(
        nodes=[
            GraphNode(id="tint", kind="color", view="color"),
            GraphNode(id="sink", kind="output", view="output", exposed_ports=["color"]),
        ]
    )

    assert migrate_graph(graph, OperationService()) is False
    assert graph.node("sink").exposed_ports == ["color"]
