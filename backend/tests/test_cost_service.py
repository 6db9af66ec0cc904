from __future__ import annotations

import json
from pathlib import Path

import pytest

from backend.app.models.graph import GraphEdge, GraphNode, ShaderGraph
from backend.app.services.cost_service import DEFAULT_COST_TABLE, CostService


def _edge(from_node: str, to_node: str, to_port: str) -> GraphEdge:
    return GraphEdge(from_node_id=from_node, from_port_id="out", to_node_id=to_node, to_port_id=to_port)


def _graph() -> ShaderGraph:
    return ShaderGraph(
        nodes=[
            GraphNode(id="position", kind="positionGeometry"),
            GraphNode(id="noise", kind="noise"),
            GraphNode(id="tint", kind="color"),
            GraphNode(id="mixer", kind="mix"),
            GraphNode(id="orphan", kind="fractal"),
            GraphNode(id="sink", kind="output"),
        ],
        connections=[
            _edge("position", "noise", "pos"),
            _edge("noise", "mixer", "t"),
            _edge("tint", "mixer", "a"),
            _edge("mixer", "sink", "color"),
        ],
    )


def test_total_cost_sums_nodes_reachable_from_terminal() -> None:
    graph = _graph()
    service = CostService()

    expected = sum(DEFAULT_COST_TABLE[kind] for kind in ("positionGeometry", "noise", "color", "mix"))

    assert service.total_cost(graph.nodes, graph.connections) == expected
    assert set(service.reachable_node_ids(graph.nodes, graph.connections)) == {"position", "noise", "tint", "mixer"}


def test_graph_without_terminal_costs_nothing() -> None:
    nodes = [GraphNode(id="noise", kind="noise")]

    assert CostService().total_cost(nodes, []) == 0.0


def test_unknown_kinds_cost_zero() -> None:
    nodes = [GraphNode(id="odd", kind="mystery"), GraphNode(id="sink", kind="output")]

    assert CostService().total_cost(nodes, [_edge("odd", "sink", "color")]) == 0.0


def test_apply_to_terminal_only_writes_on_change() -> None:
    graph = _graph()
    service = CostService({"noise": 10, "mix": 2})

    assert service.apply_to_terminal(graph) is True
    assert graph.node("sink").cost == 12.0
    assert service.apply_to_terminal(graph) is False


def test_cost_table_file_overrides_defaults(tmp_path: Path) -> None:
    table_path = tmp_path / "costs.json"
    table_path.write_text(json.dumps({"costs": {"noise": 99, "custom": 5}}), encoding="utf-8")

    service = CostService.from_file(table_path)

    assert service.cost_of("noise") == 99.0
    assert service.cost_of("custom") == 5.0
    assert service.cost_of("mix") == DEFAULT_COST_TABLE["mix"]


def test_cost_table_file_must_be_an_object(tmp_path: Path) -> None:
    table_path = tmp_path / "costs.json"
    table_path.write_text("[1, 2, 3]", encoding="utf-8")

    with pytest.raises(ValueError):
        CostService.from_file(table_path)
