from __future__ import annotations

from backend.app.engine.layout import COLUMN_SPACING, ROW_SPACING, layout_fresh_nodes, node_layers
from backend.app.models.graph import GraphEdge, GraphNode, NodePosition
from backend.app.services.merge_service import merge_graphs


def test_matching_node_keeps_old_id_and_position() -> None:
    old = [GraphNode(id="1", kind="noise", label="Noise", position=NodePosition(x=40, y=90))]
    new = [GraphNode(kind="noise", label="Noise")]

    merged = merge_graphs(new, [], old)

    assert len(merged.nodes) == 1
    assert merged.nodes[0].id == "1"
    assert merged.nodes[0].position == NodePosition(x=40, y=90)
    assert merged.fresh_node_ids == []


def test_exact_label_match_wins_over_kind_only_match() -> None:
    old = [
        GraphNode(id="first", kind="float", label="a", position=NodePosition(x=1, y=1)),
        GraphNode(id="second", kind="float", label="b", position=NodePosition(x=2, y=2)),
    ]
    new = [GraphNode(id="new_b", kind="float", label="b"), GraphNode(id="new_a", kind="float", label="a")]

    merged = merge_graphs(new, [], old)

    assert [node.id for node in merged.nodes] == ["second", "first"]


def test_renamed_variable_falls_back_to_kind_match() -> None:
    old = [GraphNode(id="keep", kind="sin", label="wave", position=NodePosition(x=5, y=6))]
    new = [GraphNode(id="fresh", kind="sin", label="ripple")]

    merged = merge_graphs(new, [], old)

    assert merged.nodes[0].id == "keep"
    assert merged.nodes[0].label == "ripple"
    assert merged.nodes[0].position == NodePosition(x=5, y=6)


def test_unmatched_nodes_stay_fresh_and_edges_follow_resolved_ids() -> None:
    old = [GraphNode(id="t", kind="time", label="t")]
    new = [GraphNode(id="p_t", kind="time", label="t"), GraphNode(id="p_s", kind="sin", label="s")]
    connections = [GraphEdge(from_node_id="p_t", from_port_id="out", to_node_id="p_s", to_port_id="x")]

    merged = merge_graphs(new, connections, old)

    assert merged.fresh_node_ids == ["p_s"]
    assert len(merged.connections) == 1
    edge = merged.connections[0]
    assert (edge.from_node_id, edge.to_node_id) == ("t", "p_s")
    assert edge.id == "e-t-out-p_s-x"


def test_old_nodes_are_matched_at_most_once() -> None:
    old = [GraphNode(id="only", kind="float", label="v")]
    new = [GraphNode(id="n1", kind="float", label="v"), GraphNode(id="n2", kind="float", label="v")]

    merged = merge_graphs(new, [], old)

    assert [node.id for node in merged.nodes] == ["only", "n2"]
    assert merged.fresh_node_ids == ["n2"]


def test_layout_places_fresh_nodes_by_layer_without_moving_others() -> None:
    nodes = [
        GraphNode(id="source", kind="time", position=NodePosition(x=0, y=0)),
        GraphNode(id="middle", kind="sin"),
        GraphNode(id="sink", kind="output"),
    ]
    connections = [
        GraphEdge(from_node_id="source", from_port_id="out", to_node_id="middle", to_port_id="x"),
        GraphEdge(from_node_id="middle", from_port_id="out", to_node_id="sink", to_port_id="color"),
    ]

    placed = {node.id: node for node in layout_fresh_nodes(nodes, connections, ["middle", "sink"])}

    assert node_layers(nodes, connections) == {"source": 0, "middle": 1, "sink": 2}
    assert placed["source"].position == NodePosition(x=0, y=0)
    assert placed["middle"].position == NodePosition(x=COLUMN_SPACING, y=0)
    assert placed["sink"].position == NodePosition(x=2 * COLUMN_SPACING, y=0)


def test_layout_stacks_fresh_nodes_below_existing_column() -> None:
    nodes = [
        GraphNode(id="kept", kind="float", position=NodePosition(x=0, y=100)),
        GraphNode(id="new_one", kind="float"),
        GraphNode(id="new_two", kind="float"),
    ]

    placed = {node.id: node for node in layout_fresh_nodes(nodes, [], ["new_one", "new_two"])}

    assert placed["kept"].position.y == 100
    assert placed["new_one"].position.y == 100 + ROW_SPACING
    assert placed["new_two"].position.y == 100 + 2 * ROW_SPACING
