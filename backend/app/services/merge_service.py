from __future__ import annotations

import logging
from typing import Sequence

from backend.app.models.graph import GraphEdge, GraphNode
from backend.app.models.program import MergeResult

logger = logging.getLogger(__name__)


def merge_graphs(
    new_nodes: Sequence[GraphNode],
    new_connections: Sequence[GraphEdge],
    old_nodes: Sequence[GraphNode],
) -> MergeResult:
    """Carry node identity from the live graph over to a freshly parsed one.

    Greedy and order-dependent: an exact ``(kind, label)`` pass runs first, then
    a kind-only pass over whatever is still unmatched. Matched nodes take the
    old id, position and exposed ports; unmatched ones are returned as fresh.
    """
    used: set[str] = set()
    resolved: dict[str, GraphNode] = {}

    for node in new_nodes:
        match = next(
            (
                old
                for old in old_nodes
                if old.id not in used and old.kind == node.kind and old.label == node.label
            ),
            None,
        )
        if match is not None:
            used.add(match.id)
            resolved[node.id] = _inherit(node, match)

    for node in new_nodes:
        if node.id in resolved:
            continue
        match = next((old for old in old_nodes if old.id not in used and old.kind == node.kind), None)
        if match is not None:
            used.add(match.id)
            resolved[node.id] = _inherit(node, match)

    nodes: list[GraphNode] = []
    fresh_node_ids: list[str] = []
    id_map: dict[str, str] = {}
    for node in new_nodes:
        merged = resolved.get(node.id)
        if merged is None:
            merged = node.model_copy(deep=True)
            fresh_node_ids.append(merged.id)
        id_map[node.id] = merged.id
        nodes.append(merged)

    connections = [
        GraphEdge(
            from_node_id=id_map.get(connection.from_node_id, connection.from_node_id),
            from_port_id=connection.from_port_id,
            to_node_id=id_map.get(connection.to_node_id, connection.to_node_id),
            to_port_id=connection.to_port_id,
            data_type=connection.data_type,
        )
        for connection in new_connections
    ]

    logger.debug(
        "Merged %d parsed node(s) against %d live node(s): %d matched, %d fresh",
        len(new_nodes),
        len(old_nodes),
        len(resolved),
        len(fresh_node_ids),
    )
    return MergeResult(nodes=nodes, connections=connections, fresh_node_ids=fresh_node_ids)


def _inherit(node: GraphNode, old: GraphNode) -> GraphNode:
    update: dict[str, object] = {"id": old.id, "position": old.position.model_copy()}
    if node.exposed_ports is None and old.exposed_ports is not None:
        update["exposed_ports"] = list(old.exposed_ports)
    return node.model_copy(update=update, deep=True)
