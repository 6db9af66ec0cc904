from __future__ import annotations

from typing import Iterable, Sequence

import networkx as nx

from backend.app.engine.scheduler import dependency_graph
from backend.app.models.graph import GraphEdge, GraphNode, NodePosition

COLUMN_SPACING = 300.0
ROW_SPACING = 140.0


def node_layers(nodes: Sequence[GraphNode], connections: Sequence[GraphEdge]) -> dict[str, int]:
    """Longest-path layer per node; strongly connected groups share one layer."""
    graph = dependency_graph(nodes, connections)
    condensed = nx.condensation(graph)
    layers: dict[str, int] = {}
    for layer, generation in enumerate(nx.topological_generations(condensed)):
        for component in generation:
            for node_id in condensed.nodes[component]["members"]:
                layers[node_id] = layer
    return layers


def layout_fresh_nodes(
    nodes: Sequence[GraphNode],
    connections: Sequence[GraphEdge],
    fresh_node_ids: Iterable[str],
) -> list[GraphNode]:
    """Place fresh nodes left to right by layer, below anything already in that column.

    Nodes that are not fresh keep their positions untouched.
    """
    fresh = set(fresh_node_ids)
    if not fresh:
        return list(nodes)

    layers = node_layers(nodes, connections)
    next_row: dict[int, float] = {}
    for node in nodes:
        if node.id in fresh:
            continue
        layer = layers.get(node.id, 0)
        next_row[layer] = max(next_row.get(layer, 0.0), node.position.y + ROW_SPACING)

    placed: list[GraphNode] = []
    for node in nodes:
        if node.id not in fresh:
            placed.append(node)
            continue
        layer = layers.get(node.id, 0)
        y = next_row.get(layer, 0.0)
        next_row[layer] = y + ROW_SPACING
        placed.append(node.model_copy(update={"position": NodePosition(x=layer * COLUMN_SPACING, y=y)}))
    return placed
