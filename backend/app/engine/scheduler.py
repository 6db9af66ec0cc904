from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Sequence

import networkx as nx

from backend.app.models.graph import GraphEdge, GraphNode


@dataclass(slots=True)
class Schedule:
    ordered: list[GraphNode] = field(default_factory=list)
    unscheduled: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.unscheduled


def schedule(nodes: Sequence[GraphNode], connections: Sequence[GraphEdge]) -> Schedule:
    """Order nodes so every producer precedes its consumers (Kahn's algorithm).

    Nodes that never reach in-degree zero, i.e. cycle members and anything fed
    by a cycle, are left out of ``ordered`` and reported in ``unscheduled``.
    """
    indegree: dict[str, int] = {node.id: 0 for node in nodes}
    adjacency: dict[str, list[str]] = {node.id: [] for node in nodes}

    for connection in connections:
        if connection.from_node_id not in indegree or connection.to_node_id not in indegree:
            continue
        adjacency[connection.from_node_id].append(connection.to_node_id)
        indegree[connection.to_node_id] += 1

    by_id = {node.id: node for node in nodes}
    queue = deque(node.id for node in nodes if indegree[node.id] == 0)
    ordered: list[GraphNode] = []

    while queue:
        node_id = queue.popleft()
        ordered.append(by_id[node_id])
        for target in adjacency[node_id]:
            indegree[target] -= 1
            if indegree[target] == 0:
                queue.append(target)

    scheduled = {node.id for node in ordered}
    unscheduled = [node.id for node in nodes if node.id not in scheduled]
    return Schedule(ordered=ordered, unscheduled=unscheduled)


def topological_sort(nodes: Sequence[GraphNode], connections: Sequence[GraphEdge]) -> list[GraphNode]:
    return schedule(nodes, connections).ordered


def dependency_graph(nodes: Sequence[GraphNode], connections: Sequence[GraphEdge]) -> nx.DiGraph:
    graph = nx.DiGraph()
    graph.add_nodes_from(node.id for node in nodes)
    for connection in connections:
        if connection.from_node_id in graph and connection.to_node_id in graph:
            graph.add_edge(connection.from_node_id, connection.to_node_id)
    return graph


def describe_cycle(nodes: Sequence[GraphNode], connections: Sequence[GraphEdge]) -> list[str] | None:
    """Return the node ids of one cycle, closed back on its first node, or None."""
    graph = dependency_graph(nodes, connections)
    try:
        cycle = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        return None
    path = [edge[0] for edge in cycle]
    path.append(cycle[0][0])
    return path
