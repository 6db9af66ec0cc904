from __future__ import annotations

import json
import logging
from collections import deque
from pathlib import Path
from typing import Mapping, Sequence

from backend.app.models.graph import GraphEdge, GraphNode, ShaderGraph
from backend.app.services.operation_service import OUTPUT_KIND

logger = logging.getLogger(__name__)

DEFAULT_COST_TABLE: dict[str, float] = {
    "positionGeometry": 1,
    "normalLocal": 1,
    "tangentLocal": 1,
    "time": 1,
    "screenUV": 1,
    "property_float": 1,
    "float": 0,
    "int": 0,
    "vec2": 1,
    "vec3": 1,
    "vec4": 1,
    "color": 1,
    "add": 1,
    "sub": 1,
    "mul": 1,
    "div": 2,
    "sin": 4,
    "cos": 4,
    "abs": 1,
    "sqrt": 4,
    "exp": 4,
    "log2": 4,
    "floor": 1,
    "round": 1,
    "fract": 1,
    "pow": 4,
    "mod": 2,
    "clamp": 2,
    "min": 1,
    "max": 1,
    "mix": 3,
    "smoothstep": 4,
    "remap": 4,
    "select": 2,
    "normalize": 4,
    "length": 3,
    "distance": 4,
    "dot": 3,
    "cross": 4,
    "split": 0,
    "noise": 20,
    "fractal": 45,
    "voronoi": 30,
    "hsl": 6,
    "toHsl": 6,
    "tslTex_marble": 55,
    "tslTex_polkaDots": 25,
    "tslTex_rotator": 12,
}


class CostService:
    def __init__(self, cost_table: Mapping[str, float] | None = None) -> None:
        self._cost_table = dict(DEFAULT_COST_TABLE if cost_table is None else cost_table)

    @classmethod
    def from_file(cls, path: Path | None) -> "CostService":
        table = dict(DEFAULT_COST_TABLE)
        if path is not None:
            with path.open("r", encoding="utf-8") as handle:
                overrides = json.load(handle)
            if not isinstance(overrides, dict):
                raise ValueError(f"Cost table '{path}' must contain a JSON object")
            # Accept both a flat mapping and a {"costs": {...}} wrapper.
            overrides = overrides.get("costs", overrides)
            table.update({str(kind): float(cost) for kind, cost in overrides.items()})
            logger.info("Loaded %d cost override(s) from '%s'", len(overrides), path)
        return cls(table)

    @property
    def cost_table(self) -> dict[str, float]:
        return dict(self._cost_table)

    def cost_of(self, kind: str) -> float:
        return float(self._cost_table.get(kind, 0))

    def reachable_node_ids(self, nodes: Sequence[GraphNode], connections: Sequence[GraphEdge]) -> list[str]:
        """Ids of every node that feeds the terminal node, excluding the terminal itself."""
        terminal = next((node for node in nodes if node.kind == OUTPUT_KIND), None)
        if terminal is None:
            return []

        sources: dict[str, list[str]] = {}
        for connection in connections:
            sources.setdefault(connection.to_node_id, []).append(connection.from_node_id)

        known = {node.id for node in nodes}
        reachable: list[str] = []
        seen = {terminal.id}
        queue = deque([terminal.id])
        while queue:
            current = queue.popleft()
            for source in sources.get(current, []):
                if source in seen or source not in known:
                    continue
                seen.add(source)
                reachable.append(source)
                queue.append(source)
        return reachable

    def total_cost(self, nodes: Sequence[GraphNode], connections: Sequence[GraphEdge]) -> float:
        kinds = {node.id: node.kind for node in nodes}
        return float(sum(self.cost_of(kinds[node_id]) for node_id in self.reachable_node_ids(nodes, connections)))

    def apply_to_terminal(self, graph: ShaderGraph) -> bool:
        """Write the total onto the terminal node; returns False when it was already current."""
        terminal = next((node for node in graph.nodes if node.kind == OUTPUT_KIND), None)
        if terminal is None:
            return False
        total = self.total_cost(graph.nodes, graph.connections)
        if terminal.cost == total:
            return False
        terminal.cost = total
        return True
