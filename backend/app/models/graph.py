from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from backend.app.models.operation import DataType, OperationParam

CURRENT_SCHEMA_VERSION = 2
MAX_GRAPH_NODES = 500
MAX_GRAPH_CONNECTIONS = 2_000


def new_node_id() -> str:
    return f"node_{uuid4().hex}"


def edge_id(from_node_id: str, from_port_id: str, to_node_id: str, to_port_id: str) -> str:
    return f"e-{from_node_id}-{from_port_id}-{to_node_id}-{to_port_id}"


class NodePosition(BaseModel):
    x: float = 0.0
    y: float = 0.0


class GraphNode(BaseModel):
    id: str = Field(default_factory=new_node_id, min_length=1)
    kind: str = Field(min_length=1)
    label: str = ""
    position: NodePosition = Field(default_factory=NodePosition)
    params: dict[str, OperationParam] = Field(default_factory=dict)
    exposed_ports: list[str] | None = None
    cost: float = 0.0
    view: str | None = None


class GraphEdge(BaseModel):
    id: str = ""
    from_node_id: str = Field(min_length=1)
    from_port_id: str = Field(min_length=1)
    to_node_id: str = Field(min_length=1)
    to_port_id: str = Field(min_length=1)
    data_type: DataType = DataType.ANY

    @model_validator(mode="after")
    def derive_edge_id(self) -> "GraphEdge":
        if not self.id:
            self.id = self.canonical_id
        return self

    @property
    def canonical_id(self) -> str:
        return edge_id(self.from_node_id, self.from_port_id, self.to_node_id, self.to_port_id)


class ShaderGraph(BaseModel):
    nodes: list[GraphNode] = Field(default_factory=list)
    connections: list[GraphEdge] = Field(default_factory=list)

    @field_validator("nodes")
    @classmethod
    def validate_node_count(cls, nodes: list[GraphNode]) -> list[GraphNode]:
        if len(nodes) > MAX_GRAPH_NODES:
            raise ValueError(f"Graph exceeds maximum node count ({MAX_GRAPH_NODES})")
        return nodes

    @field_validator("connections")
    @classmethod
    def validate_connection_count(cls, connections: list[GraphEdge]) -> list[GraphEdge]:
        if len(connections) > MAX_GRAPH_CONNECTIONS:
            raise ValueError(f"Graph exceeds maximum connection count ({MAX_GRAPH_CONNECTIONS})")
        return connections

    @model_validator(mode="after")
    def validate_topology(self) -> "ShaderGraph":
        ids = [node.id for node in self.nodes]
        if len(ids) != len(set(ids)):
            raise ValueError("Node IDs must be unique")

        known = set(ids)
        targets: set[tuple[str, str]] = set()
        for connection in self.connections:
            if connection.from_node_id not in known or connection.to_node_id not in known:
                raise ValueError(f"Connection '{connection.id}' references an unknown node")
            target = (connection.to_node_id, connection.to_port_id)
            if target in targets:
                raise ValueError(
                    f"Input '{connection.to_port_id}' on node '{connection.to_node_id}' has more than one connection"
                )
            targets.add(target)
        return self

    def node(self, node_id: str) -> GraphNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


class ShaderBase(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: str = Field(default="", max_length=2_048)
    schema_version: int = CURRENT_SCHEMA_VERSION
    graph: ShaderGraph = Field(default_factory=ShaderGraph)
    program_text: str = ""


class ShaderCreateRequest(ShaderBase):
    pass


class ShaderUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=2_048)
    graph: ShaderGraph | None = None
    program_text: str | None = None


class ShaderResponse(ShaderBase):
    id: str
    created_at: datetime
    updated_at: datetime


class ShaderListItem(BaseModel):
    id: str
    name: str
    description: str
    schema_version: int
    updated_at: datetime


class ShaderDocument(ShaderBase):
    id: str = Field(default_factory=lambda: str(uuid4()))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
