from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field, JsonValue, model_validator

from backend.app.models.graph import GraphEdge, GraphNode, NodePosition, ShaderGraph
from backend.app.models.operation import OperationParam
from backend.app.models.program import ProgramError


class SyncSource(StrEnum):
    INITIAL = "initial"
    GRAPH = "graph"
    TEXT = "text"


class SyncPhase(StrEnum):
    IDLE = "idle"
    GRAPH_AUTHORITATIVE = "graph_authoritative"
    TEXT_AUTHORITATIVE = "text_authoritative"
    APPLYING = "applying"


class SessionCreateRequest(BaseModel):
    shader_id: str | None = Field(default=None, min_length=1)
    graph: ShaderGraph | None = None
    program_text: str | None = Field(default=None, max_length=200_000)

    @model_validator(mode="after")
    def validate_initial_source(self) -> "SessionCreateRequest":
        provided = [value for value in (self.shader_id, self.graph, self.program_text) if value is not None]
        if len(provided) > 1:
            raise ValueError("Provide at most one of shader_id, graph or program_text when creating a session.")
        return self


GraphMutationType = Literal[
    "add_node",
    "remove_node",
    "update_node",
    "move_node",
    "connect",
    "disconnect",
    "replace_graph",
]


class GraphMutationRequest(BaseModel):
    type: GraphMutationType
    node: GraphNode | None = None
    node_id: str | None = Field(default=None, min_length=1)
    label: str | None = None
    params: dict[str, OperationParam] | None = None
    exposed_ports: list[str] | None = None
    position: NodePosition | None = None
    connection: GraphEdge | None = None
    graph: ShaderGraph | None = None

    @model_validator(mode="after")
    def validate_mutation_payload(self) -> "GraphMutationRequest":
        if self.type == "add_node" and self.node is None:
            raise ValueError("node is required for add_node mutations")
        if self.type in {"remove_node", "update_node", "move_node"} and self.node_id is None:
            raise ValueError(f"node_id is required for {self.type} mutations")
        if self.type == "move_node" and self.position is None:
            raise ValueError("position is required for move_node mutations")
        if self.type in {"connect", "disconnect"} and self.connection is None:
            raise ValueError(f"connection is required for {self.type} mutations")
        if self.type == "replace_graph" and self.graph is None:
            raise ValueError("graph is required for replace_graph mutations")
        return self


class TextUpdateRequest(BaseModel):
    program_text: str = Field(max_length=200_000)


class SessionInfo(BaseModel):
    session_id: str
    shader_id: str | None = None
    phase: SyncPhase
    authoritative_source: SyncSource
    sync_in_progress: bool
    graph: ShaderGraph
    program_text: str
    last_applied_text: str
    errors: list[ProgramError] = Field(default_factory=list)
    diagnostics: list[str] = Field(default_factory=list)
    total_cost: float = 0.0
    can_undo: bool = False
    can_redo: bool = False
    created_at: datetime
    updated_at: datetime


class NodeValueResponse(BaseModel):
    session_id: str
    node_id: str
    time: float
    value: list[float] | None = None


class SessionEvent(BaseModel):
    session_id: str
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: str
    payload: dict[str, JsonValue] = Field(default_factory=dict)
