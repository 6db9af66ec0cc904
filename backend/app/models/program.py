from __future__ import annotations

from pydantic import BaseModel, Field

from backend.app.models.graph import GraphEdge, GraphNode, ShaderGraph


class ProgramError(BaseModel):
    message: str
    line: int = Field(default=1, ge=1)
    column: int = Field(default=1, ge=1)


class GeneratedProgram(BaseModel):
    program_text: str
    import_groups: dict[str, list[str]] = Field(default_factory=dict)
    import_lines: list[str] = Field(default_factory=list)
    diagnostics: list[str] = Field(default_factory=list)


class ParsedProgram(BaseModel):
    nodes: list[GraphNode] = Field(default_factory=list)
    connections: list[GraphEdge] = Field(default_factory=list)
    errors: list[ProgramError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class MergeResult(BaseModel):
    nodes: list[GraphNode] = Field(default_factory=list)
    connections: list[GraphEdge] = Field(default_factory=list)
    fresh_node_ids: list[str] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    graph: ShaderGraph


class ParseRequest(BaseModel):
    program_text: str = Field(max_length=200_000)


class MergeRequest(BaseModel):
    graph: ShaderGraph
    previous: ShaderGraph


class EvaluateRequest(BaseModel):
    graph: ShaderGraph
    node_ids: list[str] = Field(min_length=1, max_length=500)
    time: float = 0.0


class EvaluateResponse(BaseModel):
    time: float
    values: dict[str, list[float] | None] = Field(default_factory=dict)


class CostRequest(BaseModel):
    graph: ShaderGraph


class CostResponse(BaseModel):
    total: float
    reachable_node_ids: list[str] = Field(default_factory=list)
