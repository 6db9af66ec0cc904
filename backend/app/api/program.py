from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_container
from backend.app.core.container import AppContainer
from backend.app.engine.layout import layout_fresh_nodes
from backend.app.models.program import (
    CostRequest,
    CostResponse,
    EvaluateRequest,
    EvaluateResponse,
    GeneratedProgram,
    GenerateRequest,
    MergeRequest,
    MergeResult,
    ParsedProgram,
    ParseRequest,
)
from backend.app.services.merge_service import merge_graphs

router = APIRouter(prefix="/program", tags=["program"])


@router.post("/generate", response_model=GeneratedProgram)
async def generate_program(
    request: GenerateRequest,
    container: AppContainer = Depends(get_container),
) -> GeneratedProgram:
    return container.compiler_service.generate(request.graph.nodes, request.graph.connections)


@router.post("/parse", response_model=ParsedProgram)
async def parse_program(
    request: ParseRequest,
    container: AppContainer = Depends(get_container),
) -> ParsedProgram:
    return container.parser.parse(request.program_text)


@router.post("/merge", response_model=MergeResult)
async def merge_program_graph(request: MergeRequest) -> MergeResult:
    merged = merge_graphs(request.graph.nodes, request.graph.connections, request.previous.nodes)
    merged.nodes = layout_fresh_nodes(merged.nodes, merged.connections, merged.fresh_node_ids)
    return merged


@router.post("/evaluate", response_model=EvaluateResponse)
async def evaluate_nodes(
    request: EvaluateRequest,
    container: AppContainer = Depends(get_container),
) -> EvaluateResponse:
    values = container.evaluator.evaluate_many(
        request.node_ids,
        request.graph.nodes,
        request.graph.connections,
        request.time,
    )
    return EvaluateResponse(time=request.time, values=values)


@router.post("/cost", response_model=CostResponse)
async def compute_cost(request: CostRequest, container: AppContainer = Depends(get_container)) -> CostResponse:
    graph = request.graph
    return CostResponse(
        total=container.cost_service.total_cost(graph.nodes, graph.connections),
        reachable_node_ids=container.cost_service.reachable_node_ids(graph.nodes, graph.connections),
    )
