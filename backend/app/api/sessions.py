from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from backend.app.api.deps import get_sync_service
from backend.app.models.session import (
    GraphMutationRequest,
    NodeValueResponse,
    SessionCreateRequest,
    SessionInfo,
    TextUpdateRequest,
)
from backend.app.services.sync_service import SyncService

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=SessionInfo, status_code=201)
async def create_session(
    request: SessionCreateRequest,
    sync_service: SyncService = Depends(get_sync_service),
) -> SessionInfo:
    return await sync_service.create_session(request)


@router.get("", response_model=list[SessionInfo])
async def list_sessions(sync_service: SyncService = Depends(get_sync_service)) -> list[SessionInfo]:
    return await sync_service.list_sessions()


@router.get("/{session_id}", response_model=SessionInfo)
async def get_session(session_id: str, sync_service: SyncService = Depends(get_sync_service)) -> SessionInfo:
    return await sync_service.get_session(session_id)


@router.post("/{session_id}/graph", response_model=SessionInfo)
async def mutate_graph(
    session_id: str,
    request: GraphMutationRequest,
    sync_service: SyncService = Depends(get_sync_service),
) -> SessionInfo:
    return await sync_service.apply_mutation(session_id, request)


@router.put("/{session_id}/text", response_model=SessionInfo)
async def update_text(
    session_id: str,
    request: TextUpdateRequest,
    sync_service: SyncService = Depends(get_sync_service),
) -> SessionInfo:
    return await sync_service.update_text(session_id, request)


@router.post("/{session_id}/sync", response_model=SessionInfo)
async def sync_now(session_id: str, sync_service: SyncService = Depends(get_sync_service)) -> SessionInfo:
    return await sync_service.sync_now(session_id)


@router.post("/{session_id}/undo", response_model=SessionInfo)
async def undo(session_id: str, sync_service: SyncService = Depends(get_sync_service)) -> SessionInfo:
    return await sync_service.undo(session_id)


@router.post("/{session_id}/redo", response_model=SessionInfo)
async def redo(session_id: str, sync_service: SyncService = Depends(get_sync_service)) -> SessionInfo:
    return await sync_service.redo(session_id)


@router.get("/{session_id}/nodes/{node_id}/value", response_model=NodeValueResponse)
async def node_value(
    session_id: str,
    node_id: str,
    time: float = Query(default=0.0),
    sync_service: SyncService = Depends(get_sync_service),
) -> NodeValueResponse:
    return await sync_service.evaluate_node(session_id, node_id, time)


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str, sync_service: SyncService = Depends(get_sync_service)) -> Response:
    await sync_service.delete_session(session_id)
    return Response(status_code=204)
