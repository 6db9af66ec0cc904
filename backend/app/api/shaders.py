from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from backend.app.api.deps import get_shader_service
from backend.app.models.graph import ShaderCreateRequest, ShaderListItem, ShaderResponse, ShaderUpdateRequest
from backend.app.models.program import GeneratedProgram
from backend.app.services.shader_service import ShaderService

router = APIRouter(prefix="/shaders", tags=["shaders"])


@router.post("", response_model=ShaderResponse, status_code=201)
async def create_shader(
    request: ShaderCreateRequest,
    shader_service: ShaderService = Depends(get_shader_service),
) -> ShaderResponse:
    return shader_service.create_shader(request)


@router.get("", response_model=list[ShaderListItem])
async def list_shaders(shader_service: ShaderService = Depends(get_shader_service)) -> list[ShaderListItem]:
    return shader_service.list_shaders()


@router.get("/{shader_id}", response_model=ShaderResponse)
async def get_shader(shader_id: str, shader_service: ShaderService = Depends(get_shader_service)) -> ShaderResponse:
    return shader_service.get_shader(shader_id)


@router.put("/{shader_id}", response_model=ShaderResponse)
async def update_shader(
    shader_id: str,
    request: ShaderUpdateRequest,
    shader_service: ShaderService = Depends(get_shader_service),
) -> ShaderResponse:
    return shader_service.update_shader(shader_id, request)


@router.delete("/{shader_id}", status_code=204)
async def delete_shader(shader_id: str, shader_service: ShaderService = Depends(get_shader_service)) -> Response:
    shader_service.delete_shader(shader_id)
    return Response(status_code=204)


@router.post("/{shader_id}/compile", response_model=GeneratedProgram)
async def compile_shader(
    shader_id: str,
    shader_service: ShaderService = Depends(get_shader_service),
) -> GeneratedProgram:
    return shader_service.compile_shader(shader_id)
