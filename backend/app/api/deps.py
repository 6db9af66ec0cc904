from __future__ import annotations

from fastapi import Depends, Request

from backend.app.core.container import AppContainer
from backend.app.services.shader_service import ShaderService
from backend.app.services.sync_service import SyncService


def get_container(request: Request) -> AppContainer:
    return request.app.state.container


def get_shader_service(container: AppContainer = Depends(get_container)) -> ShaderService:
    return container.shader_service


def get_sync_service(container: AppContainer = Depends(get_container)) -> SyncService:
    return container.sync_service
