from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from backend.app.api.deps import get_container
from backend.app.core.container import AppContainer
from backend.app.models.operation import OperationSpec

router = APIRouter(prefix="/operations", tags=["operations"])


@router.get("", response_model=list[OperationSpec])
async def list_operations(
    category: str | None = Query(default=None),
    container: AppContainer = Depends(get_container),
) -> list[OperationSpec]:
    return container.operation_service.list_operations(category)


@router.get("/categories")
async def list_categories(container: AppContainer = Depends(get_container)) -> dict[str, int]:
    return container.operation_service.categories()


@router.get("/costs")
async def get_cost_table(container: AppContainer = Depends(get_container)) -> dict[str, float]:
    return container.cost_service.cost_table


@router.get("/{kind}", response_model=OperationSpec)
async def get_operation(kind: str, container: AppContainer = Depends(get_container)) -> OperationSpec:
    operation = container.operation_service.get_operation(kind)
    if not operation:
        raise HTTPException(status_code=404, detail=f"Operation '{kind}' not found")
    return operation
