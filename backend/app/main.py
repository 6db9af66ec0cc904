from __future__ import annotations

import argparse
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.api import operations, program, sessions, shaders, ws
from backend.app.core.config import Settings, get_settings
from backend.app.core.container import AppContainer
from backend.app.core.logging import configure_logging
from backend.app.engine.evaluator import ExpressionEvaluator
from backend.app.services.compiler_service import CompilerService
from backend.app.services.cost_service import CostService
from backend.app.services.event_bus import SessionEventBus
from backend.app.services.operation_service import OperationService
from backend.app.services.parser_service import ProgramParser
from backend.app.services.shader_service import ShaderService
from backend.app.services.sync_service import SyncService
from backend.app.storage.db import Database
from backend.app.storage.repositories.shader_repository import ShaderRepository

logger = logging.getLogger(__name__)


def _build_container(settings: Settings) -> AppContainer:
    if settings.database_url.startswith("sqlite:///"):
        db_path = Path(settings.database_url.replace("sqlite:///", "", 1))
        db_path.parent.mkdir(parents=True, exist_ok=True)

    database = Database(settings.database_url)
    database.create_all()

    shader_repository = ShaderRepository(database.session)
    operation_service = OperationService()
    compiler_service = CompilerService(operation_service=operation_service)
    parser = ProgramParser(operation_service=operation_service)
    cost_service = CostService.from_file(settings.cost_table_path)
    evaluator = ExpressionEvaluator()
    shader_service = ShaderService(
        repository=shader_repository,
        operation_service=operation_service,
        compiler_service=compiler_service,
    )
    event_bus = SessionEventBus(queue_size=settings.event_queue_size)
    sync_service = SyncService(
        settings=settings,
        operation_service=operation_service,
        compiler_service=compiler_service,
        parser=parser,
        cost_service=cost_service,
        evaluator=evaluator,
        shader_service=shader_service,
        event_bus=event_bus,
    )

    return AppContainer(
        settings=settings,
        database=database,
        shader_repository=shader_repository,
        operation_service=operation_service,
        compiler_service=compiler_service,
        parser=parser,
        cost_service=cost_service,
        evaluator=evaluator,
        shader_service=shader_service,
        event_bus=event_bus,
        sync_service=sync_service,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.debug)

    container = _build_container(settings)
    app.state.container = container
    logger.info("%s ready with %d operation(s)", settings.app_name, len(container.operation_service.list_operations()))
    try:
        yield
    finally:
        await container.sync_service.shutdown()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(operations.router, prefix=settings.api_prefix)
    app.include_router(shaders.router, prefix=settings.api_prefix)
    app.include_router(program.router, prefix=settings.api_prefix)
    app.include_router(sessions.router, prefix=settings.api_prefix)
    app.include_router(ws.router)

    @app.get("/api/health")
    async def health() -> dict[str, str | int]:
        container: AppContainer = app.state.container
        return {
            "status": "ok",
            "version": settings.app_version,
            "operations": len(container.operation_service.list_operations()),
            "sessions": len(await container.sync_service.list_sessions()),
        }

    return app


app = create_app()


def run() -> None:
    parser = argparse.ArgumentParser(description="Run the FastShaders backend")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default="info")
    parser.add_argument("--reload", action=argparse.BooleanOptionalAction, default=True)
    parser.add_argument("--access-log", action=argparse.BooleanOptionalAction, default=True)
    parser.add_argument("--debug", action=argparse.BooleanOptionalAction, default=None)
    parser.add_argument("--cost-table", type=Path, default=None, help="JSON file overriding per-kind node costs.")
    args = parser.parse_args()

    if args.debug is True:
        os.environ["FASTSHADERS_DEBUG"] = "1"
    elif args.debug is False:
        os.environ["FASTSHADERS_DEBUG"] = "0"
    if args.cost_table is not None:
        os.environ["FASTSHADERS_COST_TABLE_PATH"] = str(args.cost_table)

    get_settings.cache_clear()
    globals()["app"] = create_app()

    uvicorn.run(
        "backend.app.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
        access_log=args.access_log,
    )


if __name__ == "__main__":
    run()
