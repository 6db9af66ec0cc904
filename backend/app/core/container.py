from __future__ import annotations

from dataclasses import dataclass

from backend.app.core.config import Settings
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


@dataclass(slots=True)
class AppContainer:
    settings: Settings
    database: Database
    shader_repository: ShaderRepository
    operation_service: OperationService
    compiler_service: CompilerService
    parser: ProgramParser
    cost_service: CostService
    evaluator: ExpressionEvaluator
    shader_service: ShaderService
    event_bus: SessionEventBus
    sync_service: SyncService
