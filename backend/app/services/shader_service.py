from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import HTTPException

from backend.app.models.graph import (
    CURRENT_SCHEMA_VERSION,
    ShaderCreateRequest,
    ShaderDocument,
    ShaderGraph,
    ShaderListItem,
    ShaderResponse,
    ShaderUpdateRequest,
)
from backend.app.models.program import GeneratedProgram
from backend.app.services.compiler_service import CompilerService
from backend.app.services.operation_service import OUTPUT_CHANNELS, OUTPUT_KIND, OperationService
from backend.app.storage.repositories.shader_repository import ShaderRepository

logger = logging.getLogger(__name__)

DEPRECATED_VIEW_TAGS = frozenset({"preview", "shader"})
DEFAULT_EXPOSED_OUTPUT_PORTS: tuple[str, ...] = ("color", "emissive", "opacity")


def migrate_graph(graph: ShaderGraph, operation_service: OperationService) -> bool:
    """Bring a stored graph up to the current schema in place.

    Deprecated view tags are re-derived from the node kind, and a terminal
    node without an exposed-port list gets the default set plus every port
    that already has an inbound connection.
    """
    changed = False
    for node in graph.nodes:
        spec = operation_service.get_operation(node.kind)
        if spec is not None and node.view != spec.view and (node.view is None or node.view in DEPRECATED_VIEW_TAGS):
            node.view = spec.view
            changed = True

        if node.kind == OUTPUT_KIND and node.exposed_ports is None:
            wired = [connection.to_port_id for connection in graph.connections if connection.to_node_id == node.id]
            wanted = set(DEFAULT_EXPOSED_OUTPUT_PORTS) | set(wired)
            exposed = [channel for channel in OUTPUT_CHANNELS if channel in wanted]
            exposed.extend(sorted(port for port in wanted if port not in OUTPUT_CHANNELS))
            node.exposed_ports = exposed
            changed = True
    return changed


class ShaderService:
    def __init__(
        self,
        repository: ShaderRepository,
        operation_service: OperationService,
        compiler_service: CompilerService,
    ) -> None:
        self._repository = repository
        self._operation_service = operation_service
        self._compiler_service = compiler_service

    def create_shader(self, request: ShaderCreateRequest) -> ShaderResponse:
        now = datetime.now(timezone.utc)
        graph = request.graph.model_copy(deep=True)
        migrate_graph(graph, self._operation_service)
        program_text = request.program_text
        if not program_text and graph.nodes:
            program_text = self._compiler_service.generate(graph.nodes, graph.connections).program_text

        document = ShaderDocument(
            id=str(uuid4()),
            name=request.name,
            description=request.description,
            schema_version=CURRENT_SCHEMA_VERSION,
            graph=graph,
            program_text=program_text,
            created_at=now,
            updated_at=now,
        )
        self._repository.create(document)
        return ShaderResponse.model_validate(document.model_dump())

    def get_shader(self, shader_id: str) -> ShaderResponse:
        return ShaderResponse.model_validate(self.get_shader_document(shader_id).model_dump())

    def get_shader_document(self, shader_id: str) -> ShaderDocument:
        document = self._repository.get(shader_id)
        if not document:
            raise HTTPException(status_code=404, detail=f"Shader '{shader_id}' not found")
        return self._migrate(document)

    def list_shaders(self) -> list[ShaderListItem]:
        documents = self._repository.list()
        return [
            ShaderListItem(
                id=document.id,
                name=document.name,
                description=document.description,
                schema_version=document.schema_version,
                updated_at=document.updated_at,
            )
            for document in documents
        ]

    def update_shader(self, shader_id: str, request: ShaderUpdateRequest) -> ShaderResponse:
        existing = self.get_shader_document(shader_id)

        graph = existing.graph
        if request.graph is not None:
            graph = request.graph.model_copy(deep=True)
            migrate_graph(graph, self._operation_service)

        updated = ShaderDocument(
            id=existing.id,
            name=request.name if request.name is not None else existing.name,
            description=request.description if request.description is not None else existing.description,
            schema_version=CURRENT_SCHEMA_VERSION,
            graph=graph,
            program_text=request.program_text if request.program_text is not None else existing.program_text,
            created_at=existing.created_at,
            updated_at=datetime.now(timezone.utc),
        )

        persisted = self._repository.update(shader_id, updated)
        if not persisted:
            raise HTTPException(status_code=404, detail=f"Shader '{shader_id}' not found")

        return ShaderResponse.model_validate(persisted.model_dump())

    def save_state(self, shader_id: str, graph: ShaderGraph, program_text: str) -> None:
        """Persist a session's live graph and text; called from the debounced writer."""
        self.update_shader(shader_id, ShaderUpdateRequest(graph=graph, program_text=program_text))

    def delete_shader(self, shader_id: str) -> None:
        deleted = self._repository.delete(shader_id)
        if not deleted:
            raise HTTPException(status_code=404, detail=f"Shader '{shader_id}' not found")

    def compile_shader(self, shader_id: str) -> GeneratedProgram:
        document = self.get_shader_document(shader_id)
        return self._compiler_service.generate(document.graph.nodes, document.graph.connections)

    def _migrate(self, document: ShaderDocument) -> ShaderDocument:
        changed = migrate_graph(document.graph, self._operation_service)
        if document.schema_version < CURRENT_SCHEMA_VERSION:
            logger.info(
                "Migrated shader '%s' from schema %d to %d",
                document.id,
                document.schema_version,
                CURRENT_SCHEMA_VERSION,
            )
            document.schema_version = CURRENT_SCHEMA_VERSION
        elif changed:
            logger.debug("Backfilled graph fields for shader '%s'", document.id)
        return document
