from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

from fastapi import HTTPException
from pydantic import JsonValue

from backend.app.core.config import Settings
from backend.app.engine.evaluator import ExpressionEvaluator
from backend.app.engine.layout import layout_fresh_nodes
from backend.app.engine.sync_state import GraphHistory, SyncSession
from backend.app.models.graph import GraphEdge, GraphNode, ShaderGraph
from backend.app.models.program import ProgramError
from backend.app.models.session import (
    GraphMutationRequest,
    NodeValueResponse,
    SessionCreateRequest,
    SessionEvent,
    SessionInfo,
    SyncPhase,
    TextUpdateRequest,
)
from backend.app.services.compiler_service import CompilerService
from backend.app.services.cost_service import CostService
from backend.app.services.event_bus import SessionEventBus
from backend.app.services.merge_service import merge_graphs
from backend.app.services.operation_service import OperationService
from backend.app.services.parser_service import ProgramParser
from backend.app.services.shader_service import ShaderService, migrate_graph

logger = logging.getLogger(__name__)


class SyncService:
    """Keeps each editing session's graph and program text in step.

    Graph mutations regenerate the text immediately. Text edits are debounced,
    parsed and merged back into the live graph, and the phase machine on
    ``SyncSession`` keeps the two directions from feeding each other.
    """

    def __init__(
        self,
        settings: Settings,
        operation_service: OperationService,
        compiler_service: CompilerService,
        parser: ProgramParser,
        cost_service: CostService,
        evaluator: ExpressionEvaluator,
        shader_service: ShaderService,
        event_bus: SessionEventBus,
    ) -> None:
        self._settings = settings
        self._operation_service = operation_service
        self._compiler_service = compiler_service
        self._parser = parser
        self._cost_service = cost_service
        self._evaluator = evaluator
        self._shader_service = shader_service
        self._event_bus = event_bus
        self._sessions: dict[str, SyncSession] = {}
        self._lock = asyncio.Lock()

    async def create_session(self, request: SessionCreateRequest) -> SessionInfo:
        session = SyncSession(session_id=str(uuid4()), history=GraphHistory(self._settings.history_limit))

        if request.shader_id is not None:
            document = self._shader_service.get_shader_document(request.shader_id)
            session.shader_id = document.id
            session.graph = document.graph
            self._cost_service.apply_to_terminal(session.graph)
            self._regenerate(session)
            if document.program_text:
                session.program_text = document.program_text
                session.last_applied_text = document.program_text
        elif request.graph is not None:
            session.graph = request.graph.model_copy(deep=True)
            migrate_graph(session.graph, self._operation_service)
            self._cost_service.apply_to_terminal(session.graph)
            self._regenerate(session)
        elif request.program_text is not None:
            session.program_text = request.program_text
            self._apply_text(session, record_history=False)

        async with self._lock:
            self._sessions[session.session_id] = session

        logger.info("Created sync session '%s' (shader=%s)", session.session_id, session.shader_id)
        await self._publish(session.session_id, "session_created", {"shader_id": session.shader_id})
        return self._session_info(session)

    async def list_sessions(self) -> list[SessionInfo]:
        async with self._lock:
            sessions = list(self._sessions.values())
        return [self._session_info(session) for session in sessions]

    async def get_session(self, session_id: str) -> SessionInfo:
        session = await self._get_session(session_id)
        return self._session_info(session)

    async def delete_session(self, session_id: str) -> None:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")

        self._close_session(session)
        await self._publish(session_id, "session_closed", {})

    async def shutdown(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            self._close_session(session)

    async def apply_mutation(self, session_id: str, request: GraphMutationRequest) -> SessionInfo:
        session = await self._get_session(session_id)
        if session.sync_in_progress:
            raise HTTPException(status_code=409, detail="Program text is being applied; retry the graph change.")

        graph = self._mutated_graph(session.graph, request)

        self._cancel_text_debounce(session)
        session.history.push(session.graph)
        session.transition(SyncPhase.GRAPH_AUTHORITATIVE)
        session.graph = graph
        self._cost_service.apply_to_terminal(session.graph)
        self._regenerate(session)
        session.touch()
        self._schedule_persist(session)

        await self._publish(
            session_id,
            "program_updated",
            {
                "mutation": request.type,
                "program_text": session.program_text,
                "diagnostics": list(session.diagnostics),
                "total_cost": self._total_cost(session),
            },
        )
        return self._session_info(session)

    async def update_text(self, session_id: str, request: TextUpdateRequest) -> SessionInfo:
        session = await self._get_session(session_id)
        if session.sync_in_progress:
            raise HTTPException(status_code=409, detail="Program text is already being applied.")

        session.transition(SyncPhase.TEXT_AUTHORITATIVE)
        session.program_text = request.program_text
        session.touch()

        self._cancel_text_debounce(session)
        session.text_debounce_task = asyncio.create_task(
            self._text_sync_after_delay(session),
            name=f"text-sync:{session_id}",
        )
        return self._session_info(session)

    async def sync_now(self, session_id: str) -> SessionInfo:
        session = await self._get_session(session_id)
        if session.sync_in_progress:
            raise HTTPException(status_code=409, detail="Program text is already being applied.")

        self._cancel_text_debounce(session)
        event = self._apply_text(session, record_history=True)
        if event is not None:
            await self._publish(session_id, *event)
        return self._session_info(session)

    async def undo(self, session_id: str) -> SessionInfo:
        return await self._replay(session_id, "undo")

    async def redo(self, session_id: str) -> SessionInfo:
        return await self._replay(session_id, "redo")

    async def evaluate_node(self, session_id: str, node_id: str, time: float) -> NodeValueResponse:
        session = await self._get_session(session_id)
        if session.graph.node(node_id) is None:
            raise HTTPException(status_code=404, detail=f"Node '{node_id}' not found in session '{session_id}'")

        value = self._evaluator.evaluate(node_id, session.graph.nodes, session.graph.connections, time)
        return NodeValueResponse(session_id=session_id, node_id=node_id, time=time, value=value)

    async def preview_subscribe(self, session_id: str, consumer_id: str) -> None:
        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            return

        session.preview_consumers.add(consumer_id)
        if session.preview_task is None or session.preview_task.done():
            session.preview_task = asyncio.create_task(
                self._preview_loop(session),
                name=f"preview:{session_id}",
            )

    async def preview_unsubscribe(self, session_id: str, consumer_id: str) -> None:
        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            return

        session.preview_consumers.discard(consumer_id)
        if not session.preview_consumers and session.preview_task is not None:
            session.preview_task.cancel()
            session.preview_task = None

    async def _replay(self, session_id: str, direction: str) -> SessionInfo:
        session = await self._get_session(session_id)
        if session.sync_in_progress:
            raise HTTPException(status_code=409, detail="Program text is being applied; retry later.")

        if direction == "undo":
            snapshot = session.history.undo(session.graph)
        else:
            snapshot = session.history.redo(session.graph)
        if snapshot is None:
            raise HTTPException(status_code=409, detail=f"Nothing to {direction}")

        self._cancel_text_debounce(session)
        session.transition(SyncPhase.GRAPH_AUTHORITATIVE)
        session.graph = snapshot
        self._cost_service.apply_to_terminal(session.graph)
        self._regenerate(session)
        session.touch()
        self._schedule_persist(session)

        await self._publish(
            session_id,
            "graph_updated",
            {
                "reason": direction,
                "graph": session.graph.model_dump(mode="json"),
                "program_text": session.program_text,
                "fresh_node_ids": [],
                "total_cost": self._total_cost(session),
            },
        )
        return self._session_info(session)

    def _apply_text(
        self,
        session: SyncSession,
        *,
        record_history: bool,
    ) -> tuple[str, dict[str, JsonValue]] | None:
        """Parse the session text into its graph; returns the event to publish, if any.

        Runs without suspending so the application is atomic on the loop.
        """
        text = session.program_text
        if text == session.last_applied_text:
            logger.debug("Skipping text sync for session '%s': text already applied", session.session_id)
            return None

        if session.phase != SyncPhase.TEXT_AUTHORITATIVE:
            session.transition(SyncPhase.TEXT_AUTHORITATIVE)

        parsed = self._parser.parse(text)
        if not parsed.ok:
            session.errors = list(parsed.errors)
            return "parse_failed", {"errors": [error.model_dump(mode="json") for error in parsed.errors]}
        if not parsed.nodes:
            session.errors = []
            return None

        merged = merge_graphs(parsed.nodes, parsed.connections, session.graph.nodes)
        nodes = layout_fresh_nodes(merged.nodes, merged.connections, merged.fresh_node_ids)
        try:
            graph = ShaderGraph(nodes=nodes, connections=merged.connections)
        except ValueError as exc:
            session.errors = [ProgramError(message=str(exc))]
            return "parse_failed", {"errors": [error.model_dump(mode="json") for error in session.errors]}
        self._cost_service.apply_to_terminal(graph)

        if record_history:
            session.history.push(session.graph)
        session.transition(SyncPhase.APPLYING)
        try:
            session.graph = graph
            session.last_applied_text = text
            session.errors = []
            session.diagnostics = []
            if self._settings.canonicalize_text_after_sync:
                self._regenerate(session)
            session.touch()
        finally:
            session.transition(SyncPhase.TEXT_AUTHORITATIVE)

        self._schedule_persist(session)
        logger.debug(
            "Applied program text to session '%s' (%d node(s), %d fresh)",
            session.session_id,
            len(graph.nodes),
            len(merged.fresh_node_ids),
        )
        return "graph_updated", {
            "reason": "text",
            "graph": session.graph.model_dump(mode="json"),
            "program_text": session.program_text,
            "fresh_node_ids": list(merged.fresh_node_ids),
            "total_cost": self._total_cost(session),
        }

    async def _text_sync_after_delay(self, session: SyncSession) -> None:
        try:
            await asyncio.sleep(self._settings.text_sync_debounce_ms / 1000)
        except asyncio.CancelledError:
            return

        if session.text_debounce_task is asyncio.current_task():
            session.text_debounce_task = None

        try:
            event = self._apply_text(session, record_history=True)
            if event is not None:
                await self._publish(session.session_id, *event)
        except Exception:
            logger.exception("Debounced text sync failed for session '%s'", session.session_id)

    def _mutated_graph(self, graph: ShaderGraph, request: GraphMutationRequest) -> ShaderGraph:
        if request.type == "replace_graph":
            assert request.graph is not None
            replacement = request.graph.model_copy(deep=True)
            migrate_graph(replacement, self._operation_service)
            return replacement

        nodes = [node.model_copy(deep=True) for node in graph.nodes]
        connections = [connection.model_copy() for connection in graph.connections]

        if request.type == "add_node":
            assert request.node is not None
            node = request.node.model_copy(deep=True)
            spec = self._operation_service.get_operation(node.kind)
            if spec is None:
                raise HTTPException(status_code=422, detail=f"Unknown operation kind '{node.kind}'")
            if any(existing.id == node.id for existing in nodes):
                raise HTTPException(status_code=422, detail=f"Node '{node.id}' already exists")
            for key, value in spec.default_values.items():
                node.params.setdefault(key, value)
            node.label = node.label or spec.label
            node.view = node.view or spec.view
            nodes.append(node)
        elif request.type == "remove_node":
            target = self._find_node(nodes, request.node_id)
            nodes = [node for node in nodes if node.id != target.id]
            connections = [
                connection
                for connection in connections
                if target.id not in (connection.from_node_id, connection.to_node_id)
            ]
        elif request.type == "update_node":
            target = self._find_node(nodes, request.node_id)
            if request.label is not None:
                target.label = request.label
            if request.params is not None:
                target.params.update(request.params)
            if request.exposed_ports is not None:
                target.exposed_ports = list(request.exposed_ports)
        elif request.type == "move_node":
            assert request.position is not None
            target = self._find_node(nodes, request.node_id)
            target.position = request.position.model_copy()
        elif request.type == "connect":
            assert request.connection is not None
            connection = request.connection
            self._validate_connection(nodes, connection)
            connections = [
                existing
                for existing in connections
                if not (existing.to_node_id == connection.to_node_id and existing.to_port_id == connection.to_port_id)
            ]
            connections.append(connection.model_copy(update={"id": connection.canonical_id}))
        elif request.type == "disconnect":
            assert request.connection is not None
            canonical_id = request.connection.canonical_id
            remaining = [connection for connection in connections if connection.canonical_id != canonical_id]
            if len(remaining) == len(connections):
                raise HTTPException(status_code=404, detail=f"Connection '{canonical_id}' not found")
            connections = remaining

        try:
            return ShaderGraph(nodes=nodes, connections=connections)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    def _validate_connection(self, nodes: list[GraphNode], connection: GraphEdge) -> None:
        by_id = {node.id: node for node in nodes}
        source = by_id.get(connection.from_node_id)
        target = by_id.get(connection.to_node_id)
        if source is None or target is None:
            raise HTTPException(status_code=422, detail="Connection references an unknown node")
        if source.id == target.id:
            raise HTTPException(status_code=422, detail="A node cannot be connected to itself")

        source_spec = self._operation_service.get_operation(source.kind)
        if source_spec is not None and source_spec.output_port(connection.from_port_id) is None:
            raise HTTPException(
                status_code=422,
                detail=f"'{source.kind}' has no output port '{connection.from_port_id}'",
            )
        target_spec = self._operation_service.get_operation(target.kind)
        if target_spec is not None and target_spec.input_port(connection.to_port_id) is None:
            raise HTTPException(
                status_code=422,
                detail=f"'{target.kind}' has no input port '{connection.to_port_id}'",
            )

    @staticmethod
    def _find_node(nodes: list[GraphNode], node_id: str | None) -> GraphNode:
        for node in nodes:
            if node.id == node_id:
                return node
        raise HTTPException(status_code=404, detail=f"Node '{node_id}' not found")

    def _regenerate(self, session: SyncSession) -> None:
        generated = self._compiler_service.generate(session.graph.nodes, session.graph.connections)
        session.program_text = generated.program_text
        session.last_applied_text = generated.program_text
        session.diagnostics = list(generated.diagnostics)
        session.errors = []

    def _cancel_text_debounce(self, session: SyncSession) -> None:
        task = session.text_debounce_task
        session.text_debounce_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _schedule_persist(self, session: SyncSession) -> None:
        if session.shader_id is None:
            return
        if session.persist_task is not None:
            session.persist_task.cancel()
        session.persist_task = asyncio.create_task(
            self._persist_after_delay(session),
            name=f"shader-persist:{session.session_id}",
        )

    async def _persist_after_delay(self, session: SyncSession) -> None:
        try:
            await asyncio.sleep(self._settings.persist_debounce_ms / 1000)
        except asyncio.CancelledError:
            return

        if session.persist_task is asyncio.current_task():
            session.persist_task = None
        self._persist(session)

    def _persist(self, session: SyncSession) -> None:
        if session.shader_id is None:
            return
        try:
            self._shader_service.save_state(session.shader_id, session.graph, session.program_text)
        except HTTPException as exc:
            logger.warning(
                "Could not persist session '%s' to shader '%s': %s",
                session.session_id,
                session.shader_id,
                exc.detail,
            )
        except Exception:
            logger.exception("Failed to persist session '%s'", session.session_id)

    def _close_session(self, session: SyncSession) -> None:
        persist_pending = session.persist_task is not None and not session.persist_task.done()
        session.cancel_tasks()
        if persist_pending:
            self._persist(session)

    async def _preview_loop(self, session: SyncSession) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        interval = self._settings.preview_frame_interval_ms / 1000
        try:
            while session.preview_consumers:
                elapsed = loop.time() - started
                nodes = session.graph.nodes
                connections = session.graph.connections
                dependent = self._evaluator.time_dependent_nodes(nodes, connections)
                node_ids = [node.id for node in nodes if node.id in dependent]
                if node_ids:
                    values = self._evaluator.evaluate_many(node_ids, nodes, connections, elapsed)
                    await self._publish(session.session_id, "preview_values", {"time": elapsed, "values": values})
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            return
        except Exception:
            logger.exception("Preview ticker failed for session '%s'", session.session_id)

    def _total_cost(self, session: SyncSession) -> float:
        return self._cost_service.total_cost(session.graph.nodes, session.graph.connections)

    def _session_info(self, session: SyncSession) -> SessionInfo:
        return SessionInfo(
            session_id=session.session_id,
            shader_id=session.shader_id,
            phase=session.phase,
            authoritative_source=session.authoritative_source,
            sync_in_progress=session.sync_in_progress,
            graph=session.graph.model_copy(deep=True),
            program_text=session.program_text,
            last_applied_text=session.last_applied_text,
            errors=list(session.errors),
            diagnostics=list(session.diagnostics),
            total_cost=self._total_cost(session),
            can_undo=session.history.can_undo,
            can_redo=session.history.can_redo,
            created_at=session.created_at,
            updated_at=session.updated_at,
        )

    async def _get_session(self, session_id: str) -> SyncSession:
        async with self._lock:
            session = self._sessions.get(session_id)
        if not session:
            raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
        return session

    async def _publish(self, session_id: str, event_type: str, payload: dict[str, JsonValue]) -> None:
        event = SessionEvent(session_id=session_id, type=event_type, payload=payload)
        await self._event_bus.publish(event)
