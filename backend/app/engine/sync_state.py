from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone

from backend.app.models.graph import ShaderGraph
from backend.app.models.program import ProgramError
from backend.app.models.session import SyncPhase, SyncSource


class SyncStateError(RuntimeError):
    pass


_ALLOWED_TRANSITIONS: dict[SyncPhase, frozenset[SyncPhase]] = {
    SyncPhase.IDLE: frozenset({SyncPhase.GRAPH_AUTHORITATIVE, SyncPhase.TEXT_AUTHORITATIVE}),
    SyncPhase.GRAPH_AUTHORITATIVE: frozenset({SyncPhase.GRAPH_AUTHORITATIVE, SyncPhase.TEXT_AUTHORITATIVE}),
    SyncPhase.TEXT_AUTHORITATIVE: frozenset(
        {SyncPhase.TEXT_AUTHORITATIVE, SyncPhase.GRAPH_AUTHORITATIVE, SyncPhase.APPLYING}
    ),
    SyncPhase.APPLYING: frozenset({SyncPhase.TEXT_AUTHORITATIVE}),
}

_PHASE_SOURCES: dict[SyncPhase, SyncSource] = {
    SyncPhase.IDLE: SyncSource.INITIAL,
    SyncPhase.GRAPH_AUTHORITATIVE: SyncSource.GRAPH,
    SyncPhase.TEXT_AUTHORITATIVE: SyncSource.TEXT,
    SyncPhase.APPLYING: SyncSource.TEXT,
}


class GraphHistory:
    """Bounded undo/redo stacks of graph snapshots."""

    def __init__(self, limit: int) -> None:
        self._limit = max(1, limit)
        self._past: list[ShaderGraph] = []
        self._future: list[ShaderGraph] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._past)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    def push(self, snapshot: ShaderGraph) -> None:
        self._past.append(snapshot.model_copy(deep=True))
        if len(self._past) > self._limit:
            del self._past[0]
        self._future.clear()

    def undo(self, current: ShaderGraph) -> ShaderGraph | None:
        if not self._past:
            return None
        self._future.append(current.model_copy(deep=True))
        return self._past.pop()

    def redo(self, current: ShaderGraph) -> ShaderGraph | None:
        if not self._future:
            return None
        self._past.append(current.model_copy(deep=True))
        return self._future.pop()


@dataclass(slots=True)
class SyncSession:
    session_id: str
    history: GraphHistory
    graph: ShaderGraph = field(default_factory=ShaderGraph)
    shader_id: str | None = None
    program_text: str = ""
    last_applied_text: str = ""
    phase: SyncPhase = SyncPhase.IDLE
    errors: list[ProgramError] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    text_debounce_task: asyncio.Task[None] | None = None
    persist_task: asyncio.Task[None] | None = None
    preview_task: asyncio.Task[None] | None = None
    preview_consumers: set[str] = field(default_factory=set)

    @property
    def authoritative_source(self) -> SyncSource:
        return _PHASE_SOURCES[self.phase]

    @property
    def sync_in_progress(self) -> bool:
        return self.phase == SyncPhase.APPLYING

    def transition(self, target: SyncPhase) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.phase]:
            raise SyncStateError(f"Cannot move session '{self.session_id}' from {self.phase} to {target}")
        self.phase = target

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def cancel_tasks(self) -> None:
        for task in (self.text_debounce_task, self.persist_task, self.preview_task):
            if task is not None and not task.done():
                task.cancel()
        self.text_debounce_task = None
        self.persist_task = None
        self.preview_task = None
        self.preview_consumers.clear()
