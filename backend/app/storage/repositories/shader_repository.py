from __future__ import annotations

import json
from datetime import timezone
from typing import Sequence

from sqlalchemy import desc, select

from backend.app.models.graph import ShaderDocument, ShaderGraph
from backend.app.storage.db import ShaderRecord


class ShaderRepository:
    def __init__(self, db_session_factory):
        self._db_session_factory = db_session_factory

    def create(self, document: ShaderDocument) -> ShaderDocument:
        with self._db_session_factory() as db:
            record = ShaderRecord(
                id=document.id,
                name=document.name,
                description=document.description,
                schema_version=document.schema_version,
                graph_json=document.graph.model_dump_json(),
                program_text=document.program_text,
                created_at=document.created_at,
                updated_at=document.updated_at,
            )
            db.add(record)
        return document

    def get(self, shader_id: str) -> ShaderDocument | None:
        with self._db_session_factory() as db:
            record = db.get(ShaderRecord, shader_id)
            if not record:
                return None
            return self._to_document(record)

    def list(self) -> Sequence[ShaderDocument]:
        with self._db_session_factory() as db:
            stmt = select(ShaderRecord).order_by(desc(ShaderRecord.updated_at))
            return [self._to_document(record) for record in db.scalars(stmt).all()]

    def update(self, shader_id: str, document: ShaderDocument) -> ShaderDocument | None:
        with self._db_session_factory() as db:
            record = db.get(ShaderRecord, shader_id)
            if not record:
                return None

            record.name = document.name
            record.description = document.description
            record.schema_version = document.schema_version
            record.graph_json = document.graph.model_dump_json()
            record.program_text = document.program_text
            record.updated_at = document.updated_at
            db.add(record)

            return self._to_document(record)

    def delete(self, shader_id: str) -> bool:
        with self._db_session_factory() as db:
            record = db.get(ShaderRecord, shader_id)
            if not record:
                return False
            db.delete(record)
        return True

    @staticmethod
    def _to_document(record: ShaderRecord) -> ShaderDocument:
        created_at = record.created_at
        updated_at = record.updated_at

        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)

        return ShaderDocument(
            id=record.id,
            name=record.name,
            description=record.description,
            schema_version=record.schema_version,
            graph=ShaderGraph.model_validate(json.loads(record.graph_json)),
            program_text=record.program_text or "",
            created_at=created_at,
            updated_at=updated_at,
        )
