from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from uuid import uuid4

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from backend.app.core.container import AppContainer
from backend.app.models.session import TextUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ws"])

SESSION_NOT_FOUND_CLOSE_CODE = 4404


async def _handle_client_message(
    websocket: WebSocket,
    container: AppContainer,
    session_id: str,
    consumer_id: str,
    payload: dict[str, object],
) -> None:
    sync_service = container.sync_service
    message_type = payload.get("type")
    try:
        if message_type == "preview_subscribe":
            await sync_service.preview_subscribe(session_id, consumer_id)
        elif message_type == "preview_unsubscribe":
            await sync_service.preview_unsubscribe(session_id, consumer_id)
        elif message_type == "text_update":
            request = TextUpdateRequest.model_validate({"program_text": payload.get("program_text")})
            await sync_service.update_text(session_id, request)
        elif message_type == "sync":
            await sync_service.sync_now(session_id)
        else:
            logger.debug("Ignoring websocket message of type %r for session '%s'", message_type, session_id)
    except HTTPException as exc:
        await websocket.send_json({"type": "error", "status": exc.status_code, "detail": exc.detail})
    except ValidationError as exc:
        detail = exc.errors(include_url=False, include_context=False)
        await websocket.send_json({"type": "error", "status": 422, "detail": detail})


@router.websocket("/ws/sessions/{session_id}")
async def session_events(websocket: WebSocket, session_id: str, events: str | None = None) -> None:
    await websocket.accept()

    container: AppContainer = websocket.app.state.container
    try:
        await container.sync_service.get_session(session_id)
    except HTTPException as exc:
        await websocket.close(code=SESSION_NOT_FOUND_CLOSE_CODE, reason=str(exc.detail))
        return

    event_types = [name.strip() for name in events.split(",") if name.strip()] if events else None
    queue = await container.event_bus.subscribe(session_id, event_types)
    consumer_id = str(uuid4())

    async def forward_events() -> None:
        while True:
            event = await queue.get()
            await websocket.send_json(event.model_dump(mode="json"))

    async def read_messages() -> None:
        while True:
            message = await websocket.receive_text()
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                await _handle_client_message(websocket, container, session_id, consumer_id, payload)

    tasks = {
        asyncio.create_task(forward_events(), name=f"ws-session-send:{session_id}"),
        asyncio.create_task(read_messages(), name=f"ws-session-recv:{session_id}"),
    }
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect):
                await task

        for task in done:
            exception = task.exception()
            if exception is not None and not isinstance(exception, WebSocketDisconnect):
                raise exception
    except WebSocketDisconnect:
        pass
    finally:
        for task in tasks:
            task.cancel()
        listener = await container.event_bus.unsubscribe(session_id, queue)
        if listener is not None and listener.dropped:
            logger.debug(
                "WebSocket listener on session '%s' dropped %d of %d event(s)",
                session_id,
                listener.dropped,
                listener.delivered,
            )
        await container.sync_service.preview_unsubscribe(session_id, consumer_id)
