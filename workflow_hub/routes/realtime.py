import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from ..auth.security import Actor, get_session_store, resolve_token, session_active
from ..db import get_db
from ..services.realtime import hub
from ..storage.provider import KeyValueStore


router = APIRouter(tags=["realtime"])

# Close code for a missing, invalid or ended session
SESSION_CLOSED = 4401


@router.websocket("/ws/changes")
async def ws_changes(
    websocket: WebSocket,
    token: Optional[str] = None,
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_session_store),
):
    """Stream insert/update/delete events on payments, jobs and resources.

    Each connection only receives rows its user may read over REST, and
    is closed with 4401 once the session behind the token is logged out.
    """
    if not token:
        await websocket.close(code=SESSION_CLOSED)
        return
    try:
        user, payload = resolve_token(token, db, store)
        actor = Actor.from_user(user)
    except HTTPException:
        await websocket.close(code=SESSION_CLOSED)
        return
    finally:
        db.close()

    await websocket.accept()
    queue = hub.connect(websocket, actor)

    async def _pump() -> None:
        while True:
            message = await queue.get()
            if not session_active(payload, store):
                await websocket.close(code=SESSION_CLOSED)
                return
            await websocket.send_json(message)

    async def _listen() -> None:
        while True:
            data = await websocket.receive_text()
            # Dashboards send keep-alives; anything else is ignored
            if data and data.strip().lower() in {"ping", "keepalive"}:
                if not session_active(payload, store):
                    await websocket.close(code=SESSION_CLOSED)
                    return
                await websocket.send_text("pong")

    pump = asyncio.create_task(_pump())
    listen = asyncio.create_task(_listen())
    try:
        done, pending = await asyncio.wait({pump, listen}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                raise exc
    finally:
        hub.disconnect(websocket)


@router.get("/health")
def health():
    return {"status": "ok", "subscribers": hub.connection_count()}
