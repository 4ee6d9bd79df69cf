import asyncio
import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .registry import Session

router = APIRouter()
log = structlog.get_logger(__name__)


async def _pump(websocket: WebSocket, session: Session):
    """Drain the session outbox onto the socket until the None sentinel arrives."""
    while True:
        item = await session.outbox.get()
        if item is None:
            await websocket.close()
            return
        event, data = item
        await websocket.send_text(json.dumps({"event": event, "data": data}, default=str))


@router.websocket("/ws")
async def news_socket(websocket: WebSocket):
    hub = websocket.app.state.hub
    await websocket.accept()
    try:
        session = await hub.connect()
    except RuntimeError:
        await websocket.close(code=1013)
        return

    pump = asyncio.create_task(_pump(websocket, session))
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                log.debug("ws_bad_frame", session_id=session.id)
                continue
            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                continue
            await hub.handle(session, frame["event"], frame.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        pump.cancel()
        try:
            await pump
        except (asyncio.CancelledError, RuntimeError, WebSocketDisconnect):
            pass
        await hub.disconnect(session)
