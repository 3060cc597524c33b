import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from reloop.core.db import SessionLocal
from reloop.services.auth import resolve_viewer
from reloop.services.realtime import hub

log = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/realtime")
async def realtime_feed(websocket: WebSocket) -> None:
    """
    Per-user push channel for messages, read receipts and notifications.
    Delivery is best-effort; clients re-fetch over HTTP after reconnecting.
    """
    api_key = websocket.headers.get("x-api-key") or websocket.query_params.get("api_key")
    async with SessionLocal() as db:
        viewer = await resolve_viewer(db, api_key)
    if viewer is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    sub = hub.subscribe(viewer.user_id)
    log.info("realtime connected", extra={"user_id": viewer.user_id})

    async def pump() -> None:
        while True:
            item = await sub.get()
            await websocket.send_json(item)

    sender = asyncio.create_task(pump())
    try:
        # inbound frames are ignored; receiving is how we notice the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        hub.unsubscribe(sub)
        log.info("realtime disconnected", extra={"user_id": viewer.user_id, "dropped": sub.dropped})
