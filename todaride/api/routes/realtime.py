"""
Websocket endpoint
==================

WS /ws -- presence, chat rooms, message relay and typing indicators.
See ``todaride.realtime.events`` for the event protocol.
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    hub = websocket.app.state.hub
    gateway = websocket.app.state.gateway

    await websocket.accept()
    hub.connect(websocket)
    try:
        while True:
            try:
                payload = await websocket.receive_json()
            except ValueError:
                await gateway.handle(websocket, None)
                continue
            await gateway.handle(websocket, payload)
    except WebSocketDisconnect as exc:
        logger.debug("Websocket closed (code=%s)", exc.code)
    finally:
        await hub.disconnect(websocket)
