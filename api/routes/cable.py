"""WebSocket endpoint for channel subscriptions (mounted at /cable).

Protocol (JSON text frames):
- server -> client on connect: {"type": "welcome", ...}
- client -> server: {"type": "subscribe", "channel": "appearance_channel"}
  answered with confirm_subscription or reject_subscription
- client -> server: {"type": "unsubscribe", "channel": "..."}
- client -> server: {"type": "ping"} answered with {"type": "pong"}
- server -> client: {"type": "message", "channel": "...", "data": ...}

Idle connections are pinged every REALTIME_WS_IDLE_PING_INTERVAL_S and
closed after REALTIME_WS_MISSED_PING_LIMIT consecutive silent intervals.
"""
from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from application.services.realtime_service import RealtimeService
from application.ports.realtime import Envelope
from api.dependencies import get_realtime_service
from core.config import settings
from core.logging_config import get_logger, bind_connection_context


logger = get_logger(__name__)


router = APIRouter(tags=["WebSocket"])


def _error(message: str, **extra: Any) -> Envelope:
    return Envelope(type="error", data={"message": message, **extra})


async def _handle_frame(rt: RealtimeService, connection_id: str, raw: str) -> None:
    try:
        msg = json.loads(raw)
    except ValueError:
        await rt.send(connection_id, _error("invalid json"))
        return
    if not isinstance(msg, dict):
        await rt.send(connection_id, _error("frame must be a JSON object"))
        return

    mtype = str(msg.get("type") or "").lower()
    channel = str(msg.get("channel") or "").strip()
    if mtype == "subscribe":
        if not channel:
            await rt.send(connection_id, _error("channel required"))
            return
        await rt.subscribe(connection_id, channel)
    elif mtype == "unsubscribe":
        if channel:
            await rt.unsubscribe(connection_id, channel)
    elif mtype == "ping":
        await rt.send(connection_id, Envelope(type="pong"))
    elif mtype == "pong":
        # Client heartbeat reply; nothing else to do.
        return
    else:
        await rt.send(connection_id, _error("unknown message type", received=mtype))


@router.websocket("/cable")
async def cable_endpoint(
    ws: WebSocket,
    rt: RealtimeService = Depends(get_realtime_service),
) -> None:
    await ws.accept()
    connection_id = uuid.uuid4().hex
    client = f"{ws.client.host}:{ws.client.port}" if ws.client else "unknown"
    bind_connection_context(connection_id, client=client)

    await rt.connect(connection_id, ws)
    idle_ping_interval = float(settings.REALTIME_WS_IDLE_PING_INTERVAL_S or 0)
    missed_limit = int(settings.REALTIME_WS_MISSED_PING_LIMIT)
    missed = 0
    try:
        while True:
            if idle_ping_interval > 0:
                try:
                    raw = await asyncio.wait_for(ws.receive_text(), timeout=idle_ping_interval)
                except asyncio.TimeoutError:
                    missed += 1
                    if missed > missed_limit:
                        logger.info("ws_idle_timeout", missed=missed)
                        await ws.close(code=1001)
                        break
                    await rt.send(connection_id, Envelope(type="ping"))
                    continue
                missed = 0
            else:
                # Idle ping disabled: wait indefinitely for next message
                raw = await ws.receive_text()
            await _handle_frame(rt, connection_id, raw)
    except WebSocketDisconnect:
        logger.info("ws_client_disconnected")
    except Exception as exc:
        logger.error("ws_error", error=str(exc), exc_info=True)
    finally:
        await rt.disconnect(connection_id)
