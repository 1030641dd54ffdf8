"""In-process WebSocket connection manager.

Keeps track of open connections and channel subscriptions, and provides
broadcast helpers for this process. Cross-process broadcast is handled
by a RealtimeBrokerPort implementation.
"""
from __future__ import annotations

import asyncio
from typing import Dict, List, Set

from fastapi import WebSocket

from application.ports.realtime import Envelope
from core.logging_config import get_logger
from core.config import settings


logger = get_logger(__name__)


class ConnectionManager:
    """Manage per-process WebSocket connections and channel subscriptions."""

    def __init__(self) -> None:
        # connection_id -> WebSocket
        self._connections: Dict[str, WebSocket] = {}
        # channel -> set[connection_id]
        self._by_channel: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()
        # per-connection send queues and sender tasks
        self._send_queues: Dict[str, asyncio.Queue] = {}
        self._sender_tasks: Dict[str, asyncio.Task] = {}

    async def add(self, connection_id: str, ws: WebSocket) -> None:
        async with self._lock:
            self._connections[connection_id] = ws
            if connection_id not in self._send_queues:
                q: asyncio.Queue = asyncio.Queue(maxsize=max(1, int(settings.REALTIME_WS_SEND_QUEUE_MAX)))
                self._send_queues[connection_id] = q
                self._sender_tasks[connection_id] = asyncio.create_task(
                    self._sender_loop(connection_id, ws, q),
                    name=f"ws-sender-{connection_id}",
                )
        logger.info("ws_connected", connection_id=connection_id)

    async def remove(self, connection_id: str) -> List[str]:
        """Drop a connection; returns the channels it was subscribed to."""
        left: List[str] = []
        async with self._lock:
            self._connections.pop(connection_id, None)
            for channel, members in self._by_channel.items():
                if connection_id in members:
                    members.discard(connection_id)
                    left.append(channel)
            task = self._sender_tasks.pop(connection_id, None)
            if task is not None:
                task.cancel()
            self._send_queues.pop(connection_id, None)
        logger.info("ws_disconnected", connection_id=connection_id, channels_left=len(left))
        return left

    async def subscribe(self, channel: str, connection_id: str) -> None:
        async with self._lock:
            self._by_channel.setdefault(channel, set()).add(connection_id)
        logger.info("ws_subscribed", channel=channel, connection_id=connection_id)

    async def unsubscribe(self, channel: str, connection_id: str) -> bool:
        async with self._lock:
            members = self._by_channel.get(channel)
            if not members or connection_id not in members:
                return False
            members.discard(connection_id)
        logger.info("ws_unsubscribed", channel=channel, connection_id=connection_id)
        return True

    async def is_subscribed(self, channel: str, connection_id: str) -> bool:
        async with self._lock:
            return connection_id in self._by_channel.get(channel, set())

    async def subscriber_count(self, channel: str) -> int:
        async with self._lock:
            return len(self._by_channel.get(channel, set()))

    async def broadcast_channel(self, channel: str, envelope: Envelope) -> int:
        """Queue one identical copy for every subscriber; returns the fan-out size."""
        async with self._lock:
            targets = list(self._by_channel.get(channel, set()))
        if not targets:
            return 0
        payload = envelope.model_dump(mode="json")
        for connection_id in targets:
            await self._enqueue(connection_id, payload, context={"channel": channel})
        return len(targets)

    async def send(self, connection_id: str, envelope: Envelope) -> None:
        await self._enqueue(
            connection_id,
            envelope.model_dump(mode="json"),
            context={"connection_id": connection_id},
        )

    async def _enqueue(self, connection_id: str, payload: dict, context: dict) -> None:
        q = self._send_queues.get(connection_id)
        if q is None:
            return
        try:
            q.put_nowait(payload)
        except asyncio.QueueFull:
            policy = (settings.REALTIME_WS_SEND_OVERFLOW_POLICY or "drop_oldest").lower()
            if policy not in {"drop_oldest", "drop_new", "disconnect"}:
                logger.warning("ws_send_queue_policy_invalid", policy=policy, fallback="drop_oldest")
                policy = "drop_oldest"
            if policy == "drop_new":
                logger.warning("ws_send_queue_drop_new", **context)
                return
            if policy == "disconnect":
                logger.warning("ws_send_queue_disconnect", **context)
                ws = self._connections.get(connection_id)
                if ws is not None:
                    try:
                        await ws.close(code=1013)
                    except RuntimeError as exc:
                        logger.debug("ws_close_failed", error=str(exc), **context)
                return
            # default: drop_oldest
            try:
                q.get_nowait()
            except asyncio.QueueEmpty:
                pass
            try:
                q.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning("ws_send_queue_drop_after_trim", **context)

    async def _sender_loop(self, connection_id: str, ws: WebSocket, q: asyncio.Queue) -> None:
        try:
            while True:
                payload = await q.get()
                try:
                    await ws.send_json(payload)
                except Exception as exc:  # pragma: no cover
                    logger.warning("ws_send_failed", connection_id=connection_id, error=str(exc))
        except asyncio.CancelledError:  # graceful exit
            return
