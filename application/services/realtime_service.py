"""Application service for realtime WebSocket workflows.

Keeps application logic (channel policy, orchestration) separate from
the concrete connection management and broadcast transport.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from fastapi import WebSocket

from application.ports.realtime import Envelope, RealtimeBrokerPort
from infrastructure.realtime.connection_manager import ConnectionManager
from core.logging_config import get_logger


logger = get_logger(__name__)


class RealtimeService:
    def __init__(
        self,
        *,
        broker: RealtimeBrokerPort,
        connections: ConnectionManager,
        channels: Iterable[str] = ("appearance_channel",),
    ) -> None:
        self._broker = broker
        self._conn = connections
        # Only these channels accept subscriptions
        self._channels = frozenset(channels)

    # Connection lifecycle management
    async def connect(self, connection_id: str, ws: WebSocket) -> None:
        """Register a freshly accepted connection and greet it."""
        await self._conn.add(connection_id, ws)
        await self._conn.send(
            connection_id,
            Envelope(
                type="welcome",
                data={
                    "connection_id": connection_id,
                    "server_time": datetime.now(timezone.utc).isoformat(),
                    "channels": sorted(self._channels),
                },
            ),
        )

    async def disconnect(self, connection_id: str) -> None:
        channels = await self._conn.remove(connection_id)
        logger.info("connection_closed", connection_id=connection_id, channels_left=len(channels))

    # Public API (use-cases)
    async def subscribe(self, connection_id: str, channel: str) -> bool:
        if channel not in self._channels:
            await self._conn.send(connection_id, Envelope(type="reject_subscription", channel=channel))
            logger.info("subscription_rejected", connection_id=connection_id, channel=channel)
            return False
        await self._conn.subscribe(channel, connection_id)
        await self._conn.send(connection_id, Envelope(type="confirm_subscription", channel=channel))
        return True

    async def unsubscribe(self, connection_id: str, channel: str) -> None:
        await self._conn.unsubscribe(channel, connection_id)

    async def send(self, connection_id: str, envelope: Envelope) -> None:
        await self._conn.send(connection_id, envelope)

    # Broker callback (cross-process events -> in-process broadcast)
    async def on_broker_event(self, envelope: Envelope) -> None:
        if not envelope.channel:
            logger.warning("realtime_event_without_channel", type=envelope.type)
            return
        delivered = await self._conn.broadcast_channel(envelope.channel, envelope)
        logger.info(
            "realtime_event_dispatched",
            type=envelope.type,
            channel=envelope.channel,
            subscribers=delivered,
        )

    @property
    def broker(self) -> RealtimeBrokerPort:
        return self._broker
