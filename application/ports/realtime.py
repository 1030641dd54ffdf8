"""
Realtime port and message DTOs (contracts-first).

This module defines the boundary DTOs and the RealtimeBrokerPort
protocol so the application layer can remain decoupled from the
concrete broadcast implementations (infrastructure). Request handlers
receive a publisher through this contract instead of reaching for a
process-wide server handle.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol
from pydantic import BaseModel, Field
from datetime import datetime, timezone


def _utc_now_z() -> str:
    ts = datetime.now(timezone.utc)
    s = ts.isoformat()
    return s.replace("+00:00", "Z")


class Envelope(BaseModel):
    """Unified WS frame passed around the system.

    Fields:
      - type: welcome/confirm_subscription/reject_subscription/message/ping/pong/error
      - channel: optional channel name the frame belongs to
      - data: payload (JSON-serializable object or array)
      - ts: server-generated UTC timestamp (ISO8601 with Z)
    """

    type: str
    channel: str | None = None
    data: Any = None
    ts: str = Field(default_factory=_utc_now_z)


Handler = Callable[[Envelope], Awaitable[None]]


class RealtimeBrokerPort(Protocol):
    """Abstraction for (cross-process) channel broadcast.

    Implementations may be in-memory (single process) or Redis pub/sub.
    publish() is fire-and-forget: it never waits for subscriber delivery.
    """

    async def publish(self, channel: str, envelope: Envelope) -> None: ...

    async def subscribe(self, handler: Handler) -> None: ...

    async def aclose(self) -> None: ...  # pragma: no cover - optional


__all__ = ["Envelope", "RealtimeBrokerPort", "Handler"]
