"""
API依赖项 - 应用服务装配
"""
from fastapi import Request, WebSocket

from application.services.user_service import UserApplicationService
from application.services.realtime_service import RealtimeService
from application.ports.realtime import RealtimeBrokerPort
from core.config import settings
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def _realtime_from_state(state) -> RealtimeService:
    svc = getattr(state, "realtime_service", None)
    if svc is None:
        raise RuntimeError("Realtime service not initialized. Ensure lifespan sets app.state.realtime_service.")
    return svc


async def get_publisher(request: Request) -> RealtimeBrokerPort:
    """从应用状态获取广播发布器（由 lifespan 注入）"""
    return _realtime_from_state(request.app.state).broker


async def get_realtime_service(ws: WebSocket) -> RealtimeService:
    return _realtime_from_state(ws.app.state)


async def get_user_service(request: Request) -> UserApplicationService:
    return UserApplicationService(
        uow_factory=SQLAlchemyUnitOfWork,
        publisher=await get_publisher(request),
        channel=settings.APPEARANCE_CHANNEL,
        broadcast_on_list=settings.APPEARANCE_BROADCAST_ON_LIST,
    )
