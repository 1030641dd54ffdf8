"""
用户应用服务（application/services）- 编排仓储读写与在线状态广播
"""
from typing import Any, Callable, List, Optional

from domain.common.unit_of_work import AbstractUnitOfWork
from domain.common.exceptions import UserNotFoundException
from domain.user.entity import User
from application.dto import UserAppearanceUpdateDTO, UserResponseDTO
from application.ports.realtime import Envelope, RealtimeBrokerPort
from core.logging_config import get_logger


logger = get_logger(__name__)


class UserApplicationService:
    """用户应用服务 - 处理应用层逻辑

    写入与广播顺序执行且不在同一事务内：先提交，再发布；
    发布失败只记录日志，不回滚、不影响 HTTP 响应。
    """

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        publisher: Optional[RealtimeBrokerPort] = None,
        *,
        channel: str = "appearance_channel",
        broadcast_on_list: bool = False,
    ):
        self._uow_factory = uow_factory
        self._publisher = publisher
        self._channel = channel
        self._broadcast_on_list = broadcast_on_list

    async def list_users(self) -> List[UserResponseDTO]:
        """获取全部用户"""
        async with self._uow_factory(readonly=True) as uow:
            users = await uow.user_repository.get_all()
        result = [self._to_response_dto(user) for user in users]
        if self._broadcast_on_list and result:
            await self._broadcast([dto.model_dump(mode="json") for dto in result])
        return result

    async def update_user(self, user_id: int, update_data: UserAppearanceUpdateDTO) -> UserResponseDTO:
        """更新用户在线状态并广播"""
        async with self._uow_factory() as uow:
            user = await uow.user_repository.get_by_id(user_id)
            if not user:
                raise UserNotFoundException(str(user_id))

            changed = False
            if update_data.online is not None:
                changed = user.set_online(update_data.online)
            else:
                user.touch()

            user = await uow.user_repository.update(user)

        dto = self._to_response_dto(user)
        logger.info("user_appearance_updated", user_id=user_id, online=dto.online, changed=changed)
        await self._broadcast(dto.model_dump(mode="json"))
        return dto

    async def _broadcast(self, payload: Any) -> None:
        if self._publisher is None:
            logger.warning("appearance_publisher_missing", channel=self._channel)
            return
        envelope = Envelope(type="message", channel=self._channel, data=payload)
        try:
            await self._publisher.publish(self._channel, envelope)
        except Exception as exc:
            logger.error("appearance_broadcast_failed", channel=self._channel, error=str(exc))

    @staticmethod
    def _to_response_dto(user: User) -> UserResponseDTO:
        return UserResponseDTO(
            id=user.id,
            name=user.name,
            online=user.online,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )
