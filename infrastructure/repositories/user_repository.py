"""
用户仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import DataError, IntegrityError, StatementError

from domain.user.entity import User
from domain.user.repository import UserRepository
from infrastructure.models.user import UserModel
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException, UserNotFoundException


logger = get_logger(__name__)

# users.id 为 32 位 INTEGER，超出范围的 ID 不可能存在
_ID_MIN = -(2 ** 31)
_ID_MAX = 2 ** 31 - 1


class SQLAlchemyUserRepository(UserRepository):
    """用户仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: UserModel) -> User:
        """将数据库模型转换为领域实体"""
        return User(
            id=model.id,
            name=model.name,
            online=bool(model.online),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def get_by_id(self, user_id: int) -> Optional[User]:
        """根据ID获取用户"""
        if not _ID_MIN <= user_id <= _ID_MAX:
            return None
        result = await self.session.execute(
            select(UserModel).where(UserModel.id == user_id)
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None

    async def get_all(self) -> List[User]:
        """获取全部用户"""
        result = await self.session.execute(
            select(UserModel).order_by(UserModel.id.asc())
        )
        return [self._to_entity(db_user) for db_user in result.scalars().all()]

    async def update(self, user: User) -> User:
        """更新用户（仅写入允许修改的列）"""
        if user.id is None or not _ID_MIN <= user.id <= _ID_MAX:
            raise UserNotFoundException(str(user.id))
        result = await self.session.execute(
            select(UserModel).where(UserModel.id == user.id)
        )
        db_user = result.scalar_one_or_none()

        if not db_user:
            raise UserNotFoundException(str(user.id))

        db_user.online = user.online
        db_user.updated_at = user.updated_at

        try:
            await self.session.flush()
        except (IntegrityError, DataError, StatementError) as e:
            await self.session.rollback()
            logger.warning(
                "update_user_rejected",
                user_id=user.id,
                error=str(e.orig if getattr(e, "orig", None) else e))
            raise DomainValidationException(
                "User update rejected by store",
                field="online",
                details={"user_id": user.id},
            )
        await self.session.refresh(db_user)
        return self._to_entity(db_user)
