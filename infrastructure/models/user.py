"""
用户数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, false
from datetime import datetime, timezone

from .base import Base


class UserModel(Base):
    """
    用户数据库模型

    只映射在线状态广播所需的列，其余用户资料由外部系统维护
    """
    __tablename__ = "users"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 透传字段
    name = Column(String(100), nullable=True, comment="名称")

    # 在线状态
    online = Column(Boolean, default=False, server_default=false(), nullable=False, comment="是否在线")

    # 时间信息
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    def __repr__(self):
        return f"<UserModel(id={self.id}, name='{self.name}', online={self.online})>"
