"""
用户领域实体 - 在线状态（appearance）是唯一可由外部修改的字段
"""
from datetime import datetime, timezone
from typing import Optional
from dataclasses import dataclass

from domain.common.exceptions import DomainValidationException


@dataclass
class User:
    """用户实体 - 领域核心

    name 等其余属性为透传字段，核心逻辑不使用。
    """

    id: Optional[int]
    name: Optional[str] = None
    online: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.validate_online(self.online)

    @staticmethod
    def validate_online(value) -> None:
        """业务规则：online 必须是布尔值（拒绝 0/1 等隐式转换）"""
        if not isinstance(value, bool):
            raise DomainValidationException(
                "online must be a boolean",
                field="online",
                details={"value": repr(value)},
            )

    def set_online(self, online: bool) -> bool:
        """业务规则：更新在线状态，返回状态是否发生变化

        无论是否变化都会刷新 updated_at，调用方据此持久化并广播。
        """
        self.validate_online(online)
        changed = self.online != online
        self.online = online
        self.updated_at = datetime.now(timezone.utc)
        return changed

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)
