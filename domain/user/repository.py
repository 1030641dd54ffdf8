"""
用户仓储接口 - 定义数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Optional, List
from .entity import User


class UserRepository(ABC):
    """用户仓储抽象接口 - 只定义能做什么，不管怎么做

    用户的创建与删除由外部系统负责，这里只有读取和更新。
    """

    @abstractmethod
    async def get_by_id(self, user_id: int) -> Optional[User]:
        """根据ID获取用户"""
        pass

    @abstractmethod
    async def get_all(self) -> List[User]:
        """获取全部用户（按ID升序）"""
        pass

    @abstractmethod
    async def update(self, user: User) -> User:
        """更新用户"""
        pass
