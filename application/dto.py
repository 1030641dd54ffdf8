"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_serializer, field_validator
from typing import Optional
from datetime import datetime, timezone


def to_utc_z(value: datetime) -> str:
    """统一为 UTC ISO8601，以 Z 结尾（无时区的值按 UTC 处理）"""
    ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @field_serializer("created_at", "updated_at", check_fields=False)
    def _serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return to_utc_z(value) if value is not None else None


class UserAppearanceUpdateDTO(DTOBase):
    """在线状态更新DTO

    允许列表只有 online；其它字段被静默丢弃。
    缺省 online 表示不修改；显式 null 不是布尔值，予以拒绝。
    """
    online: Optional[StrictBool] = Field(None, description="是否在线")

    model_config = ConfigDict(extra="ignore")

    @field_validator("online")
    @classmethod
    def _reject_explicit_null(cls, value: Optional[bool]) -> Optional[bool]:
        if value is None:
            raise ValueError("online must be a boolean")
        return value


class UserResponseDTO(DTOBase):
    """用户响应DTO"""
    id: int
    name: Optional[str] = None
    online: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
