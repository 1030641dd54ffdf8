"""
用户API路由 - FastAPI表现层

只暴露列表与在线状态更新；创建、查看单个、删除不在本服务范围内。
"""
from typing import List

from fastapi import APIRouter, Depends, Path

from application.services.user_service import UserApplicationService
from application.dto import UserAppearanceUpdateDTO, UserResponseDTO
from api.dependencies import get_user_service

router = APIRouter(
    prefix="/users",
    tags=["用户在线状态"]
)


@router.get("", summary="获取用户列表", response_model=List[UserResponseDTO])
async def list_users(
    service: UserApplicationService = Depends(get_user_service)
):
    """
    获取全部用户

    无筛选、无分页；默认不触发广播
    """
    return await service.list_users()


@router.api_route(
    "/{user_id}",
    methods=["PUT", "PATCH"],
    summary="更新用户在线状态",
    response_model=UserResponseDTO,
)
async def update_user(
    update_data: UserAppearanceUpdateDTO,
    user_id: int = Path(..., description="用户ID"),
    service: UserApplicationService = Depends(get_user_service)
):
    """
    更新指定用户的在线状态，并向 appearance_channel 的所有订阅者广播

    - **online**: 是否在线（布尔值）；其它字段会被忽略
    """
    return await service.update_user(user_id, update_data)
