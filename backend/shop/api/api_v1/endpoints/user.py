"""用户中心 API - 通知偏好"""
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, get_current_user
from shop.models.user import User, NotificationSettings
from shop.schemas.user import NotificationSettingsSchema, NotificationSettingsUpdate
from shop.services import audit_logger
from shop.services.audit_logger import AuditEventType

router = APIRouter()


async def _get_or_create_settings(db: AsyncSession, user: User) -> NotificationSettings:
    result = await db.execute(select(NotificationSettings).where(NotificationSettings.user_id == user.id))
    settings_row = result.scalar_one_or_none()
    if settings_row is None:
        settings_row = NotificationSettings(user_id=user.id)
        db.add(settings_row)
        await db.flush()
    return settings_row


@router.get("/notification-settings", response_model=NotificationSettingsSchema)
async def get_notification_settings(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user)) -> Any:
    """获取邮件通知偏好"""
    settings_row = await _get_or_create_settings(db, user)
    await db.commit()
    return settings_row


@router.put("/notification-settings", response_model=NotificationSettingsSchema)
async def update_notification_settings(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    settings_in: NotificationSettingsUpdate) -> Any:
    """更新邮件通知偏好"""
    settings_row = await _get_or_create_settings(db, user)
    changes = settings_in.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(settings_row, field, value)

    await audit_logger.log_event(
        AuditEventType.USER_UPDATED, "user", "notification_settings",
        user_id=user.id, user_email=user.email, resource_id=user.id,
        details=changes, request=request, db=db,
    )
    await db.commit()
    await db.refresh(settings_row)
    return settings_row
