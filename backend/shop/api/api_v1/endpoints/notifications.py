"""实时通知（SSE）与站内通知 API"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, get_current_user, require_admin
from shop.models.notification import Notification
from shop.models.user import User
from shop.schemas.notification import NotificationSend, NotificationListResponse
from shop.services.notification_hub import notification_hub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/stream")
async def notification_stream(user: User = Depends(get_current_user)) -> Any:
    """SSE 实时通知流（需要登录，管理员额外接收 admin_only 消息）"""
    conn = notification_hub.connect(user.id, is_admin=user.is_admin)
    return StreamingResponse(
        notification_hub.stream(conn),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/send")
async def send_notification(
    *,
    admin: User = Depends(require_admin),
    notification_in: NotificationSend) -> Any:
    """手动推送通知（管理员）"""
    delivered = notification_hub.publish(
        notification_in.type,
        notification_in.title,
        notification_in.message,
        data=notification_in.data,
        user_id=notification_in.user_id,
        admin_only=notification_in.admin_only,
    )
    logger.info(f"📣 管理员 {admin.email} 推送通知 {notification_in.type}，送达 {delivered} 个连接")
    return {"success": True, "delivered": delivered}


@router.get("/stats")
async def get_connection_stats(admin: User = Depends(require_admin)) -> Any:
    """SSE 连接统计（管理员）"""
    return notification_hub.get_stats()


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=100)) -> Any:
    """站内通知列表"""
    query = select(Notification).where(Notification.user_id == user.id)
    if unread_only:
        query = query.where(Notification.is_read == False)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    unread = (await db.execute(
        select(func.count(Notification.id)).where(Notification.user_id == user.id, Notification.is_read == False)
    )).scalar_one()
    result = await db.execute(query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit))
    return NotificationListResponse(data=result.scalars().all(), total=total, unread=unread)


@router.post("/read-all")
async def mark_all_read(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user)) -> Any:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.is_read == False)
        .values(is_read=True)
    )
    await db.commit()
    return {"updated": result.rowcount}


@router.post("/{notification_id}/read")
async def mark_read(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    notification_id: int) -> Any:
    """标记已读"""
    notification = await db.get(Notification, notification_id)
    if notification is None or notification.user_id != user.id:
        raise HTTPException(status_code=404, detail="通知不存在")
    notification.is_read = True
    await db.commit()
    return {"success": True}
