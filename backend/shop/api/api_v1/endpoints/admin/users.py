"""用户管理（管理员）"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, require_admin
from shop.models.user import User
from shop.schemas.user import UserAdminUpdate, UserListResponse, UserResponse
from shop.services import audit_logger
from shop.services.audit_logger import AuditEventType, AuditSeverity
from shop.services.cache import cache, CacheKeys

router = APIRouter()


@router.get("", response_model=UserListResponse)
async def list_users(
    *,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    search: Optional[str] = Query(None, description="邮箱或姓名"),
    role: Optional[str] = Query(None, pattern="^(USER|ADMIN)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)) -> Any:
    """用户列表"""
    query = select(User)
    if search:
        query = query.where(or_(User.email.ilike(f"%{search}%"), User.name.ilike(f"%{search}%")))
    if role:
        query = query.where(User.role == role)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    query = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit)
    users = (await db.execute(query)).scalars().all()
    return UserListResponse(data=users, total=total, page=page, limit=limit)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    user_id: int,
    user_in: UserAdminUpdate) -> Any:
    """修改角色、启用状态"""
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="用户不存在")

    update_data = user_in.model_dump(exclude_unset=True)
    if user.id == admin.id and (update_data.get("role") == "USER" or update_data.get("is_active") is False):
        raise HTTPException(status_code=400, detail="不能降级或停用自己的账户")

    changes = {
        field: {"from": getattr(user, field), "to": value}
        for field, value in update_data.items()
        if getattr(user, field) != value
    }
    for field, value in update_data.items():
        setattr(user, field, value)

    severity = AuditSeverity.HIGH if "role" in changes else AuditSeverity.MEDIUM
    await audit_logger.log_event(
        AuditEventType.USER_UPDATED, "user", "admin_update",
        severity=severity, user_id=admin.id, user_email=admin.email, resource_id=user.id,
        details={"target_email": user.email, "changes": changes}, request=request, db=db,
    )
    await db.commit()
    await db.refresh(user)
    await cache.delete(CacheKeys.user(user.id))
    return user
