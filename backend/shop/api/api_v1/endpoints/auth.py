"""注册、登录与当前用户"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, get_current_user
from shop.core.rate_limit import auth_rate_limit
from shop.core.security import create_access_token, hash_password, verify_password
from shop.models.user import User, NotificationSettings
from shop.schemas.user import UserRegister, UserLogin, UserResponse, TokenResponse
from shop.services import audit_logger, notification_service
from shop.services.audit_logger import AuditEventType, AuditSeverity

logger = logging.getLogger(__name__)

router = APIRouter()


def build_token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user.id, user.role),
        user=UserResponse.model_validate(user),
    )


@router.post("/register", response_model=TokenResponse, status_code=201,
             dependencies=[Depends(auth_rate_limit)])
async def register(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user_in: UserRegister) -> Any:
    """注册新用户（同时创建默认通知设置）"""
    email = user_in.email.lower()
    existing = await db.execute(select(User).where(User.email == email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="该邮箱已注册")

    user = User(email=email, name=user_in.name, password=hash_password(user_in.password), role="USER")
    user.notification_settings = NotificationSettings()
    db.add(user)
    await db.commit()
    await db.refresh(user)

    logger.info(f"👤 新用户注册: {user.email}")
    await audit_logger.log_event(
        AuditEventType.USER_CREATED, "user", "register",
        user_id=user.id, user_email=user.email, resource_id=user.id, request=request,
    )
    await notification_service.send_welcome_email(user.id)
    return build_token_response(user)


@router.post("/login", response_model=TokenResponse, dependencies=[Depends(auth_rate_limit)])
async def login(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    credentials: UserLogin) -> Any:
    """邮箱密码登录"""
    email = credentials.email.lower()
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(credentials.password, user.password):
        await audit_logger.log_failure(
            AuditEventType.LOGIN_FAILED, "auth", "login",
            severity=AuditSeverity.MEDIUM, user_email=email,
            error="邮箱或密码错误", request=request,
        )
        raise HTTPException(status_code=401, detail="邮箱或密码错误")
    if not user.is_active:
        await audit_logger.log_failure(
            AuditEventType.LOGIN_FAILED, "auth", "login",
            severity=AuditSeverity.MEDIUM, user_id=user.id, user_email=email,
            error="账号已停用", request=request,
        )
        raise HTTPException(status_code=401, detail="账号已停用")

    await audit_logger.log_success(
        AuditEventType.LOGIN_SUCCESS, "auth", "login",
        user_id=user.id, user_email=user.email, request=request,
    )
    return build_token_response(user)


@router.get("/me", response_model=UserResponse)
async def read_me(user: User = Depends(get_current_user)) -> Any:
    """当前登录用户"""
    return user
