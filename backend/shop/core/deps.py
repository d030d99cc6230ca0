"""依赖注入 - 数据库会话、登录用户、管理员校验、游客会话"""
import logging
import secrets
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

import jwt
from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.config import settings
from shop.core.security import decode_access_token
from shop.db import session as db_session
from shop.models.user import User
from shop.services import audit_logger
from shop.services.audit_logger import AuditEventType, AuditSeverity

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    获取数据库会话依赖
    """
    async with db_session.SessionLocal() as session:
        yield session


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db)) -> Optional[User]:
    """解析 Bearer 令牌，未登录或令牌无效时返回 None"""
    if credentials is None:
        return None
    try:
        payload = decode_access_token(credentials.credentials)
        user_id = int(payload["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        return None

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


async def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="需要登录")
    return user


async def require_admin(
    request: Request,
    user: Optional[User] = Depends(get_optional_user)) -> User:
    """管理员接口校验：未登录 401，非管理员 403"""
    if user is None:
        raise HTTPException(status_code=401, detail="需要登录")
    if not user.is_admin:
        await audit_logger.log_event(
            AuditEventType.UNAUTHORIZED_ACCESS_ATTEMPT, "admin", f"{request.method} {request.url.path}",
            severity=AuditSeverity.HIGH, user_id=user.id, user_email=user.email,
            success=False, request=request,
        )
        raise HTTPException(status_code=403, detail="需要管理员权限")
    return user


def get_guest_session_id(request: Request) -> Optional[str]:
    return request.cookies.get(settings.GUEST_SESSION_COOKIE)


def ensure_guest_session(request: Request, response: Response) -> str:
    """读取游客会话 Cookie，不存在时生成新的会话ID"""
    session_id = get_guest_session_id(request)
    if session_id:
        return session_id
    session_id = secrets.token_hex(32)
    response.set_cookie(
        key=settings.GUEST_SESSION_COOKIE,
        value=session_id,
        max_age=settings.GUEST_SESSION_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.SITE_URL.startswith("https"),
    )
    return session_id


@dataclass
class CartOwner:
    """购物车/订单归属：登录用户或游客会话"""
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    user: Optional[User] = None

    @property
    def is_guest(self) -> bool:
        return self.user_id is None


async def get_cart_owner(
    request: Request,
    response: Response,
    user: Optional[User] = Depends(get_optional_user)) -> CartOwner:
    if user is not None:
        return CartOwner(user_id=user.id, user=user)
    return CartOwner(session_id=ensure_guest_session(request, response))
