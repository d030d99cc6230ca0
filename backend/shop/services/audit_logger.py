"""
审计日志服务
记录登录、订单、支付、库存、备份等关键事件

log_event 永不抛出异常：审计失败只写错误日志，不影响业务请求
传入 db 时日志随调用方事务一起提交，否则使用独立会话立即提交
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from shop.db import session as db_session
from shop.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditEventType(str, Enum):
    # 用户
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"

    # 商品与库存
    PRODUCT_CREATED = "PRODUCT_CREATED"
    PRODUCT_UPDATED = "PRODUCT_UPDATED"
    PRODUCT_DELETED = "PRODUCT_DELETED"
    INVENTORY_ADJUSTED = "INVENTORY_ADJUSTED"
    CATEGORY_CREATED = "CATEGORY_CREATED"
    CATEGORY_UPDATED = "CATEGORY_UPDATED"
    CATEGORY_DELETED = "CATEGORY_DELETED"

    # 订单与支付
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_UPDATED = "ORDER_UPDATED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_STATUS_CHANGED = "ORDER_STATUS_CHANGED"
    PAYMENT_PROCESSED = "PAYMENT_PROCESSED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    REFUND_ISSUED = "REFUND_ISSUED"
    REFUND_FAILED = "REFUND_FAILED"

    # 安全
    UNAUTHORIZED_ACCESS_ATTEMPT = "UNAUTHORIZED_ACCESS_ATTEMPT"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # 系统运维
    BACKUP_CREATED = "BACKUP_CREATED"
    BACKUP_RESTORED = "BACKUP_RESTORED"
    CONFIGURATION_CHANGED = "CONFIGURATION_CHANGED"
    MAINTENANCE_STARTED = "MAINTENANCE_STARTED"
    MAINTENANCE_COMPLETED = "MAINTENANCE_COMPLETED"


class AuditSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# 失败事件的严重级别提升一级
SEVERITY_ESCALATION = {
    AuditSeverity.LOW: AuditSeverity.MEDIUM,
    AuditSeverity.MEDIUM: AuditSeverity.HIGH,
    AuditSeverity.HIGH: AuditSeverity.CRITICAL,
    AuditSeverity.CRITICAL: AuditSeverity.CRITICAL,
}


def client_info(request: Optional[Request]) -> Dict[str, Optional[str]]:
    """从请求中提取 IP 和 User-Agent"""
    if request is None:
        return {"ip_address": None, "user_agent": None}
    forwarded = request.headers.get("x-forwarded-for")
    real_ip = request.headers.get("x-real-ip")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    elif real_ip:
        ip = real_ip
    else:
        ip = request.client.host if request.client else None
    return {"ip_address": ip, "user_agent": request.headers.get("user-agent")}


async def log_event(
    event_type: AuditEventType,
    resource: str,
    action: str,
    *,
    severity: AuditSeverity = AuditSeverity.LOW,
    user_id: Optional[int] = None,
    user_email: Optional[str] = None,
    resource_id: Any = None,
    details: Optional[Dict[str, Any]] = None,
    success: bool = True,
    error_message: Optional[str] = None,
    request: Optional[Request] = None,
    db: Optional[AsyncSession] = None) -> Optional[AuditLog]:
    """写入一条审计日志"""
    try:
        log = AuditLog(
            event_type=AuditEventType(event_type).value,
            severity=AuditSeverity(severity).value,
            user_id=user_id,
            user_email=user_email,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            action=action,
            details=details,
            success=success,
            error_message=error_message,
            **client_info(request),
        )

        if db is not None:
            db.add(log)
        else:
            async with db_session.SessionLocal() as session:
                session.add(log)
                await session.commit()

        level = logging.INFO if success else logging.WARNING
        logger.log(level, f"📝 审计 [{log.severity}] {log.event_type} {resource}:{log.resource_id} {action}")
        return log
    except Exception as e:
        logger.error(f"❌ 审计日志写入失败 {event_type}: {e}")
        return None


async def log_success(
    event_type: AuditEventType,
    resource: str,
    action: str,
    **kwargs) -> Optional[AuditLog]:
    return await log_event(event_type, resource, action, success=True, **kwargs)


async def log_failure(
    event_type: AuditEventType,
    resource: str,
    action: str,
    error: Any,
    severity: AuditSeverity = AuditSeverity.MEDIUM,
    **kwargs) -> Optional[AuditLog]:
    """记录失败事件，严重级别自动提升一级"""
    return await log_event(
        event_type, resource, action,
        success=False,
        error_message=str(error),
        severity=SEVERITY_ESCALATION[AuditSeverity(severity)],
        **kwargs,
    )
