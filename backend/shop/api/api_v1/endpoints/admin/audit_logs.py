"""审计日志查询（管理员）"""
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, require_admin
from shop.models.audit_log import AuditLog
from shop.models.user import User
from shop.schemas.audit_log import AuditLogResponse, AuditLogListResponse

router = APIRouter()


def _parse_date(value: str, end_of_day: bool = False) -> datetime:
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise HTTPException(status_code=400, detail=f"日期格式错误: {value}，应为 YYYY-MM-DD")
    return parsed + timedelta(days=1) if end_of_day else parsed


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    *,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    event_type: Optional[str] = Query(None),
    severity: Optional[str] = Query(None, pattern="^(LOW|MEDIUM|HIGH|CRITICAL)$"),
    user_id: Optional[int] = Query(None),
    resource: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None)) -> Any:
    """获取审计日志列表"""
    conditions = []
    if event_type:
        conditions.append(AuditLog.event_type == event_type)
    if severity:
        conditions.append(AuditLog.severity == severity)
    if user_id:
        conditions.append(AuditLog.user_id == user_id)
    if resource:
        conditions.append(AuditLog.resource == resource)
    if start_date:
        conditions.append(AuditLog.created_at >= _parse_date(start_date))
    if end_date:
        conditions.append(AuditLog.created_at < _parse_date(end_date, end_of_day=True))

    query = select(AuditLog)
    count_query = select(func.count(AuditLog.id))
    if conditions:
        query = query.where(and_(*conditions))
        count_query = count_query.where(and_(*conditions))

    total = (await db.execute(count_query)).scalar() or 0
    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset((page - 1) * limit).limit(limit)
    logs = (await db.execute(query)).scalars().all()

    return AuditLogListResponse(
        data=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/stats")
async def get_audit_stats(
    *,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    days: int = Query(7, ge=1, le=365)) -> Any:
    """最近 N 天按事件类型、严重级别统计"""
    since = datetime.utcnow() - timedelta(days=days)

    by_type = await db.execute(
        select(AuditLog.event_type, func.count(AuditLog.id))
        .where(AuditLog.created_at >= since)
        .group_by(AuditLog.event_type)
    )
    by_severity = await db.execute(
        select(AuditLog.severity, func.count(AuditLog.id))
        .where(AuditLog.created_at >= since)
        .group_by(AuditLog.severity)
    )
    failures = (await db.execute(
        select(func.count(AuditLog.id)).where(AuditLog.created_at >= since, AuditLog.success == False)
    )).scalar_one()

    event_counts = {event: count for event, count in by_type.all()}
    return {
        "days": days,
        "total": sum(event_counts.values()),
        "failures": failures,
        "by_event_type": event_counts,
        "by_severity": {severity: count for severity, count in by_severity.all()},
    }
