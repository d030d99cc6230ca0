"""系统运维（管理员）- 数据完整性检查、熔断器、告警"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, require_admin
from shop.models.user import User
from shop.services import audit_logger, integrity_validator
from shop.services.alerts import alert_manager
from shop.services.audit_logger import AuditEventType, AuditSeverity
from shop.services.circuit_breaker import get_circuit_breaker, get_all_circuit_breaker_stats

logger = logging.getLogger(__name__)

router = APIRouter()


class IntegrityCheckRequest(BaseModel):
    type: str
    entity_id: Any


class CircuitBreakerAction(BaseModel):
    action: str
    service: str


class AlertAction(BaseModel):
    action: str
    name: str
    threshold: Optional[float] = Field(None, ge=0)
    severity: Optional[str] = None
    enabled: Optional[bool] = None


# ---------- 数据完整性 ----------

@router.get("/integrity-check")
async def run_integrity_check(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)) -> Any:
    """全量完整性检查（最近30天订单 + 全部商品库存）"""
    result = await integrity_validator.run_system_integrity_check(db)
    await db.commit()
    return {**result, "recommendations": integrity_validator.build_recommendations(result)}


@router.post("/integrity-check")
async def run_single_check(
    *,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    check_in: IntegrityCheckRequest) -> Any:
    """单项检查：order / payment / inventory"""
    try:
        if check_in.type == "order":
            report = await integrity_validator.validate_order(db, int(check_in.entity_id))
        elif check_in.type == "payment":
            report = await integrity_validator.validate_payment(db, str(check_in.entity_id))
        elif check_in.type == "inventory":
            report = await integrity_validator.validate_inventory(db, int(check_in.entity_id))
        else:
            raise HTTPException(status_code=400, detail="检查类型必须为 order、payment 或 inventory")
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="实体ID格式错误")
    await db.commit()
    return {"type": check_in.type, "entity_id": check_in.entity_id, **report.as_dict()}


# ---------- 熔断器 ----------

@router.get("/circuit-breakers")
async def get_circuit_breakers(admin: User = Depends(require_admin)) -> Any:
    """各外部服务熔断器状态"""
    stats = get_all_circuit_breaker_stats()
    states = [s["state"] for s in stats.values()]
    return {
        "circuit_breakers": stats,
        "summary": {
            "total": len(states),
            "healthy": states.count("CLOSED"),
            "degraded": states.count("HALF_OPEN"),
            "failed": states.count("OPEN"),
        },
    }


@router.post("/circuit-breakers")
async def control_circuit_breaker(
    *,
    request: Request,
    admin: User = Depends(require_admin),
    action_in: CircuitBreakerAction) -> Any:
    """手动控制熔断器：reset / open / close"""
    breaker = get_circuit_breaker(action_in.service)
    if breaker is None:
        raise HTTPException(status_code=404, detail=f"服务 {action_in.service} 不存在")

    if action_in.action == "reset":
        breaker.reset()
    elif action_in.action == "open":
        breaker.force_open()
    elif action_in.action == "close":
        breaker.force_close()
    else:
        raise HTTPException(status_code=400, detail="操作必须为 reset、open 或 close")

    await audit_logger.log_event(
        AuditEventType.CONFIGURATION_CHANGED, "circuit_breaker", action_in.action,
        severity=AuditSeverity.MEDIUM, user_id=admin.id, user_email=admin.email,
        resource_id=action_in.service, request=request,
    )
    return {"success": True, "circuit_breaker": breaker.get_stats()}


# ---------- 告警 ----------

@router.get("/alerts")
async def get_alerts(admin: User = Depends(require_admin)) -> Any:
    """当前告警、历史与配置"""
    return {
        "active": alert_manager.get_active_alerts(),
        "history": alert_manager.get_alert_history(50),
        "configs": alert_manager.get_configs(),
    }


@router.post("/alerts")
async def manage_alert(
    *,
    request: Request,
    admin: User = Depends(require_admin),
    action_in: AlertAction) -> Any:
    """enable / disable / configure / resolve"""
    if action_in.action == "enable":
        found = alert_manager.enable(action_in.name)
    elif action_in.action == "disable":
        found = alert_manager.disable(action_in.name)
    elif action_in.action == "configure":
        try:
            found = alert_manager.configure(
                action_in.name,
                threshold=action_in.threshold,
                severity=action_in.severity,
                enabled=action_in.enabled,
            ) is not None
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    elif action_in.action == "resolve":
        found = alert_manager.resolve(action_in.name)
        if not found:
            raise HTTPException(status_code=404, detail=f"告警 {action_in.name} 未处于触发状态")
    else:
        raise HTTPException(status_code=400, detail="操作必须为 enable、disable、configure 或 resolve")

    if not found:
        raise HTTPException(status_code=404, detail=f"告警 {action_in.name} 不存在")

    await audit_logger.log_event(
        AuditEventType.CONFIGURATION_CHANGED, "alert", action_in.action,
        user_id=admin.id, user_email=admin.email, resource_id=action_in.name,
        details=action_in.model_dump(exclude_none=True), request=request,
    )
    return {"success": True, "configs": alert_manager.get_configs()}
