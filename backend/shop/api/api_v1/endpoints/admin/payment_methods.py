"""支付方式配置（管理员）"""
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, require_admin
from shop.models.payment_method import PaymentMethodConfig
from shop.models.user import User
from shop.schemas.payment import (
    PaymentMethodCreate, PaymentMethodUpdate, PaymentMethodResponse,
    PaymentMethodListResponse, PaymentMethodSummary)
from shop.services import audit_logger
from shop.services.audit_logger import AuditEventType

router = APIRouter()


async def _ensure_method_unique(db: AsyncSession, method: str, exclude_id: int = None) -> None:
    query = select(PaymentMethodConfig.id).where(PaymentMethodConfig.method == method)
    if exclude_id:
        query = query.where(PaymentMethodConfig.id != exclude_id)
    if (await db.execute(query)).first():
        raise HTTPException(status_code=409, detail="支付方式已存在")


@router.get("", response_model=PaymentMethodListResponse)
async def list_payment_methods(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)) -> Any:
    """全部支付方式及汇总"""
    result = await db.execute(
        select(PaymentMethodConfig).order_by(PaymentMethodConfig.display_order, PaymentMethodConfig.id)
    )
    methods = result.scalars().all()
    summary = PaymentMethodSummary(
        total=len(methods),
        enabled=sum(1 for m in methods if m.enabled),
        auto=sum(1 for m in methods if not m.is_manual),
        manual=sum(1 for m in methods if m.is_manual),
    )
    return PaymentMethodListResponse(
        data=[PaymentMethodResponse.model_validate(m) for m in methods],
        summary=summary,
    )


@router.post("", response_model=PaymentMethodResponse, status_code=201)
async def create_payment_method(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    method_in: PaymentMethodCreate) -> Any:
    """新增支付方式"""
    await _ensure_method_unique(db, method_in.method)
    method = PaymentMethodConfig(**method_in.model_dump())
    db.add(method)
    await db.flush()
    await audit_logger.log_event(
        AuditEventType.CONFIGURATION_CHANGED, "payment_method", "create",
        user_id=admin.id, user_email=admin.email, resource_id=method.id,
        details=method_in.model_dump(), request=request, db=db,
    )
    await db.commit()
    await db.refresh(method)
    return method


@router.put("", response_model=PaymentMethodResponse)
async def update_payment_method(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    method_in: PaymentMethodUpdate) -> Any:
    """更新支付方式（按 id 或 method 定位）"""
    if method_in.id is not None:
        method = await db.get(PaymentMethodConfig, method_in.id)
    elif method_in.method:
        method = (await db.execute(
            select(PaymentMethodConfig).where(PaymentMethodConfig.method == method_in.method)
        )).scalar_one_or_none()
    else:
        raise HTTPException(status_code=400, detail="缺少支付方式ID")
    if method is None:
        raise HTTPException(status_code=404, detail="支付方式不存在")

    update_data = method_in.model_dump(exclude_unset=True, exclude={"id"})
    if update_data.get("method") and update_data["method"] != method.method:
        await _ensure_method_unique(db, update_data["method"], exclude_id=method.id)

    for field, value in update_data.items():
        setattr(method, field, value)

    await audit_logger.log_event(
        AuditEventType.CONFIGURATION_CHANGED, "payment_method", "update",
        user_id=admin.id, user_email=admin.email, resource_id=method.id,
        details=update_data, request=request, db=db,
    )
    await db.commit()
    await db.refresh(method)
    return method
