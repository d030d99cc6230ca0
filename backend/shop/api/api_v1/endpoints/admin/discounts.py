"""优惠券管理（管理员）"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, require_admin
from shop.models.discount import Discount, DISCOUNT_TYPES
from shop.models.user import User
from shop.schemas.discount import DiscountCreate, DiscountUpdate, DiscountResponse, DiscountListResponse
from shop.services import audit_logger
from shop.services.audit_logger import AuditEventType
from shop.services.pricing import money

router = APIRouter()

MONEY_FIELDS = ("value", "min_amount", "max_amount")


def _validate_rule(discount_type: str, value: Optional[float]) -> None:
    if discount_type not in DISCOUNT_TYPES:
        raise HTTPException(status_code=400, detail="优惠类型必须为 PERCENTAGE 或 FIXED_AMOUNT")
    if discount_type == "PERCENTAGE" and value is not None and value > 100:
        raise HTTPException(status_code=400, detail="百分比优惠不能超过100")


async def _ensure_code_unique(db: AsyncSession, code: str, exclude_id: int = None) -> None:
    query = select(Discount.id).where(Discount.code == code)
    if exclude_id:
        query = query.where(Discount.id != exclude_id)
    if (await db.execute(query)).first():
        raise HTTPException(status_code=409, detail="优惠码已存在")


def _to_money(data: dict) -> dict:
    for field in MONEY_FIELDS:
        if data.get(field) is not None:
            data[field] = money(data[field])
    return data


@router.get("", response_model=DiscountListResponse)
async def list_discounts(
    *,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)) -> Any:
    """优惠券列表"""
    query = select(Discount)
    if is_active is not None:
        query = query.where(Discount.is_active == is_active)
    if search:
        query = query.where(Discount.code.ilike(f"%{search.upper()}%"))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    query = query.order_by(Discount.created_at.desc(), Discount.id.desc()).offset((page - 1) * limit).limit(limit)
    discounts = (await db.execute(query)).scalars().all()
    return DiscountListResponse(data=discounts, total=total, page=page, limit=limit)


@router.post("", response_model=DiscountResponse, status_code=201)
async def create_discount(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    discount_in: DiscountCreate) -> Any:
    """创建优惠券（券码统一大写）"""
    _validate_rule(discount_in.type, discount_in.value)
    code = discount_in.code.strip().upper()
    await _ensure_code_unique(db, code)

    data = _to_money(discount_in.model_dump(exclude={"code"}))
    discount = Discount(code=code, used_count=0, **data)
    db.add(discount)
    await db.flush()
    await audit_logger.log_event(
        AuditEventType.CONFIGURATION_CHANGED, "discount", "create",
        user_id=admin.id, user_email=admin.email, resource_id=discount.id,
        details={"code": code, "type": discount.type, "value": float(discount.value)},
        request=request, db=db,
    )
    await db.commit()
    await db.refresh(discount)
    return discount


async def _apply_update(
    db: AsyncSession,
    request: Request,
    admin: User,
    discount_id: int,
    discount_in: DiscountUpdate) -> Discount:
    discount = await db.get(Discount, discount_id)
    if discount is None:
        raise HTTPException(status_code=404, detail="优惠券不存在")

    update_data = discount_in.model_dump(exclude_unset=True, exclude={"id"})
    _validate_rule(update_data.get("type", discount.type), update_data.get("value", float(discount.value)))
    if update_data.get("code"):
        update_data["code"] = update_data["code"].strip().upper()
        await _ensure_code_unique(db, update_data["code"], exclude_id=discount_id)

    for field, value in _to_money(update_data).items():
        setattr(discount, field, value)

    await audit_logger.log_event(
        AuditEventType.CONFIGURATION_CHANGED, "discount", "update",
        user_id=admin.id, user_email=admin.email, resource_id=discount_id,
        details={k: str(v) for k, v in update_data.items()}, request=request, db=db,
    )
    await db.commit()
    await db.refresh(discount)
    return discount


@router.put("", response_model=DiscountResponse)
async def update_discount_by_body(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    discount_in: DiscountUpdate) -> Any:
    """更新优惠券（请求体携带 id）"""
    if discount_in.id is None:
        raise HTTPException(status_code=400, detail="缺少优惠券ID")
    return await _apply_update(db, request, admin, discount_in.id, discount_in)


@router.put("/{discount_id}", response_model=DiscountResponse)
async def update_discount(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    discount_id: int,
    discount_in: DiscountUpdate) -> Any:
    return await _apply_update(db, request, admin, discount_id, discount_in)


@router.delete("/{discount_id}")
async def delete_discount(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    discount_id: int) -> Any:
    """删除优惠券；已使用过的券只停用"""
    discount = await db.get(Discount, discount_id)
    if discount is None:
        raise HTTPException(status_code=404, detail="优惠券不存在")

    if discount.used_count:
        discount.is_active = False
        message = "优惠券已使用过，已停用"
    else:
        await db.delete(discount)
        message = "优惠券已删除"

    await audit_logger.log_event(
        AuditEventType.CONFIGURATION_CHANGED, "discount", "delete",
        user_id=admin.id, user_email=admin.email, resource_id=discount_id,
        details={"code": discount.code}, request=request, db=db,
    )
    await db.commit()
    return {"message": message}
