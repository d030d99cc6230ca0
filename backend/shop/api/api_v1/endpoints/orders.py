"""订单 API（顾客）"""
import logging
import math
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, get_current_user, get_optional_user, get_guest_session_id, get_cart_owner, CartOwner
from shop.models.order import Order
from shop.models.payment_method import PaymentMethodConfig
from shop.models.user import User
from shop.schemas.order import OrderCreate, OrderResponse, OrderListResponse
from shop.schemas.product import Pagination
from shop.services import audit_logger, integrity_validator, order_service
from shop.services.audit_logger import AuditEventType, AuditSeverity
from shop.services.integrity_validator import IntegrityError
from shop.services.notification_hub import notification_hub
from shop.services.order_service import CheckoutError

logger = logging.getLogger(__name__)

router = APIRouter()

MANUAL_METHODS = ("multibanco", "mbway")


def can_access_order(order: Order, user: Optional[User], session_id: Optional[str]) -> bool:
    """下单用户、管理员或同一游客会话可以查看订单"""
    if user is not None and (user.is_admin or order.user_id == user.id):
        return True
    return order.user_id is None and session_id is not None and order.session_id == session_id


@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50)) -> Any:
    """我的订单"""
    query = order_service.base_order_query().where(Order.user_id == user.id)
    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()

    query = query.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit)
    orders = (await db.execute(query)).scalars().all()
    return OrderListResponse(
        orders=[order_service.build_order_response(o) for o in orders],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.post("", response_model=OrderResponse, status_code=201)
async def create_manual_order(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner),
    order_in: OrderCreate) -> Any:
    """手动支付下单（Multibanco / MB WAY）"""
    method = order_in.payment_method.lower()
    config = (await db.execute(
        select(PaymentMethodConfig).where(PaymentMethodConfig.method == method)
    )).scalar_one_or_none()
    if method not in MANUAL_METHODS or config is None or not config.enabled or not config.is_manual:
        raise HTTPException(status_code=400, detail="不支持的支付方式")

    try:
        order = await order_service.create_order_from_cart(db, owner, order_in, method)
        await integrity_validator.validate_new_order(db, order.id)
    except CheckoutError as e:
        await db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except IntegrityError as e:
        await db.rollback()
        await audit_logger.log_event(
            AuditEventType.SUSPICIOUS_ACTIVITY, "order", "create",
            severity=AuditSeverity.HIGH, user_id=owner.user_id, success=False,
            details=e.report.as_dict(), request=request,
        )
        raise HTTPException(status_code=400, detail="订单数据校验失败")

    await order_service.clear_cart(db, owner.user_id, owner.session_id)
    await audit_logger.log_event(
        AuditEventType.ORDER_CREATED, "order", "create",
        user_id=owner.user_id, user_email=order.email, resource_id=order.id,
        details={"order_number": order.order_number, "total": float(order.total), "payment_method": method},
        request=request, db=db,
    )
    await db.commit()

    await order_service.invalidate_order_caches(order)
    notification_hub.publish(
        "order_update", "Nova encomenda",
        f"Encomenda {order.order_number} aguarda pagamento ({method})",
        data={"order_id": order.id, "order_number": order.order_number, "total": float(order.total)},
        admin_only=True,
    )
    logger.info(f"🧾 手动支付订单 {order.order_number} 已创建，等待 {method} 付款")
    return order_service.build_order_response(await order_service.load_order(db, order.id))


@router.get("/{order_number}", response_model=OrderResponse)
async def get_order(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
    order_number: str) -> Any:
    """订单详情（本人、管理员或同一游客会话）"""
    order = await order_service.load_order_by_number(db, order_number)
    if order is None or not can_access_order(order, user, get_guest_session_id(request)):
        raise HTTPException(status_code=404, detail="订单不存在")
    return order_service.build_order_response(order)


@router.post("/{order_number}/cancel", response_model=OrderResponse)
async def cancel_order(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
    order_number: str) -> Any:
    """取消待处理订单"""
    order = await order_service.load_order_by_number(db, order_number)
    if order is None or not can_access_order(order, user, get_guest_session_id(request)):
        raise HTTPException(status_code=404, detail="订单不存在")
    if order.status != "PENDING":
        raise HTTPException(status_code=400, detail="只有待处理的订单可以取消")

    user_id = user.id if user else None
    await order_service.restore_stock_for_order(db, order, "订单取消", user_id=user_id)
    order.status = "CANCELLED"
    await audit_logger.log_event(
        AuditEventType.ORDER_CANCELLED, "order", "cancel",
        severity=AuditSeverity.MEDIUM, user_id=user_id, user_email=user.email if user else order.email,
        resource_id=order.id, details={"order_number": order.order_number}, request=request, db=db,
    )
    await db.commit()

    await order_service.invalidate_order_caches(order)
    notification_hub.publish(
        "order_update", "Encomenda cancelada", f"Encomenda {order.order_number} foi cancelada",
        data={"order_id": order.id, "order_number": order.order_number, "status": order.status},
        admin_only=True,
    )
    return order_service.build_order_response(await order_service.load_order(db, order.id))
