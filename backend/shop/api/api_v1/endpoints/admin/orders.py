"""订单管理（管理员）- 查询、状态变更、人工确认收款"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.config import settings
from shop.core.deps import get_db, require_admin
from shop.models.order import Order
from shop.models.payment import Payment
from shop.models.payment_method import PaymentMethodConfig
from shop.models.user import User
from shop.schemas.order import AdminOrderListResponse, AdminOrderUpdate, OrderResponse
from shop.services import audit_logger, notification_service, order_service
from shop.services.audit_logger import AuditEventType, AuditSeverity
from shop.services.notification_hub import notification_hub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=AdminOrderListResponse)
async def list_orders(
    *,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    status: Optional[str] = Query(None),
    payment_status: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="订单号或邮箱"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)) -> Any:
    """订单列表"""
    query = order_service.base_order_query()
    if status:
        query = query.where(Order.status == status)
    if payment_status:
        query = query.where(Order.payment_status == payment_status)
    if search:
        query = query.where(or_(
            Order.order_number.ilike(f"%{search}%"),
            Order.email.ilike(f"%{search}%"),
        ))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    query = query.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit)
    orders = (await db.execute(query)).scalars().all()
    return AdminOrderListResponse(
        data=[order_service.build_order_response(o) for o in orders],
        total=total, page=page, limit=limit,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    *,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    order_id: int) -> Any:
    order = await order_service.load_order(db, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="订单不存在")
    return order_service.build_order_response(order)


@router.put("/{order_id}", response_model=OrderResponse)
async def update_order_status(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    order_id: int,
    order_in: AdminOrderUpdate) -> Any:
    """修改订单状态：发货、送达时通知顾客"""
    order = await order_service.load_order(db, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="订单不存在")

    old_status = order.status
    if order_in.status in ("SHIPPED", "DELIVERED") and order.payment_status != "PAID":
        raise HTTPException(status_code=400, detail="订单未支付，不能发货")

    if order_in.status == "CANCELLED" and old_status != "CANCELLED":
        await order_service.restore_stock_for_order(db, order, "管理员取消订单", user_id=admin.id)
    order.status = order_in.status
    if order_in.tracking_number is not None:
        order.tracking_number = order_in.tracking_number
    if order_in.notes is not None:
        order.notes = order_in.notes

    await audit_logger.log_event(
        AuditEventType.ORDER_STATUS_CHANGED, "order", "update_status",
        user_id=admin.id, user_email=admin.email, resource_id=order.id,
        details={
            "order_number": order.order_number,
            "from": old_status,
            "to": order.status,
            "tracking_number": order.tracking_number,
        },
        request=request, db=db,
    )
    await db.commit()
    logger.info(f"📦 订单 {order.order_number} 状态 {old_status} → {order.status}")

    await order_service.invalidate_order_caches(order)
    if old_status != order.status:
        data = {"order_id": order.id, "order_number": order.order_number, "status": order.status}
        if order.user_id is not None:
            notification_hub.publish(
                "order_update", "Encomenda atualizada",
                f"A encomenda {order.order_number} está agora {order.status}",
                data=data, user_id=order.user_id,
            )
        notification_hub.publish(
            "order_update", "Estado alterado", f"{order.order_number}: {old_status} → {order.status}",
            data=data, admin_only=True,
        )
        if order.status == "SHIPPED":
            await notification_service.send_order_shipped(order.id)
        elif order.status == "DELIVERED":
            await notification_service.send_order_delivered(order.id)

    return order_service.build_order_response(await order_service.load_order(db, order.id))


@router.post("/{order_id}/accept-payment", response_model=OrderResponse)
async def accept_manual_payment(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    order_id: int) -> Any:
    """人工确认收款（Multibanco / MB WAY），与 Stripe 支付成功流程一致"""
    order = await order_service.load_order(db, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="订单不存在")
    if order.payment_status == "PAID":
        raise HTTPException(status_code=400, detail="订单已支付")

    config = (await db.execute(
        select(PaymentMethodConfig).where(PaymentMethodConfig.method == order.payment_method)
    )).scalar_one_or_none()
    if config is None or not config.is_manual:
        raise HTTPException(status_code=400, detail="该订单的支付方式不支持人工确认")
    if order.status == "CANCELLED":
        raise HTTPException(status_code=400, detail="订单已取消")

    payment = Payment(
        order_id=order.id,
        amount=order.total,
        currency=settings.CURRENCY,
        status="PENDING",
        method=order.payment_method,
    )
    db.add(payment)
    await order_service.mark_order_paid(db, order, payment, empty_cart=False)
    await audit_logger.log_event(
        AuditEventType.PAYMENT_PROCESSED, "payment", "accept_manual",
        severity=AuditSeverity.MEDIUM, user_id=admin.id, user_email=admin.email, resource_id=order.id,
        details={"order_number": order.order_number, "amount": float(order.total), "method": order.payment_method},
        request=request, db=db,
    )
    await db.commit()
    logger.info(f"✅ 管理员 {admin.email} 确认订单 {order.order_number} 已收款（{order.payment_method}）")

    await order_service.after_payment_succeeded(order)
    return order_service.build_order_response(await order_service.load_order(db, order.id))
