"""支付 API - Stripe PaymentIntent、Webhook、退款、可用支付方式"""
import logging
from decimal import Decimal
from typing import Any, List, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.config import settings
from shop.core.deps import get_db, get_cart_owner, require_admin, CartOwner
from shop.models.order import Order
from shop.models.payment import Payment, Refund
from shop.models.payment_method import PaymentMethodConfig
from shop.models.user import User
from shop.schemas.payment import (
    CreateIntentRequest, CreateIntentResponse, RefundRequest, RefundResponse, PaymentMethodResponse)
from shop.services import audit_logger, integrity_validator, notification_service, order_service, payment_gateway
from shop.services.audit_logger import AuditEventType, AuditSeverity
from shop.services.integrity_validator import IntegrityError
from shop.services.notification_hub import notification_hub
from shop.services.order_service import CheckoutError
from shop.services.payment_gateway import PaymentGatewayError, from_cents
from shop.services.pricing import money

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create-intent", response_model=CreateIntentResponse)
async def create_payment_intent(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner),
    checkout: CreateIntentRequest) -> Any:
    """从购物车创建订单并发起卡支付（购物车在支付成功后清空）"""
    try:
        order = await order_service.create_order_from_cart(db, owner, checkout, "card")
        await integrity_validator.validate_before_payment(db, order.id)
    except CheckoutError as e:
        await db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except IntegrityError as e:
        await db.rollback()
        await audit_logger.log_event(
            AuditEventType.SUSPICIOUS_ACTIVITY, "payment", "create_intent",
            severity=AuditSeverity.HIGH, user_id=owner.user_id, success=False,
            details=e.report.as_dict(), request=request,
        )
        raise HTTPException(status_code=400, detail="订单数据校验失败")

    metadata = {
        "orderId": str(order.id),
        "orderNumber": order.order_number,
        "userId": str(owner.user_id) if owner.user_id is not None else "guest",
    }
    try:
        intent = await payment_gateway.create_payment_intent(order.total, metadata, receipt_email=order.email)
    except PaymentGatewayError as e:
        await db.rollback()
        await audit_logger.log_failure(
            AuditEventType.PAYMENT_FAILED, "payment", "create_intent", e,
            user_id=owner.user_id, request=request,
        )
        raise HTTPException(status_code=502, detail=f"支付创建失败: {e}")

    db.add(Payment(
        order_id=order.id,
        stripe_payment_id=intent.id,
        amount=order.total,
        currency=settings.CURRENCY,
        status="PENDING",
        method="card",
    ))
    await audit_logger.log_event(
        AuditEventType.ORDER_CREATED, "order", "create",
        user_id=owner.user_id, user_email=order.email, resource_id=order.id,
        details={"order_number": order.order_number, "total": float(order.total), "payment_intent": intent.id},
        request=request, db=db,
    )
    await db.commit()

    notification_hub.publish(
        "order_update", "Nova encomenda", f"Encomenda {order.order_number} aguarda pagamento",
        data={"order_id": order.id, "order_number": order.order_number, "total": float(order.total)},
        admin_only=True,
    )
    return CreateIntentResponse(
        client_secret=intent.client_secret,
        payment_intent_id=intent.id,
        order_id=order.id,
        order_number=order.order_number,
        amount=float(order.total),
    )


# ---------- Webhook ----------

async def _find_payment(db: AsyncSession, payment_id: Optional[str]) -> Optional[Payment]:
    if not payment_id:
        return None
    result = await db.execute(select(Payment).where(Payment.stripe_payment_id == payment_id))
    return result.scalar_one_or_none()


async def handle_payment_succeeded(db: AsyncSession, payment_id: str) -> bool:
    """支付成功（幂等）"""
    payment = await _find_payment(db, payment_id)
    if payment is None:
        logger.warning(f"⚠️ 未找到支付记录: {payment_id}")
        return False
    order = await order_service.load_order(db, payment.order_id)
    if order is None:
        logger.warning(f"⚠️ 支付 {payment_id} 关联的订单不存在")
        return False

    changed = await order_service.mark_order_paid(db, order, payment)
    if not changed:
        logger.info(f"ℹ️ 支付 {payment_id} 已处理，忽略重复事件")
        return False

    cancelled = order.status == "CANCELLED"
    await audit_logger.log_event(
        AuditEventType.PAYMENT_PROCESSED, "payment", "succeeded",
        severity=AuditSeverity.HIGH if cancelled else AuditSeverity.LOW,
        user_id=order.user_id, user_email=order.email, resource_id=payment_id,
        details={"order_number": order.order_number, "amount": float(payment.amount),
                 "refund_required": cancelled}, db=db,
    )
    await db.commit()
    if cancelled:
        await order_service.invalidate_order_caches(order)
        notification_hub.publish(
            "admin_alert", "Reembolso necessário",
            f"Encomenda {order.order_number} cancelada recebeu pagamento (€{order.total})",
            data={"order_id": order.id, "order_number": order.order_number, "refund_required": True},
            admin_only=True,
        )
        return True

    logger.info(f"✅ 订单 {order.order_number} 支付成功")
    await order_service.after_payment_succeeded(order)
    return True


async def handle_payment_failed(db: AsyncSession, payment_id: str, reason: Optional[str] = None) -> bool:
    payment = await _find_payment(db, payment_id)
    if payment is None:
        logger.warning(f"⚠️ 未找到支付记录: {payment_id}")
        return False
    order = await db.get(Order, payment.order_id)
    if order is None:
        return False

    changed = order_service.mark_order_payment_failed(order, payment)
    await audit_logger.log_event(
        AuditEventType.PAYMENT_FAILED, "payment", "failed",
        severity=AuditSeverity.MEDIUM, user_id=order.user_id, user_email=order.email,
        resource_id=payment_id, success=False, error_message=reason,
        details={"order_number": order.order_number}, db=db,
    )
    await db.commit()
    logger.warning(f"❌ 订单 {order.order_number} 支付失败: {reason}")
    if changed:
        order_service.publish_payment_failed(order)
    return changed


async def handle_charge_refunded(db: AsyncSession, payment_id: str, amount_refunded: int, amount: int) -> bool:
    payment = await _find_payment(db, payment_id)
    if payment is None:
        logger.warning(f"⚠️ 未找到支付记录: {payment_id}")
        return False
    order = await order_service.load_order(db, payment.order_id)
    if order is None:
        return False

    if amount_refunded >= amount:
        payment.status = "REFUNDED"
        order.payment_status = "REFUNDED"
        order.status = "REFUNDED"
        await order_service.restore_stock_for_order(db, order, "Stripe 全额退款")
    else:
        order.payment_status = "PARTIALLY_REFUNDED"
    await db.commit()
    logger.info(f"💸 订单 {order.order_number} 退款 €{from_cents(amount_refunded)}")
    await order_service.invalidate_order_caches(order)
    return True


async def handle_source_event(db: AsyncSession, event_type: str, source_id: str) -> bool:
    """Multibanco / MB WAY 等 Source 事件"""
    logger.info(f"🏧 Source 事件 {event_type}: {source_id}")
    payment = await _find_payment(db, source_id)
    if payment is None:
        return False
    if event_type == "source.chargeable":
        payment.status = "PENDING"
        await db.commit()
        return True
    order = await db.get(Order, payment.order_id)
    changed = order_service.mark_order_payment_failed(order, payment) if order else False
    await db.commit()
    if changed:
        order_service.publish_payment_failed(order)
    return changed


@router.post("/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> Any:
    """Stripe Webhook（校验签名）"""
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=400, detail="缺少 stripe-signature")

    try:
        event = payment_gateway.construct_webhook_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"⚠️ Webhook 校验失败: {e}")
        await audit_logger.log_event(
            AuditEventType.SUSPICIOUS_ACTIVITY, "payment", "webhook",
            severity=AuditSeverity.HIGH, success=False, error_message=str(e), request=request,
        )
        raise HTTPException(status_code=400, detail="Webhook 签名无效")

    event_type = event["type"]
    obj = event["data"]["object"]
    logger.info(f"📬 Stripe 事件: {event_type}")

    if event_type == "payment_intent.succeeded":
        await handle_payment_succeeded(db, obj["id"])
    elif event_type == "charge.succeeded":
        await handle_payment_succeeded(db, obj.get("payment_intent"))
    elif event_type == "payment_intent.payment_failed":
        error = obj.get("last_payment_error") or {}
        await handle_payment_failed(db, obj["id"], error.get("message"))
    elif event_type == "charge.refunded":
        await handle_charge_refunded(
            db, obj.get("payment_intent"), obj.get("amount_refunded", 0), obj.get("amount", 0))
    elif event_type in ("source.chargeable", "source.failed", "source.canceled"):
        await handle_source_event(db, event_type, obj["id"])
    else:
        logger.info(f"ℹ️ 未处理的事件类型: {event_type}")

    return {"received": True}


# ---------- 退款 ----------

@router.post("/refund", response_model=RefundResponse)
async def refund_payment(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    refund_in: RefundRequest) -> Any:
    """退款（管理员）：全额退款回滚库存，部分退款标记为部分退款"""
    order = await order_service.load_order(db, refund_in.order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="订单不存在")

    payment = next((p for p in reversed(order.payments) if p.status == "PAID"), None)
    if payment is None or order.payment_status not in ("PAID", "PARTIALLY_REFUNDED"):
        raise HTTPException(status_code=400, detail="订单未支付，不能退款")
    if not payment.stripe_payment_id:
        raise HTTPException(status_code=400, detail="人工确认的支付请线下退款")

    refunded = (await db.execute(
        select(func.coalesce(func.sum(Refund.amount), 0)).where(Refund.payment_id == payment.id)
    )).scalar_one()
    refundable = money(payment.amount) - money(refunded)
    amount = money(refund_in.amount) if refund_in.amount is not None else refundable
    if amount <= 0 or amount > refundable:
        raise HTTPException(status_code=400, detail=f"退款金额超出可退金额 €{refundable}")

    try:
        stripe_refund = await payment_gateway.create_refund(
            payment.stripe_payment_id,
            amount if refund_in.amount is not None else None,
            refund_in.reason)
    except PaymentGatewayError as e:
        await audit_logger.log_failure(
            AuditEventType.REFUND_FAILED, "payment", "refund", e, severity=AuditSeverity.HIGH,
            user_id=admin.id, user_email=admin.email, resource_id=order.id, request=request,
        )
        raise HTTPException(status_code=502, detail=f"退款失败: {e}")

    record = Refund(
        order_id=order.id,
        payment_id=payment.id,
        stripe_refund_id=stripe_refund.id,
        amount=amount,
        reason=refund_in.reason,
        status=str(stripe_refund.status or "succeeded").upper(),
        created_by=admin.id,
    )
    db.add(record)

    full_refund = amount >= refundable
    if full_refund:
        payment.status = "REFUNDED"
        order.payment_status = "REFUNDED"
        order.status = "REFUNDED"
        await order_service.restore_stock_for_order(db, order, "订单全额退款", user_id=admin.id)
    else:
        order.payment_status = "PARTIALLY_REFUNDED"

    await audit_logger.log_event(
        AuditEventType.REFUND_ISSUED, "payment", "refund",
        severity=AuditSeverity.MEDIUM, user_id=admin.id, user_email=admin.email, resource_id=order.id,
        details={"order_number": order.order_number, "amount": float(amount), "full": full_refund},
        request=request, db=db,
    )
    await db.commit()
    logger.info(f"💸 订单 {order.order_number} 退款 €{amount}（{'全额' if full_refund else '部分'}）")

    await order_service.invalidate_order_caches(order)
    if order.user_id is not None:
        notification_hub.publish(
            "payment_update", "Reembolso emitido",
            f"Reembolso de €{amount} para a encomenda {order.order_number}",
            data={"order_id": order.id, "amount": float(amount)}, user_id=order.user_id,
        )
    await notification_service.send_order_refunded(order.id, amount)
    return RefundResponse.model_validate(record)


@router.get("/methods", response_model=List[PaymentMethodResponse])
async def list_enabled_methods(db: AsyncSession = Depends(get_db)) -> Any:
    """前台可用的支付方式"""
    result = await db.execute(
        select(PaymentMethodConfig)
        .where(PaymentMethodConfig.enabled == True)
        .order_by(PaymentMethodConfig.display_order, PaymentMethodConfig.id)
    )
    return result.scalars().all()
