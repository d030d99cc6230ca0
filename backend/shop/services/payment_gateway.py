"""
Stripe 支付网关
SDK 为同步调用，放到工作线程执行；所有调用经过 stripe 熔断器和网络重试
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe

from shop.core.config import settings
from shop.services.circuit_breaker import CircuitBreakerOpenError, circuit_breakers
from shop.services.pricing import money
from shop.services.retry import RetryConfigs, with_retry

logger = logging.getLogger(__name__)

MIN_AMOUNT = Decimal("0.50")
MAX_AMOUNT = Decimal("999999")


class PaymentGatewayError(Exception):
    """支付网关调用失败"""


def to_cents(amount) -> int:
    return int((money(amount) * 100).to_integral_value())


def from_cents(cents: int) -> Decimal:
    return money(Decimal(cents) / 100)


async def _call(fn, context: str, **kwargs) -> Any:
    if not settings.STRIPE_SECRET_KEY:
        raise PaymentGatewayError("Stripe 未配置")

    kwargs["api_key"] = settings.STRIPE_SECRET_KEY
    try:
        return await circuit_breakers["stripe"].execute(
            lambda: with_retry(lambda: asyncio.to_thread(fn, **kwargs), RetryConfigs.network, context)
        )
    except stripe.StripeError as e:
        logger.error(f"❌ Stripe 调用失败 [{context}]: {e}")
        raise PaymentGatewayError(getattr(e, "user_message", None) or str(e)) from e
    except CircuitBreakerOpenError as e:
        logger.warning(f"⚠️ Stripe 熔断中，拒绝调用 [{context}]")
        raise PaymentGatewayError("支付服务暂时不可用，请稍后重试") from e


async def create_payment_intent(
    amount,
    metadata: Dict[str, str],
    receipt_email: Optional[str] = None,
    currency: Optional[str] = None) -> Any:
    """创建 PaymentIntent（金额单位：欧元）"""
    amount = money(amount)
    if amount < MIN_AMOUNT or amount > MAX_AMOUNT:
        raise PaymentGatewayError(f"支付金额超出范围: {amount}")

    params = {
        "amount": to_cents(amount),
        "currency": currency or settings.CURRENCY,
        "metadata": metadata,
        "automatic_payment_methods": {"enabled": True},
    }
    if receipt_email:
        params["receipt_email"] = receipt_email

    intent = await _call(stripe.PaymentIntent.create, "stripe.create_payment_intent", **params)
    logger.info(f"💳 PaymentIntent 已创建: {intent.id} ({amount} {params['currency']})")
    return intent


async def retrieve_payment_intent(payment_intent_id: str) -> Any:
    return await _call(stripe.PaymentIntent.retrieve, "stripe.retrieve_payment_intent", id=payment_intent_id)


async def create_refund(
    payment_intent_id: str,
    amount=None,
    reason: Optional[str] = None) -> Any:
    """发起退款；amount 为空表示全额退款"""
    params: Dict[str, Any] = {"payment_intent": payment_intent_id}
    if amount is not None:
        params["amount"] = to_cents(amount)
    if reason in ("duplicate", "fraudulent", "requested_by_customer"):
        params["reason"] = reason
    refund = await _call(stripe.Refund.create, "stripe.create_refund", **params)
    logger.info(f"💸 退款已创建: {refund.id} ({payment_intent_id})")
    return refund


def construct_webhook_event(payload: bytes, signature: str) -> Any:
    """校验 Webhook 签名并解析事件

    签名错误抛出 stripe.SignatureVerificationError，载荷错误抛出 ValueError
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise ValueError("未配置 STRIPE_WEBHOOK_SECRET")
    return stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
