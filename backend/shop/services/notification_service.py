"""
通知服务
按用户通知偏好决定是否发送，渲染邮件内容，同时写入站内通知

所有发送函数都使用独立会话并且永不抛出异常，
应在业务事务提交之后调用
"""

import logging
from decimal import Decimal
from enum import Enum
from html import escape
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shop.core.config import settings
from shop.db import session as db_session
from shop.models.notification import Notification
from shop.models.order import Order, OrderItem
from shop.models.product import Product
from shop.models.user import User, NotificationSettings
from shop.services import email as email_service

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    WELCOME = "WELCOME"
    ORDER_CONFIRMATION = "ORDER_CONFIRMATION"
    ORDER_SHIPPED = "ORDER_SHIPPED"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    ORDER_REFUNDED = "ORDER_REFUNDED"
    PASSWORD_RESET = "PASSWORD_RESET"
    STOCK_ALERT = "STOCK_ALERT"
    PROMOTION = "PROMOTION"
    ACCOUNT_UPDATE = "ACCOUNT_UPDATE"


# 通知类型对应的偏好字段；None 表示总是发送
PREFERENCE_FIELDS: Dict[NotificationType, Optional[str]] = {
    NotificationType.WELCOME: None,
    NotificationType.PASSWORD_RESET: None,
    NotificationType.ORDER_CONFIRMATION: "order_confirmations",
    NotificationType.ORDER_SHIPPED: "order_updates",
    NotificationType.ORDER_DELIVERED: "order_updates",
    NotificationType.ORDER_REFUNDED: "order_updates",
    NotificationType.STOCK_ALERT: "stock_alerts",
    NotificationType.PROMOTION: "promotional_emails",
    NotificationType.ACCOUNT_UPDATE: "account_updates",
}

# 用户尚未保存偏好时的默认值
DEFAULT_PREFERENCES = {
    "email_notifications": True,
    "order_confirmations": True,
    "order_updates": True,
    "stock_alerts": False,
    "promotional_emails": False,
    "account_updates": True,
}


async def get_preferences(db: AsyncSession, user_id: int) -> Dict[str, bool]:
    result = await db.execute(
        select(NotificationSettings).where(NotificationSettings.user_id == user_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        return dict(DEFAULT_PREFERENCES)
    return {key: bool(getattr(row, key)) for key in DEFAULT_PREFERENCES}


def is_allowed(preferences: Dict[str, bool], notification_type: NotificationType) -> bool:
    """根据偏好判断是否允许发送"""
    field = PREFERENCE_FIELDS[notification_type]
    if field is None:
        return True
    if not preferences.get("email_notifications", True):
        return False
    return preferences.get(field, DEFAULT_PREFERENCES[field])


def _money(value) -> str:
    return f"€{Decimal(str(value or 0)):.2f}"


def _layout(title: str, body: str) -> str:
    store = escape(settings.STORE_NAME)
    return (
        "<div style=\"font-family:Arial,sans-serif;max-width:600px;margin:0 auto;color:#333\">"
        f"<div style=\"background:#2d3748;color:#fff;padding:20px;text-align:center\"><h1>{store}</h1></div>"
        f"<div style=\"padding:24px\"><h2>{escape(title)}</h2>{body}</div>"
        f"<div style=\"padding:16px;font-size:12px;color:#888;text-align:center\">"
        f"© {store} · <a href=\"{settings.SITE_URL}/definicoes\">Preferências de notificação</a></div>"
        "</div>"
    )


def _items_table(items) -> str:
    rows = "".join(
        f"<tr><td>{escape(item['name'])}</td><td>{item['quantity']}</td><td>{_money(item['price'])}</td></tr>"
        for item in items
    )
    return f"<table style=\"width:100%\"><tr><th>Produto</th><th>Qtd</th><th>Preço</th></tr>{rows}</table>"


def render(notification_type: NotificationType, data: Dict[str, Any]) -> Tuple[str, str]:
    """渲染邮件主题和正文"""
    store = settings.STORE_NAME
    name = escape(data.get("name") or "Cliente")
    number = data.get("order_number", "")

    if notification_type == NotificationType.WELCOME:
        subject = f"Bem-vindo à {store}!"
        body = f"<p>Olá {name},</p><p>A sua conta foi criada com sucesso.</p>" \
               f"<p><a href=\"{settings.SITE_URL}\">Começar a comprar</a></p>"
    elif notification_type == NotificationType.ORDER_CONFIRMATION:
        subject = f"Confirmação de Encomenda #{number}"
        body = f"<p>Olá {name},</p><p>Recebemos o pagamento da sua encomenda <b>#{escape(number)}</b>.</p>" \
               f"{_items_table(data.get('items', []))}" \
               f"<p>Subtotal: {_money(data.get('subtotal'))}<br>Desconto: {_money(data.get('discount'))}<br>" \
               f"IVA: {_money(data.get('tax'))}<br>Envio: {_money(data.get('shipping'))}<br>" \
               f"<b>Total: {_money(data.get('total'))}</b></p>"
    elif notification_type == NotificationType.ORDER_SHIPPED:
        subject = f"A sua encomenda #{number} foi enviada"
        tracking = data.get("tracking_number")
        tracking_html = f"<p>Número de seguimento: <b>{escape(tracking)}</b></p>" if tracking else ""
        body = f"<p>Olá {name},</p><p>A encomenda <b>#{escape(number)}</b> está a caminho.</p>{tracking_html}"
    elif notification_type == NotificationType.ORDER_DELIVERED:
        subject = f"Encomenda #{number} entregue"
        body = f"<p>Olá {name},</p><p>A encomenda <b>#{escape(number)}</b> foi entregue. Obrigado!</p>"
    elif notification_type == NotificationType.ORDER_REFUNDED:
        subject = f"Reembolso da encomenda #{number}"
        body = f"<p>Olá {name},</p><p>Foi emitido um reembolso de <b>{_money(data.get('amount'))}</b> " \
               f"para a encomenda <b>#{escape(number)}</b>.</p>"
    elif notification_type == NotificationType.PASSWORD_RESET:
        subject = f"Recuperar palavra-passe - {store}"
        body = f"<p>Olá {name},</p><p><a href=\"{escape(data.get('reset_url', ''))}\">Redefinir palavra-passe</a></p>"
    elif notification_type == NotificationType.STOCK_ALERT:
        subject = f"{data.get('product_name', 'Produto')} está de volta!"
        body = f"<p>Olá {name},</p><p><b>{escape(data.get('product_name', ''))}</b> voltou a estar disponível.</p>"
    elif notification_type == NotificationType.PROMOTION:
        subject = data.get("title") or f"Novidades {store}"
        body = f"<p>Olá {name},</p><p>{escape(data.get('content', ''))}</p>"
    else:
        subject = f"Atualização da sua conta - {store}"
        body = f"<p>Olá {name},</p><p>{escape(data.get('change', 'A sua conta foi atualizada.'))}</p>"

    return subject, _layout(subject, body)


async def send_notification(
    notification_type: NotificationType,
    data: Dict[str, Any],
    user_id: Optional[int] = None,
    email: Optional[str] = None) -> bool:
    """发送通知（邮件 + 站内通知），返回邮件是否发出"""
    try:
        async with db_session.SessionLocal() as db:
            user = await db.get(User, user_id) if user_id else None
            recipient = email or (user.email if user else None)
            if user is not None:
                preferences = await get_preferences(db, user.id)
                if not is_allowed(preferences, notification_type):
                    logger.info(f"🔕 用户 {user.id} 已关闭 {notification_type.value} 通知")
                    return False
                data.setdefault("name", user.name)

            subject, html = render(notification_type, data)

            if user is not None:
                db.add(Notification(
                    user_id=user.id,
                    type=notification_type.value,
                    title=subject,
                    message=data.get("summary"),
                    data={k: v for k, v in data.items() if k != "items"},
                ))
                await db.commit()

        if not recipient:
            logger.warning(f"通知 {notification_type.value} 没有收件人")
            return False
        return await email_service.send_email(recipient, subject, html)
    except Exception as e:
        logger.error(f"❌ 通知发送失败 {notification_type.value}: {e}")
        return False


async def _load_order_data(order_id: int) -> Tuple[Optional[Order], Dict[str, Any]]:
    async with db_session.SessionLocal() as db:
        result = await db.execute(
            select(Order).options(
                selectinload(Order.items).selectinload(OrderItem.product),
                selectinload(Order.user),
            ).where(Order.id == order_id)
        )
        order = result.scalar_one_or_none()
        if order is None:
            return None, {}
        data = {
            "order_number": order.order_number,
            "name": order.user.name if order.user else None,
            "subtotal": float(order.subtotal or 0),
            "discount": float(order.discount or 0),
            "tax": float(order.tax or 0),
            "shipping": float(order.shipping or 0),
            "total": float(order.total or 0),
            "tracking_number": order.tracking_number,
            "items": [
                {
                    "name": item.product.name if item.product else "Produto",
                    "quantity": item.quantity,
                    "price": float(item.price),
                }
                for item in order.items
            ],
        }
        return order, data


async def _send_for_order(order_id: int, notification_type: NotificationType, **extra) -> bool:
    try:
        order, data = await _load_order_data(order_id)
    except Exception as e:
        logger.error(f"❌ 加载订单 {order_id} 通知数据失败: {e}")
        return False
    if order is None:
        logger.warning(f"订单 {order_id} 不存在，跳过通知")
        return False
    data.update(extra)
    data["summary"] = f"#{order.order_number}"
    return await send_notification(notification_type, data, user_id=order.user_id, email=order.email)


async def send_welcome_email(user_id: int) -> bool:
    return await send_notification(NotificationType.WELCOME, {}, user_id=user_id)


async def send_order_confirmation(order_id: int) -> bool:
    return await _send_for_order(order_id, NotificationType.ORDER_CONFIRMATION)


async def send_order_shipped(order_id: int) -> bool:
    return await _send_for_order(order_id, NotificationType.ORDER_SHIPPED)


async def send_order_delivered(order_id: int) -> bool:
    return await _send_for_order(order_id, NotificationType.ORDER_DELIVERED)


async def send_order_refunded(order_id: int, amount) -> bool:
    return await _send_for_order(order_id, NotificationType.ORDER_REFUNDED, amount=float(amount))


async def send_password_reset(user_id: int, reset_url: str) -> bool:
    return await send_notification(NotificationType.PASSWORD_RESET, {"reset_url": reset_url}, user_id=user_id)


async def send_stock_alert(user_id: int, product: Product) -> bool:
    return await send_notification(
        NotificationType.STOCK_ALERT,
        {"product_name": product.name, "product_id": product.id, "summary": product.name},
        user_id=user_id,
    )


async def send_promotion(user_id: int, title: str, content: str) -> bool:
    return await send_notification(
        NotificationType.PROMOTION, {"title": title, "content": content, "summary": title}, user_id=user_id
    )


async def send_account_update(user_id: int, change: str) -> bool:
    return await send_notification(
        NotificationType.ACCOUNT_UPDATE, {"change": change, "summary": change}, user_id=user_id
    )
