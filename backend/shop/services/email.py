"""
邮件发送（Resend）
经过 email 熔断器和标准重试；未配置 RESEND_API_KEY 时只记录日志
"""

import asyncio
import logging
from typing import List, Optional, Union

import resend

from shop.core.config import settings
from shop.services.circuit_breaker import circuit_breakers
from shop.services.retry import RetryConfigs, with_retry

logger = logging.getLogger(__name__)


async def send_email(
    to: Union[str, List[str]],
    subject: str,
    html: str,
    reply_to: Optional[str] = None) -> bool:
    """发送邮件，成功返回 True；失败只记录日志"""
    recipients = [to] if isinstance(to, str) else list(to)
    if not recipients:
        return False

    if not settings.RESEND_API_KEY:
        logger.info(f"✉️ 未配置 RESEND_API_KEY，跳过邮件: {subject} → {', '.join(recipients)}")
        return False

    params = {
        "from": settings.EMAIL_FROM,
        "to": recipients,
        "subject": subject,
        "html": html,
    }
    if reply_to:
        params["reply_to"] = reply_to

    def _send():
        resend.api_key = settings.RESEND_API_KEY
        return resend.Emails.send(params)

    try:
        result = await circuit_breakers["email"].execute(
            lambda: with_retry(lambda: asyncio.to_thread(_send), RetryConfigs.standard, "email")
        )
        logger.info(f"✉️ 邮件已发送: {subject} → {', '.join(recipients)} ({(result or {}).get('id')})")
        return True
    except Exception as e:
        logger.error(f"❌ 邮件发送失败: {subject} → {', '.join(recipients)}: {e}")
        return False
