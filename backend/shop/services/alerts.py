"""
运行告警
按阈值检查系统指标，触发时推送管理员 SSE、发送邮件（HIGH/CRITICAL）并写入缓存，
指标恢复后自动解除。告警状态保存在进程内
"""

import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

import psutil
from sqlalchemy import text

from shop.core.config import settings
from shop.core.metrics import request_metrics
from shop.db import session as db_session
from shop.services import email as email_service
from shop.services.cache import cache, CacheTTL
from shop.services.notification_hub import notification_hub

logger = logging.getLogger(__name__)

SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
EMAIL_SEVERITIES = ("HIGH", "CRITICAL")
MAX_HISTORY = 100


@dataclass
class AlertConfig:
    name: str
    description: str
    threshold: float
    severity: str
    enabled: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Alert:
    name: str
    severity: str
    message: str
    value: float
    threshold: float
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    triggered_at: datetime = field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.resolved_at is None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "severity": self.severity,
            "message": self.message,
            "value": self.value,
            "threshold": self.threshold,
            "triggered_at": self.triggered_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "active": self.active,
        }


def default_configs() -> List[AlertConfig]:
    # redis / 核心服务：值为 1 表示故障，阈值 0
    return [
        AlertConfig("high_memory_usage", "内存使用率超过 85%", 85, "HIGH"),
        AlertConfig("database_response_slow", "数据库响应超过 1000ms", 1000, "MEDIUM"),
        AlertConfig("high_error_rate", "错误率超过 5%", 5, "HIGH"),
        AlertConfig("redis_connection_failed", "Redis 连接失败", 0, "MEDIUM"),
        AlertConfig("critical_service_down", "核心服务不可用", 0, "CRITICAL"),
    ]


class AlertManager:
    def __init__(self, configs: Optional[List[AlertConfig]] = None):
        self.configs: Dict[str, AlertConfig] = {}
        self.active: Dict[str, Alert] = {}
        self.history: Deque[Alert] = deque(maxlen=MAX_HISTORY)
        for config in configs or default_configs():
            self.configs[config.name] = config

    def reset(self) -> None:
        self.configs = {c.name: c for c in default_configs()}
        self.active.clear()
        self.history.clear()

    async def check_metric(self, name: str, value: float) -> Optional[Alert]:
        """检查指标：超过阈值触发告警（同名告警只触发一次），恢复后解除"""
        config = self.configs.get(name)
        if config is None:
            logger.warning(f"未知的告警指标: {name}")
            return None
        if not config.enabled:
            return None

        if value > config.threshold:
            if name in self.active:
                return self.active[name]
            alert = Alert(
                name=name,
                severity=config.severity,
                message=f"{config.description}（当前值 {round(value, 2)}）",
                value=round(float(value), 2),
                threshold=config.threshold,
            )
            self.active[name] = alert
            self.history.append(alert)
            await self._notify(alert)
            return alert

        if name in self.active:
            self.resolve(name)
        return None

    async def _notify(self, alert: Alert) -> None:
        logger.warning(f"🚨 告警 [{alert.severity}] {alert.name}: {alert.message}")
        notification_hub.publish(
            "admin_alert", f"Alerta {alert.severity}", alert.message,
            data=alert.as_dict(), admin_only=True,
        )
        if alert.severity in EMAIL_SEVERITIES and settings.ADMIN_EMAIL:
            await email_service.send_email(
                settings.ADMIN_EMAIL,
                f"[{settings.STORE_NAME}] Alerta {alert.severity}: {alert.name}",
                f"<p>{alert.message}</p><p>{alert.triggered_at.isoformat()}</p>",
            )
        await cache.set(f"alert:{alert.id}", alert.as_dict(), CacheTTL.DAY)

    def resolve(self, name: str) -> bool:
        alert = self.active.pop(name, None)
        if alert is None:
            return False
        alert.resolved_at = datetime.utcnow()
        logger.info(f"✅ 告警解除: {name}")
        return True

    def get_active_alerts(self) -> List[Dict[str, Any]]:
        return [a.as_dict() for a in self.active.values()]

    def get_alert_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        return [a.as_dict() for a in reversed(self.history)][:limit]

    def get_configs(self) -> List[Dict[str, Any]]:
        return [c.as_dict() for c in self.configs.values()]

    def enable(self, name: str) -> bool:
        config = self.configs.get(name)
        if config is None:
            return False
        config.enabled = True
        return True

    def disable(self, name: str) -> bool:
        config = self.configs.get(name)
        if config is None:
            return False
        config.enabled = False
        self.resolve(name)
        return True

    def configure(
        self,
        name: str,
        threshold: Optional[float] = None,
        severity: Optional[str] = None,
        enabled: Optional[bool] = None) -> Optional[AlertConfig]:
        config = self.configs.get(name)
        if config is None:
            return None
        if severity is not None:
            if severity not in SEVERITIES:
                raise ValueError(f"无效的告警级别: {severity}")
            config.severity = severity
        if threshold is not None:
            config.threshold = threshold
        if enabled is not None:
            config.enabled = enabled
        logger.info(f"⚙️ 告警配置已更新: {config.as_dict()}")
        return config


alert_manager = AlertManager()


async def measure_database_latency() -> float:
    """执行 SELECT 1，返回耗时（毫秒）"""
    start = time.perf_counter()
    async with db_session.SessionLocal() as session:
        await session.execute(text("SELECT 1"))
    return (time.perf_counter() - start) * 1000


async def evaluate_system_alerts() -> Dict[str, float]:
    """采样系统指标并逐项检查（定时任务调用）"""
    metrics: Dict[str, float] = {"high_memory_usage": psutil.virtual_memory().percent}

    try:
        metrics["database_response_slow"] = await measure_database_latency()
        metrics["critical_service_down"] = 0
    except Exception as e:
        logger.error(f"❌ 数据库检查失败: {e}")
        metrics["critical_service_down"] = 1

    metrics["high_error_rate"] = request_metrics.error_rate

    if cache.enabled:
        try:
            await cache.ping()
            metrics["redis_connection_failed"] = 0
        except Exception as e:
            logger.error(f"❌ Redis 检查失败: {e}")
            metrics["redis_connection_failed"] = 1

    for name, value in metrics.items():
        await alert_manager.check_metric(name, value)
    return metrics
