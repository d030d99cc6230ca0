"""
接口限流（固定窗口，进程内计数）
"""

import logging
import time
from typing import Dict, List, Tuple

from fastapi import Request, Response

from shop.services import audit_logger
from shop.services.audit_logger import AuditEventType, AuditSeverity

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    def __init__(self, limit: int, retry_after: int, reset_time: float):
        self.limit = limit
        self.retry_after = retry_after
        self.reset_time = reset_time
        super().__init__("请求过于频繁")

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(int(self.reset_time)),
            "Retry-After": str(self.retry_after),
        }


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    real_ip = request.headers.get("x-real-ip")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    elif real_ip:
        ip = real_ip
    else:
        ip = request.client.host if request.client else "unknown"
    return f"ip:{ip}"


class RateLimiter:
    # 计数表超过该大小时清理已过期窗口
    SWEEP_THRESHOLD = 10000

    def __init__(self, name: str, max_requests: int, window_seconds: int):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        # key -> [次数, 窗口结束时间]
        self._store: Dict[str, List[float]] = {}

    def sweep(self, now: float = None) -> int:
        """删除窗口已结束的计数，返回删除数量"""
        now = now or time.time()
        expired = [key for key, entry in self._store.items() if now > entry[1]]
        for key in expired:
            del self._store[key]
        if expired:
            logger.debug(f"🧹 限流计数清理 [{self.name}]: {len(expired)} 条")
        return len(expired)

    def hit(self, key: str, now: float = None) -> Tuple[bool, int, float]:
        """计数一次，返回 (是否放行, 剩余次数, 窗口结束时间)"""
        now = now or time.time()
        if len(self._store) >= self.SWEEP_THRESHOLD:
            self.sweep(now)
        entry = self._store.get(key)
        if entry is None or now > entry[1]:
            entry = [0, now + self.window_seconds]
            self._store[key] = entry
        entry[0] += 1
        remaining = max(0, self.max_requests - int(entry[0]))
        return entry[0] <= self.max_requests, remaining, entry[1]

    def reset(self) -> None:
        self._store.clear()

    async def __call__(self, request: Request, response: Response) -> None:
        key = f"{self.name}:{client_identifier(request)}"
        now = time.time()
        allowed, remaining, reset_time = self.hit(key, now)
        if not allowed:
            retry_after = max(1, int(reset_time - now + 0.999))
            logger.warning(f"🚦 限流触发 [{self.name}] {key}")
            await audit_logger.log_event(
                AuditEventType.RATE_LIMIT_EXCEEDED, "api", f"{request.method} {request.url.path}",
                severity=AuditSeverity.MEDIUM, success=False,
                details={"limiter": self.name, "limit": self.max_requests},
                request=request,
            )
            raise RateLimitExceeded(self.max_requests, retry_after, reset_time)

        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(int(reset_time))


# 登录/注册：每 IP 15 分钟 10 次
auth_rate_limit = RateLimiter("auth", max_requests=10, window_seconds=15 * 60)
# 优惠券尝试：每 IP 每分钟 30 次
coupon_rate_limit = RateLimiter("coupon", max_requests=30, window_seconds=60)
