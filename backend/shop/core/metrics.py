"""
请求指标
由 HTTP 中间件累计请求数、错误数和耗时，供 /api/metrics 和告警检查使用
"""

import time
from typing import Any, Dict

from fastapi import Request

STARTED_AT = time.time()


class RequestMetrics:
    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.request_count = 0
        self.error_count = 0
        self.total_duration_ms = 0.0
        self.status_counts: Dict[int, int] = {}

    def record(self, status_code: int, duration_ms: float) -> None:
        self.request_count += 1
        self.total_duration_ms += duration_ms
        self.status_counts[status_code] = self.status_counts.get(status_code, 0) + 1
        if status_code >= 500:
            self.error_count += 1

    @property
    def error_rate(self) -> float:
        """错误率（百分比）"""
        if not self.request_count:
            return 0.0
        return self.error_count / self.request_count * 100

    @property
    def average_duration_ms(self) -> float:
        if not self.request_count:
            return 0.0
        return self.total_duration_ms / self.request_count

    def snapshot(self) -> Dict[str, Any]:
        return {
            "requests": self.request_count,
            "errors": self.error_count,
            "error_rate": round(self.error_rate, 2),
            "average_duration_ms": round(self.average_duration_ms, 2),
            "status_codes": {str(k): v for k, v in sorted(self.status_counts.items())},
            "uptime_seconds": round(time.time() - STARTED_AT, 1),
        }


request_metrics = RequestMetrics()


async def metrics_middleware(request: Request, call_next):
    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        request_metrics.record(500, (time.perf_counter() - start) * 1000)
        raise
    duration_ms = (time.perf_counter() - start) * 1000
    request_metrics.record(response.status_code, duration_ms)
    response.headers["X-Response-Time"] = f"{duration_ms:.1f}ms"
    return response
