"""健康检查、就绪检查与运行指标"""
import logging
import os
import time
from datetime import datetime
from typing import Any, Dict

import psutil
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from shop.core.config import settings
from shop.core.metrics import request_metrics, STARTED_AT
from shop.services.alerts import measure_database_latency
from shop.services.cache import cache
from shop.services.circuit_breaker import get_all_circuit_breaker_stats

logger = logging.getLogger(__name__)

router = APIRouter()

MEMORY_UNHEALTHY_PERCENT = 90
MEMORY_DEGRADED_PERCENT = 75


async def check_database() -> Dict[str, Any]:
    try:
        latency = await measure_database_latency()
    except Exception as e:
        logger.error(f"❌ 健康检查：数据库不可用: {e}")
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy", "response_time_ms": round(latency, 2)}


async def check_redis() -> Dict[str, Any]:
    if not cache.enabled:
        return {"status": "healthy", "message": "not configured"}
    start = time.perf_counter()
    try:
        await cache.ping()
    except Exception as e:
        logger.error(f"❌ 健康检查：Redis 不可用: {e}")
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy", "response_time_ms": round((time.perf_counter() - start) * 1000, 2)}


def check_memory() -> Dict[str, Any]:
    memory = psutil.virtual_memory()
    if memory.percent > MEMORY_UNHEALTHY_PERCENT:
        status = "unhealthy"
    elif memory.percent > MEMORY_DEGRADED_PERCENT:
        status = "degraded"
    else:
        status = "healthy"
    return {
        "status": status,
        "percent": memory.percent,
        "used_mb": round(memory.used / 1024 / 1024, 1),
        "total_mb": round(memory.total / 1024 / 1024, 1),
    }


def overall_status(checks: Dict[str, Dict[str, Any]]) -> str:
    statuses = {c["status"] for c in checks.values()}
    if "unhealthy" in statuses:
        return "unhealthy"
    if "degraded" in statuses:
        return "degraded"
    return "healthy"


@router.get("/health")
async def health_check() -> Any:
    """综合健康检查：unhealthy 返回 503"""
    checks = {
        "database": await check_database(),
        "redis": await check_redis(),
        "memory": check_memory(),
    }
    status = overall_status(checks)
    body = {
        "status": status,
        "timestamp": datetime.utcnow().isoformat(),
        "uptime": round(time.time() - STARTED_AT, 1),
        "version": settings.VERSION,
        "checks": checks,
    }
    return JSONResponse(status_code=503 if status == "unhealthy" else 200, content=body)


@router.get("/ready")
async def readiness_check() -> Any:
    """就绪检查：数据库可连接且必需的环境变量齐全"""
    missing = [name for name in settings.REQUIRED_ENV_VARS if not os.getenv(name)]
    database = await check_database()
    if missing or database["status"] != "healthy":
        return JSONResponse(status_code=503, content={
            "ready": False,
            "missing_env": missing,
            "database": database["status"],
        })
    return {"ready": True}


@router.get("/metrics")
async def get_metrics() -> Any:
    """请求计数、错误率、平均耗时与熔断器状态"""
    return {
        **request_metrics.snapshot(),
        "circuit_breakers": get_all_circuit_breaker_stats(),
        "timestamp": datetime.utcnow().isoformat(),
    }
