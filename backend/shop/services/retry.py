"""
重试工具
指数退避 + 随机抖动，只用于外部调用（Stripe、邮件、数据库连接）
"""

import asyncio
import errno
import functools
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

NETWORK_ERROR_CODES = {"ECONNREFUSED", "ETIMEDOUT", "ENOTFOUND", "ECONNRESET"}


class RetryableError(Exception):
    """明确可重试的错误"""


class NonRetryableError(Exception):
    """明确不可重试的错误（如参数错误、卡被拒）"""


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0  # 秒
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: bool = True
    retry_condition: Optional[Callable[[Exception], bool]] = None


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """第 attempt 次失败后的等待时间（attempt 从 1 开始）"""
    delay = min(config.base_delay * (config.backoff_factor ** (attempt - 1)), config.max_delay)
    if config.jitter:
        # ±25% 抖动
        delay += delay * 0.25 * (random.random() * 2 - 1)
    return max(0.0, delay)


def should_retry(error: Exception, config: RetryConfig) -> bool:
    if isinstance(error, NonRetryableError):
        return False
    if isinstance(error, RetryableError):
        return True
    if config.retry_condition is not None:
        return config.retry_condition(error)
    return True


async def with_retry(
    fn: Callable[[], Awaitable[Any]],
    config: Optional[RetryConfig] = None,
    context: str = "") -> Any:
    """执行异步调用，失败时按配置重试，最终失败抛出最后一次的异常"""
    config = config or RetryConfig()
    label = f"[{context}] " if context else ""

    attempt = 0
    while True:
        attempt += 1
        try:
            result = await fn()
            if attempt > 1:
                logger.info(f"✅ {label}第 {attempt} 次尝试成功")
            return result
        except Exception as e:
            if attempt >= config.max_attempts or not should_retry(e, config):
                logger.error(f"❌ {label}调用失败（共尝试 {attempt} 次）: {e}")
                raise
            delay = calculate_delay(attempt, config)
            logger.warning(
                f"🔁 {label}第 {attempt}/{config.max_attempts} 次失败: {e}，{delay:.2f} 秒后重试"
            )
            await asyncio.sleep(delay)


def retryable(config: Optional[RetryConfig] = None, context: str = ""):
    """装饰器形式的 with_retry"""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await with_retry(lambda: func(*args, **kwargs), config, context or func.__name__)
        return wrapper
    return decorator


def _error_code(error: Exception) -> Optional[str]:
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code
    errno_value = getattr(error, "errno", None)
    if isinstance(errno_value, int):
        return errno.errorcode.get(errno_value)
    return None


def _class_names(error: Exception) -> set:
    return {cls.__name__ for cls in type(error).__mro__}


class RetryConditions:
    """常用重试条件"""

    @staticmethod
    def network_errors(error: Exception) -> bool:
        if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
            return True
        if _class_names(error) & {"APIConnectionError", "ConnectError", "ConnectTimeout",
                                  "ReadTimeout", "Timeout"}:
            return True
        return _error_code(error) in NETWORK_ERROR_CODES

    @staticmethod
    def http_errors(error: Exception) -> bool:
        status = (
            getattr(error, "http_status", None)
            or getattr(error, "status_code", None)
            or getattr(error, "status", None)
        )
        if not isinstance(status, int):
            return False
        return status >= 500 or status in (429, 408)

    @staticmethod
    def database_errors(error: Exception) -> bool:
        if _class_names(error) & {"OperationalError", "DisconnectionError", "InterfaceError"}:
            return True
        return RetryConditions.network_errors(error)

    @staticmethod
    def any_of(*conditions: Callable[[Exception], bool]) -> Callable[[Exception], bool]:
        def check(error: Exception) -> bool:
            return any(condition(error) for condition in conditions)
        return check


class RetryConfigs:
    """预设重试配置"""

    fast = RetryConfig(max_attempts=2, base_delay=0.5, max_delay=2.0)
    standard = RetryConfig(max_attempts=3, base_delay=1.0, max_delay=10.0)
    aggressive = RetryConfig(max_attempts=5, base_delay=1.0, max_delay=30.0)
    network = RetryConfig(
        max_attempts=3, base_delay=1.0, max_delay=10.0,
        retry_condition=RetryConditions.any_of(
            RetryConditions.network_errors, RetryConditions.http_errors))
    database = RetryConfig(
        max_attempts=3, base_delay=0.5, max_delay=5.0,
        retry_condition=RetryConditions.database_errors)
