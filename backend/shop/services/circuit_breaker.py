"""
熔断器服务
外部依赖（Stripe、邮件、数据库、Redis）连续失败时短路调用，避免雪崩

状态：
- CLOSED: 正常放行，统计失败次数
- OPEN: 拒绝调用，直到恢复时间到达
- HALF_OPEN: 放行一次试探调用，成功则关闭，失败则重新打开

熔断状态只保存在当前进程内
"""

import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple, Union

logger = logging.getLogger(__name__)

ExpectedError = Union[str, type]


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerOpenError(Exception):
    """熔断器打开时抛出"""

    def __init__(self, name: str, next_attempt: Optional[float] = None):
        self.name = name
        self.next_attempt = next_attempt
        super().__init__(f"熔断器 {name} 已打开，暂停调用")


DEFAULT_EXPECTED_ERRORS: Tuple[str, ...] = ("ECONNREFUSED", "ETIMEDOUT", "ENOTFOUND")


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        monitoring_period: float = 60.0,
        expected_errors: Optional[Iterable[ExpectedError]] = DEFAULT_EXPECTED_ERRORS):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.monitoring_period = monitoring_period
        self.expected_errors: Tuple[ExpectedError, ...] = tuple(expected_errors or ())

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.next_attempt: float = 0.0

    async def execute(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        """通过熔断器执行异步调用"""
        if self.state == CircuitState.OPEN:
            if time.time() < self.next_attempt:
                raise CircuitBreakerOpenError(self.name, self.next_attempt)
            self.state = CircuitState.HALF_OPEN
            logger.info(f"🔌 熔断器 {self.name} 进入半开状态，尝试恢复")

        try:
            result = await fn()
        except Exception as e:
            self.on_failure(e)
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        self.failure_count = 0
        self.success_count += 1
        if self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.CLOSED
            logger.info(f"✅ 熔断器 {self.name} 已恢复（CLOSED）")

    def on_failure(self, error: Exception) -> None:
        if not self.is_expected_error(error):
            return

        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == CircuitState.HALF_OPEN:
            self._open()
        elif self.failure_count >= self.failure_threshold:
            self._open()

    def is_expected_error(self, error: Exception) -> bool:
        """判断异常是否计入失败次数（未配置时全部计入）"""
        if not self.expected_errors:
            return True

        message = str(error)
        code = getattr(error, "code", None)
        class_names = {cls.__name__ for cls in type(error).__mro__}
        for expected in self.expected_errors:
            if isinstance(expected, type):
                if isinstance(error, expected):
                    return True
            elif expected in message or code == expected or expected in class_names:
                return True
        return False

    def _open(self) -> None:
        self.state = CircuitState.OPEN
        self.next_attempt = time.time() + self.recovery_timeout
        logger.warning(
            f"🔴 熔断器 {self.name} 已打开: 连续失败 {self.failure_count} 次，"
            f"{self.recovery_timeout:.0f} 秒后重试"
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
            "last_failure_time": self.last_failure_time,
            "next_attempt": self.next_attempt if self.state == CircuitState.OPEN else None,
        }

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None
        self.next_attempt = 0.0
        logger.info(f"🔄 熔断器 {self.name} 已重置")

    def force_open(self) -> None:
        self.state = CircuitState.OPEN
        self.next_attempt = time.time() + self.recovery_timeout
        logger.warning(f"🔴 熔断器 {self.name} 被手动打开")

    def force_close(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        logger.info(f"🟢 熔断器 {self.name} 被手动关闭")


# 各外部服务的熔断器
circuit_breakers: Dict[str, CircuitBreaker] = {
    "stripe": CircuitBreaker(
        "stripe", failure_threshold=3, recovery_timeout=20.0,
        expected_errors=("APIConnectionError", "APIError", "RateLimitError",
                         "ECONNREFUSED", "ETIMEDOUT", "ENOTFOUND")),
    "email": CircuitBreaker(
        "email", failure_threshold=5, recovery_timeout=30.0, expected_errors=()),
    "database": CircuitBreaker(
        "database", failure_threshold=3, recovery_timeout=10.0,
        expected_errors=("OperationalError", "InterfaceError", "ConnectionError", "TimeoutError")),
    "redis": CircuitBreaker(
        "redis", failure_threshold=5, recovery_timeout=15.0,
        expected_errors=("ConnectionError", "TimeoutError", "ECONNREFUSED")),
}


def get_circuit_breaker(name: str) -> Optional[CircuitBreaker]:
    return circuit_breakers.get(name)


def get_all_circuit_breaker_stats() -> Dict[str, Dict[str, Any]]:
    return {name: breaker.get_stats() for name, breaker in circuit_breakers.items()}


def reset_all_circuit_breakers() -> None:
    for breaker in circuit_breakers.values():
        breaker.reset()
