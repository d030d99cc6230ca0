import errno

import pytest

from shop.services.retry import (
    NonRetryableError, RetryConditions, RetryConfig, calculate_delay, retryable, with_retry
)

NO_WAIT = RetryConfig(max_attempts=3, base_delay=0, jitter=False)


def test_calculate_delay_exponential_and_capped():
    config = RetryConfig(base_delay=1.0, backoff_factor=2.0, max_delay=5.0, jitter=False)
    assert calculate_delay(1, config) == 1.0
    assert calculate_delay(2, config) == 2.0
    assert calculate_delay(3, config) == 4.0
    assert calculate_delay(4, config) == 5.0


def test_calculate_delay_jitter_within_quarter():
    config = RetryConfig(base_delay=4.0, jitter=True)
    for _ in range(50):
        assert 3.0 <= calculate_delay(1, config) <= 5.0


async def test_with_retry_succeeds_after_failures():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("ECONNREFUSED")
        return "ok"

    assert await with_retry(flaky, NO_WAIT, "flaky") == "ok"
    assert len(attempts) == 3


async def test_with_retry_raises_last_error():
    attempts = []

    async def always_fails():
        attempts.append(1)
        raise ConnectionError(f"falha {len(attempts)}")

    with pytest.raises(ConnectionError, match="falha 3"):
        await with_retry(always_fails, NO_WAIT)
    assert len(attempts) == 3


async def test_non_retryable_error_stops_immediately():
    attempts = []

    async def declined():
        attempts.append(1)
        raise NonRetryableError("cartão recusado")

    with pytest.raises(NonRetryableError):
        await with_retry(declined, NO_WAIT)
    assert len(attempts) == 1


async def test_retry_condition_filters_errors():
    attempts = []
    config = RetryConfig(max_attempts=5, base_delay=0, jitter=False,
                         retry_condition=RetryConditions.network_errors)

    async def bad_input():
        attempts.append(1)
        raise ValueError("parâmetro inválido")

    with pytest.raises(ValueError):
        await with_retry(bad_input, config)
    assert len(attempts) == 1


async def test_retryable_decorator():
    calls = []

    @retryable(NO_WAIT)
    async def fetch(value):
        calls.append(value)
        if len(calls) == 1:
            raise TimeoutError()
        return value * 2

    assert await fetch(21) == 42
    assert calls == [21, 21]


def test_network_error_conditions():
    assert RetryConditions.network_errors(ConnectionError())
    assert RetryConditions.network_errors(OSError(errno.ECONNREFUSED, "refused"))
    assert not RetryConditions.network_errors(ValueError("x"))


def test_http_error_conditions():
    class HttpError(Exception):
        def __init__(self, status_code):
            self.status_code = status_code

    assert RetryConditions.http_errors(HttpError(503))
    assert RetryConditions.http_errors(HttpError(429))
    assert not RetryConditions.http_errors(HttpError(404))
    assert not RetryConditions.http_errors(ValueError())
