import pytest

from shop.services.circuit_breaker import (
    CircuitBreaker, CircuitBreakerOpenError, CircuitState, circuit_breakers, get_all_circuit_breaker_stats
)


async def _fail():
    raise ConnectionError("ECONNREFUSED")


async def _ok():
    return "ok"


async def test_opens_after_threshold():
    breaker = CircuitBreaker("test", failure_threshold=2, recovery_timeout=60, expected_errors=())
    for _ in range(2):
        with pytest.raises(ConnectionError):
            await breaker.execute(_fail)
    assert breaker.state == CircuitState.OPEN

    with pytest.raises(CircuitBreakerOpenError):
        await breaker.execute(_ok)


async def test_half_open_success_closes():
    breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=0, expected_errors=())
    with pytest.raises(ConnectionError):
        await breaker.execute(_fail)
    assert breaker.state == CircuitState.OPEN

    assert await breaker.execute(_ok) == "ok"
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


async def test_half_open_failure_reopens():
    breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=0, expected_errors=())
    with pytest.raises(ConnectionError):
        await breaker.execute(_fail)
    with pytest.raises(ConnectionError):
        await breaker.execute(_fail)
    assert breaker.state == CircuitState.OPEN


async def test_unexpected_errors_do_not_count():
    breaker = CircuitBreaker("test", failure_threshold=1, expected_errors=("ECONNREFUSED",))

    async def bad_request():
        raise ValueError("dados inválidos")

    with pytest.raises(ValueError):
        await breaker.execute(bad_request)
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0

    with pytest.raises(ConnectionError):
        await breaker.execute(_fail)
    assert breaker.state == CircuitState.OPEN


def test_force_open_close_and_stats():
    breaker = CircuitBreaker("test")
    breaker.force_open()
    stats = breaker.get_stats()
    assert stats["state"] == "OPEN"
    assert stats["next_attempt"] is not None

    breaker.force_close()
    assert breaker.get_stats()["state"] == "CLOSED"
    assert breaker.get_stats()["next_attempt"] is None


def test_registry_contains_external_services():
    assert set(circuit_breakers) == {"stripe", "email", "database", "redis"}
    stats = get_all_circuit_breaker_stats()
    assert all(s["state"] == "CLOSED" for s in stats.values())
