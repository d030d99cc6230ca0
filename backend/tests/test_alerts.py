import pytest

from shop.services.alerts import MAX_HISTORY, AlertManager, evaluate_system_alerts
from shop.services.notification_hub import notification_hub


async def test_alert_triggers_once_and_resolves():
    manager = AlertManager()
    admin = notification_hub.connect(user_id=1, is_admin=True)
    admin.queue.get_nowait()

    alert = await manager.check_metric("high_error_rate", 12.5)
    assert alert is not None
    assert alert.severity == "HIGH"
    assert await manager.check_metric("high_error_rate", 20) is alert
    assert admin.queue.qsize() == 1

    assert await manager.check_metric("high_error_rate", 1) is None
    assert manager.get_active_alerts() == []
    assert manager.get_alert_history()[0]["resolved_at"] is not None


async def test_threshold_is_exclusive():
    manager = AlertManager()
    assert await manager.check_metric("high_memory_usage", 85) is None
    assert await manager.check_metric("high_memory_usage", 85.1) is not None


async def test_disabled_and_unknown_metrics():
    manager = AlertManager()
    manager.disable("high_error_rate")
    assert await manager.check_metric("high_error_rate", 99) is None
    assert await manager.check_metric("no_such_metric", 1) is None


async def test_history_is_bounded():
    manager = AlertManager()
    for _ in range(MAX_HISTORY + 20):
        await manager.check_metric("redis_connection_failed", 1)
        await manager.check_metric("redis_connection_failed", 0)
    assert len(manager.history) == MAX_HISTORY


def test_configure_validates_severity():
    manager = AlertManager()
    with pytest.raises(ValueError):
        manager.configure("high_error_rate", severity="URGENT")
    config = manager.configure("high_error_rate", threshold=10, severity="CRITICAL")
    assert config.threshold == 10
    assert config.severity == "CRITICAL"
    assert manager.configure("no_such_metric", threshold=1) is None


async def test_evaluate_system_alerts_samples_metrics():
    metrics = await evaluate_system_alerts()
    assert metrics["critical_service_down"] == 0
    assert metrics["redis_connection_failed"] == 0
    assert "high_memory_usage" in metrics
