"""监控信号摄取测试。"""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from netwatch.core.executor import AsyncExecutionPool
from netwatch.models.alert import Alert, AlertSeverity, AlertType, SourceType
from netwatch.services.event_publisher import AlertEventType
from netwatch.services.monitoring import (
    DeviceProbeResult,
    MonitoringIngestor,
    TrapSeverity,
    TrapSignal,
    TrapType,
    map_trap_severity,
    map_trap_type,
    trap_message,
)


@pytest.fixture
def fanout():
    return AsyncMock()


@pytest.fixture
async def pool():
    p = AsyncExecutionPool(name="monitoring-test", core_size=1, max_size=1, queue_capacity=4)
    p.start()
    yield p
    await p.shutdown(timeout=0.1)


@pytest.fixture
def ingestor(session_factory, publisher, fanout, pool) -> MonitoringIngestor:
    return MonitoringIngestor(session_factory, publisher, fanout, pool)


async def _alerts(session_factory):
    async with session_factory() as db:
        return (await db.execute(select(Alert).order_by(Alert.id))).scalars().all()


def _probe(**overrides) -> DeviceProbeResult:
    values = dict(
        device_id=42, device_name="R1", address="10.0.0.1",
        reachable=True, response_time_ms=12, snmp_reachable=True,
    )
    values.update(overrides)
    return DeviceProbeResult(**values)


class TestProbeIngestion:
    async def test_unreachable_device(self, ingestor, session_factory, fanout, publisher, user):
        await ingestor.ingest_probe(_probe(reachable=False, response_time_ms=None), user)

        alerts = await _alerts(session_factory)
        assert len(alerts) == 1
        assert alerts[0].type == AlertType.DEVICE_DOWN.value
        assert alerts[0].severity == AlertSeverity.CRITICAL.value
        assert alerts[0].title == "Device Down"
        assert alerts[0].description == "Device R1 (10.0.0.1) is not responding to ping"
        fanout.send_device_status_update.assert_awaited_once_with(42, "DOWN", user.id)
        assert [e.event_type for e in publisher.events] == [AlertEventType.NEW_ALERT]

    async def test_healthy_device(self, ingestor, session_factory, fanout, user):
        await ingestor.ingest_probe(_probe(), user)

        assert await _alerts(session_factory) == []
        fanout.send_device_status_update.assert_awaited_once_with(42, "UP", user.id)

    async def test_degraded_device(self, ingestor, session_factory, fanout, user):
        await ingestor.ingest_probe(
            _probe(response_time_ms=1500, snmp_reachable=False, down_interfaces=["3"]), user,
        )

        alerts = await _alerts(session_factory)
        assert [(a.type, a.title) for a in alerts] == [
            (AlertType.PERFORMANCE.value, "Slow Response"),
            (AlertType.CONNECTIVITY.value, "SNMP Unreachable"),
            (AlertType.INTERFACE_DOWN.value, "Interface Down"),
        ]
        assert all(a.severity == AlertSeverity.WARNING.value for a in alerts)
        assert alerts[0].description == "Device R1 (10.0.0.1) has slow response time: 1500 ms"
        assert alerts[2].source_type == SourceType.INTERFACE.value
        assert alerts[2].source_name == "R1 Interface 3"
        fanout.send_device_status_update.assert_awaited_once_with(42, "UP", user.id)

    async def test_threshold_is_exclusive(self, ingestor, session_factory, user):
        await ingestor.ingest_probe(_probe(response_time_ms=1000), user)
        assert await _alerts(session_factory) == []

    async def test_snmp_not_enabled(self, ingestor, session_factory, user):
        await ingestor.ingest_probe(_probe(snmp_reachable=None), user)
        assert await _alerts(session_factory) == []

    async def test_submit_probe_runs_on_pool(self, ingestor, pool, session_factory, user):
        assert ingestor.submit_probe(_probe(reachable=False), user) is True
        await pool.join()
        assert len(await _alerts(session_factory)) == 1

    async def test_submit_rejected_when_pool_stopped(self, session_factory, publisher, fanout, user, caplog):
        stopped = AsyncExecutionPool(core_size=1, max_size=1, queue_capacity=1)
        ingestor = MonitoringIngestor(session_factory, publisher, fanout, stopped)

        assert ingestor.submit_probe(_probe(), user) is False
        assert "lost: rejected by execution pool" in caplog.text


class TestTrapIngestion:
    @pytest.mark.parametrize("trap_type,expected", [
        (TrapType.COLD_START, AlertType.SYSTEM_UP),
        (TrapType.SYSTEM_RESTART, AlertType.SYSTEM_UP),
        (TrapType.LINK_DOWN, AlertType.INTERFACE_DOWN),
        (TrapType.INTERFACE_UP, AlertType.INTERFACE_UP),
        (TrapType.AUTHENTICATION_FAILURE, AlertType.CONNECTIVITY),
        (TrapType.FAN_FAILURE, AlertType.SYSTEM_DOWN),
        (TrapType.CPU_HIGH, AlertType.PERFORMANCE),
        (TrapType.CONFIGURATION_CHANGE, AlertType.CONFIGURATION_CHANGED),
        (TrapType.THRESHOLD_EXCEEDED, AlertType.THRESHOLD_BREACH),
        (TrapType.DISK_FULL, AlertType.CONNECTIVITY),
        (TrapType.UNKNOWN, AlertType.CONNECTIVITY),
    ])
    def test_type_mapping(self, trap_type, expected):
        assert map_trap_type(trap_type) is expected

    @pytest.mark.parametrize("severity,expected", [
        (TrapSeverity.CRITICAL, AlertSeverity.CRITICAL),
        (TrapSeverity.MAJOR, AlertSeverity.SEVERE),
        (TrapSeverity.MINOR, AlertSeverity.WARNING),
        (TrapSeverity.WARNING, AlertSeverity.WARNING),
        (TrapSeverity.INFO, AlertSeverity.INFO),
        (TrapSeverity.CLEARED, AlertSeverity.INFO),
    ])
    def test_severity_mapping(self, severity, expected):
        assert map_trap_severity(severity) is expected

    def test_generated_message(self):
        trap = TrapSignal(TrapType.LINK_DOWN, TrapSeverity.MAJOR, "10.0.0.1")
        assert trap_message(trap) == "Network link down from device 10.0.0.1"
        assert trap_message(TrapSignal(TrapType.LINK_DOWN, TrapSeverity.MAJOR, "10.0.0.1", "custom")) == "custom"

    async def test_trap_creates_alert(self, ingestor, session_factory, user):
        trap = TrapSignal(TrapType.LINK_DOWN, TrapSeverity.MAJOR, "10.0.0.1", device_id=42)

        await ingestor.ingest_trap(trap, user)

        alerts = await _alerts(session_factory)
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.title == "SNMP Trap: LINK_DOWN"
        assert alert.type == AlertType.INTERFACE_DOWN.value
        assert alert.severity == AlertSeverity.SEVERE.value
        assert alert.source_type == SourceType.DEVICE.value
        assert alert.source_name == "10.0.0.1"
        assert alert.alert_key == "INTERFACE_DOWN|DEVICE|42|SEVERE"

    async def test_trap_without_device(self, ingestor, session_factory, user):
        await ingestor.ingest_trap(TrapSignal(TrapType.CPU_HIGH, TrapSeverity.WARNING, "10.0.0.9"), user)
        alerts = await _alerts(session_factory)
        assert alerts[0].source_id is None
        assert alerts[0].alert_key == "PERFORMANCE|DEVICE|none|WARNING"

    async def test_cleared_trap_is_ignored(self, ingestor, session_factory, publisher, user):
        await ingestor.ingest_trap(TrapSignal(TrapType.LINK_UP, TrapSeverity.CLEARED, "10.0.0.1"), user)
        assert await _alerts(session_factory) == []
        assert publisher.events == []

    async def test_submit_trap(self, ingestor, pool, session_factory, user):
        assert ingestor.submit_trap(TrapSignal(TrapType.DEVICE_DOWN, TrapSeverity.CRITICAL, "10.0.0.1", device_id=1), user)
        await pool.join()
        assert len(await _alerts(session_factory)) == 1
