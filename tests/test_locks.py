"""按键串行化锁测试。"""
import asyncio

import pytest
from redis.exceptions import LockError

from netwatch.core import locks as locks_module
from netwatch.core.locks import KeyedLock, RedisKeyedLock, build_correlation_lock
from netwatch.models.alert import AlertSeverity, AlertType, SourceType
from netwatch.services.alert_correlator import AlertCorrelator
from netwatch.services.event_publisher import AlertEventType


class TestKeyedLock:
    async def test_same_key_is_serialized(self):
        lock = KeyedLock()
        order = []

        async def critical(name):
            async with lock.hold("1:DEVICE_DOWN|DEVICE|42|CRITICAL"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(critical("a"), critical("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    async def test_different_keys_do_not_block(self):
        lock = KeyedLock()
        entered = asyncio.Event()

        async def holder():
            async with lock.hold("k1"):
                await asyncio.wait_for(entered.wait(), timeout=1)

        async def other():
            async with lock.hold("k2"):
                entered.set()

        await asyncio.gather(holder(), other())

    async def test_released_keys_are_dropped(self):
        lock = KeyedLock()
        async with lock.hold("k"):
            assert len(lock) == 1
        assert len(lock) == 0

    async def test_released_on_error(self):
        lock = KeyedLock()
        with pytest.raises(RuntimeError):
            async with lock.hold("k"):
                raise RuntimeError("boom")
        assert len(lock) == 0


class TestRedisKeyedLock:
    async def test_takes_redis_lock(self, fake_redis):
        lock = RedisKeyedLock(timeout=5, lease=20)
        async with lock.hold("1:abc"):
            pass
        assert fake_redis.lock_history == ["netwatch:correlation-lock:1:abc"]
        assert fake_redis.lock_args == [(20, 5)]
        assert len(lock) == 0

    async def test_expired_lease_does_not_fail_the_holder(self, fake_redis, caplog):
        fake_redis.lock_expired = True
        lock = RedisKeyedLock(timeout=5, lease=1)
        finished = False
        async with lock.hold("1:abc"):
            finished = True
        assert finished
        assert "expired before release" in caplog.text
        assert len(lock) == 0

    async def test_acquire_timeout_raises(self, fake_redis):
        fake_redis.lock_unavailable = True
        lock = RedisKeyedLock(timeout=0.1)
        with pytest.raises(LockError):
            async with lock.hold("1:abc"):
                pass
        assert len(lock) == 0

    async def test_correlator_publishes_when_lease_expired(self, fake_redis, db_session, publisher, user, clock):
        fake_redis.lock_expired = True
        correlator = AlertCorrelator(db_session, publisher, clock=clock, locks=RedisKeyedLock(lease=1))
        alert = await correlator.create_or_update(
            AlertType.DEVICE_DOWN, AlertSeverity.CRITICAL, "R1 down", "no ping reply",
            42, SourceType.DEVICE, "R1", user,
        )
        assert alert is not None
        assert [e.event_type for e in publisher.events] == [AlertEventType.NEW_ALERT]

    def test_backend_selection(self, monkeypatch):
        monkeypatch.setattr(locks_module.settings, "correlation_lock_backend", "redis")
        monkeypatch.setattr(locks_module.settings, "correlation_lock_lease_seconds", 45.0)
        lock = build_correlation_lock()
        assert isinstance(lock, RedisKeyedLock)
        assert lock._lease == 45.0
        monkeypatch.setattr(locks_module.settings, "correlation_lock_backend", "local")
        lock = build_correlation_lock()
        assert type(lock) is KeyedLock
        monkeypatch.setattr(locks_module.settings, "correlation_lock_backend", "zookeeper")
        assert type(build_correlation_lock()) is KeyedLock
