"""
按键串行化锁 (Per-key serialization locks)

告警关联的"读-判断-写"必须按 (用户, alert_key) 串行执行，否则两个并发的监控信号
可能同时看到"无 ACTIVE 告警"并各自插入一条。

  - KeyedLock: 进程内每个键一个 asyncio.Lock，无人持有时回收
  - RedisKeyedLock: 在进程内锁之外再持有 Redis 锁，多 worker 进程部署时使用
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from redis.exceptions import LockError

from netwatch.core.config import settings
from netwatch.core.redis import get_redis

logger = logging.getLogger(__name__)

REDIS_LOCK_PREFIX = "netwatch:correlation-lock:"


class KeyedLock:
    """进程内按键加锁 (In-process per-key lock)"""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]


class RedisKeyedLock(KeyedLock):
    """
    进程内锁 + Redis 分布式锁 (In-process lock plus a Redis lock)

    timeout 为等待加锁的最长时间，lease 为 Redis 锁的过期时间。
    持有时间超过 lease 时锁已被 Redis 回收，释放失败只记录警告。
    """

    def __init__(self, timeout: float = 10.0, lease: float = 30.0):
        super().__init__()
        self._timeout = timeout
        self._lease = lease

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with super().hold(key):
            redis = await get_redis()
            lock = redis.lock(
                f"{REDIS_LOCK_PREFIX}{key}",
                timeout=self._lease,
                blocking_timeout=self._timeout,
            )
            if not await lock.acquire():
                raise LockError(f"Timed out waiting for correlation lock {key}")
            try:
                yield
            finally:
                try:
                    await lock.release()
                except LockError as e:
                    logger.warning("Correlation lock %s expired before release: %s", key, e)


def build_correlation_lock() -> KeyedLock:
    """按配置构造关联锁。(Build the correlation lock selected by settings.)"""
    backend = settings.correlation_lock_backend.lower()
    if backend == "redis":
        logger.info("Alert correlation serialized through Redis locks")
        return RedisKeyedLock(
            timeout=settings.correlation_lock_timeout_seconds,
            lease=settings.correlation_lock_lease_seconds,
        )
    if backend != "local":
        logger.warning("Unknown correlation_lock_backend %r, falling back to local locks", backend)
    return KeyedLock()


correlation_locks = build_correlation_lock()
