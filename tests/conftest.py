"""
NetWatch 测试基础配置

提供基于临时文件的 SQLite 异步数据库、mock Redis、可控时钟、事件记录器和
httpx 异步测试客户端等通用 fixture。不依赖外部 PostgreSQL/Redis。
"""
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import LockNotOwnedError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# 必须在导入 netwatch 之前设置环境变量，避免真实连接
os.environ["DATABASE_URL_OVERRIDE"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_HOST"] = "localhost"
os.environ["JWT_SECRET_KEY"] = "netwatch-test-secret"
os.environ["CORRELATION_LOCK_BACKEND"] = "local"

from netwatch.core.database import Base, get_db  # noqa: E402
from netwatch.core.locks import KeyedLock  # noqa: E402
from netwatch.core.security import create_access_token  # noqa: E402
import netwatch.core.redis as redis_module  # noqa: E402
from netwatch.core.redis import get_redis  # noqa: E402
from netwatch.models.user import User  # noqa: E402
from netwatch.services.alert_correlator import AlertCorrelator  # noqa: E402


# ── Mock Redis ────────────────────────────────────────────────────────
class FakeLock:
    """redis.asyncio Lock 的最小替身，记录加锁历史。"""

    def __init__(self, redis: "FakeRedis", name: str, timeout: float | None, blocking_timeout: float | None):
        self._redis = redis
        self.name = name
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    async def acquire(self) -> bool:
        if self._redis.lock_unavailable:
            return False
        self._redis.lock_history.append(self.name)
        self._redis.lock_args.append((self.timeout, self.blocking_timeout))
        return True

    async def release(self) -> None:
        if self._redis.lock_expired:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")


class FakeRedis:
    """内存级 Redis 模拟，支持基本 get/set/delete、ping 和 lock。"""

    def __init__(self):
        self._store: dict[str, str] = {}
        self.lock_history: list[str] = []
        self.lock_args: list[tuple] = []
        self.lock_unavailable = False
        self.lock_expired = False

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None, **kwargs) -> None:
        self._store[key] = value

    async def delete(self, *keys: str) -> None:
        for k in keys:
            self._store.pop(k, None)

    async def ping(self) -> bool:
        return True

    def lock(self, name: str, timeout: float | None = None, blocking_timeout: float | None = None) -> FakeLock:
        return FakeLock(self, name, timeout, blocking_timeout)

    async def close(self) -> None:
        pass


@pytest.fixture
def fake_redis():
    fake = FakeRedis()
    original = redis_module.redis_client
    redis_module.redis_client = fake
    yield fake
    redis_module.redis_client = original


# ── 时钟与事件记录 ─────────────────────────────────────────────────────
class MutableClock:
    """可手动推进的时钟。"""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingPublisher:
    """记录所有发布的事件，代替真实的 EventPublisher。"""

    def __init__(self):
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)

    def of_type(self, event_type):
        return [e for e in self.events if e.event_type is event_type]


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


# ── 数据库 ────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine(tmp_path):
    """每个测试一个独立的 SQLite 文件数据库，支持多会话并发。"""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'netwatch.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """提供一个干净的数据库会话。"""
    async with session_factory() as session:
        yield session


@pytest.fixture
def correlator(db_session, publisher, clock) -> AlertCorrelator:
    return AlertCorrelator(db_session, publisher, clock=clock, locks=KeyedLock())


# ── 用户 ──────────────────────────────────────────────────────────────

async def _create_user(db: AsyncSession, username: str, is_active: bool = True) -> User:
    user = User(username=username, email=f"{username}@example.com", is_active=is_active)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "alice")


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "bob")


@pytest_asyncio.fixture
async def inactive_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "mallory", is_active=False)


@pytest.fixture
def user_token(user: User) -> str:
    return create_access_token(str(user.id))


@pytest.fixture
def auth_headers(user_token: str) -> dict:
    return {"Authorization": f"Bearer {user_token}"}


@pytest.fixture
def other_headers(other_user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(other_user.id))}"}


# ── HTTP 客户端 ───────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(db_session: AsyncSession, fake_redis: FakeRedis) -> AsyncGenerator[AsyncClient, None]:
    """提供配置好依赖覆盖的异步 HTTP 测试客户端。"""
    from netwatch.main import app

    async def override_get_db():
        yield db_session

    async def override_get_redis():
        return fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
