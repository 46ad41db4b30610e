"""
NetWatch 应用入口模块 (NetWatch Application Entry Module)

网络设备告警服务的 FastAPI 应用，负责生命周期管理、异常处理器和路由注册。

FastAPI application for the network device alert service: lifecycle
management, exception handlers and router registration.

启动顺序 (Startup):
  1. 配置日志
  2. 创建数据库表
  3. 启动后台执行池
  4. 通知分发订阅告警事件
关闭时先在超时内排空执行池，再释放 Redis 和数据库连接。
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from netwatch import __version__
from netwatch.core.config import settings
from netwatch.core.database import Base, engine
from netwatch.core.exceptions import register_exception_handlers
from netwatch.core.executor import execution_pool
from netwatch.core.redis import close_redis, get_redis
# 导入所有模型以确保 SQLAlchemy 表注册 (Import all models to ensure table registration)
from netwatch.models import Alert, AuditLog, User  # noqa: F401
from netwatch.routers import alerts, alerts_ws
from netwatch.services.event_publisher import event_publisher
from netwatch.services.notification_fanout import notification_fanout

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理器 (Application Lifecycle Manager)
    """
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # 自动创建数据库表结构 (Automatically create database tables)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    execution_pool.start()
    notification_fanout.attach(event_publisher)
    logger.info("NetWatch %s started (%s)", __version__, settings.environment)

    yield

    event_publisher.unsubscribe(notification_fanout.dispatch)
    await execution_pool.shutdown()
    await close_redis()
    await engine.dispose()


# 创建 FastAPI 应用实例 (Create FastAPI application instance)
app = FastAPI(
    title="NetWatch",
    description="Network device alert correlation and realtime notification | 网络设备告警关联与实时通知",
    version=__version__,
    lifespan=lifespan,
)

# 注册全局异常处理器 (Register global exception handlers)
register_exception_handlers(app)

is_production = settings.environment.lower() == "production"
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if not is_production else [],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(alerts.router)  # 告警管理 (Alert management)
app.include_router(alerts_ws.router)  # 告警实时推送 (Alert realtime push)


@app.get("/health")
@app.get("/api/v1/health")
async def health():
    """
    健康检查接口 (Health Check Endpoint)

    Returns:
        dict: 各组件状态和时间戳；任一组件异常时 status 为 degraded
    """
    checks = {"api": "ok"}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception:
        checks["database"] = "error"

    try:
        r = await get_redis()
        await r.ping()
        checks["redis"] = "ok"
    except Exception:
        checks["redis"] = "error"

    status = "ok" if all(v == "ok" for v in checks.values()) else "degraded"
    return {
        "status": status,
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
