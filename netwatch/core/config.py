"""
应用配置模块 (Application Configuration Module)

使用 Pydantic Settings 管理 NetWatch 的所有配置项，支持从 .env 文件和环境变量读取。
涵盖数据库、Redis、JWT 校验、告警去重窗口和后台执行池等配置。

Uses Pydantic Settings to manage all NetWatch configuration items, read from
.env files and environment variables. Covers database, Redis, JWT validation,
the alert suppression window and the background execution pool.
"""
import logging
import secrets

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    应用全局配置类 (Application Global Configuration Class)

    字段名自动映射同名环境变量（不区分大小写），支持 .env 文件加载。

    Field names map to same-named environment variables (case insensitive),
    with .env file support.
    """

    # 数据库配置 (Database Configuration)
    postgres_host: str = "localhost"  # PostgreSQL 主机地址 (PostgreSQL Host)
    postgres_port: int = 5432  # PostgreSQL 端口号 (PostgreSQL Port)
    postgres_db: str = "netwatch"  # 数据库名称 (Database Name)
    postgres_user: str = "netwatch"  # 数据库用户名 (Database Username)
    postgres_password: str = "netwatch_dev_password"  # 数据库密码 (Database Password)
    database_url_override: str = ""  # 完整连接串，设置后优先使用 (Full DSN, takes precedence when set)

    # Redis 配置 (Redis Configuration)
    redis_host: str = "localhost"  # Redis 主机地址 (Redis Host)
    redis_port: int = 6379  # Redis 端口号 (Redis Port)

    # JWT 校验配置 (JWT Validation Configuration)
    # 令牌由外部认证服务签发，本服务只负责校验 (Tokens are issued elsewhere; this service only validates them)
    jwt_secret_key: str = ""  # JWT 签名密钥 (JWT Secret Key)
    jwt_algorithm: str = "HS256"  # JWT 算法 (JWT Algorithm)
    jwt_access_token_expire_minutes: int = 120  # 访问令牌过期时间（分钟） (Access Token Expiry Minutes)

    # 告警关联配置 (Alert Correlation Configuration)
    alert_suppression_window_seconds: int = 300  # 去重抑制窗口：5 分钟 (Suppression window: 5 minutes)
    correlation_lock_backend: str = "local"  # 按键串行化后端：local / redis (Per-key serialization backend)
    correlation_lock_timeout_seconds: float = 10.0  # 等待 Redis 锁的超时 (Wait for the Redis lock)
    correlation_lock_lease_seconds: float = 30.0  # Redis 锁过期时间，需大于一次关联耗时 (Redis lock expiry)

    # 后台执行池配置 (Background Execution Pool Configuration)
    worker_pool_core_size: int = 5  # 常驻 worker 数 (Core workers)
    worker_pool_max_size: int = 20  # 最大 worker 数 (Max workers)
    worker_pool_queue_capacity: int = 100  # 有界队列容量 (Bounded queue capacity)
    worker_pool_keep_alive_seconds: float = 60.0  # 临时 worker 空闲回收时间 (Idle time before extra workers retire)
    worker_pool_shutdown_timeout_seconds: float = 60.0  # 关闭时等待在途任务的时间 (Drain timeout on shutdown)

    log_level: str = "INFO"  # 日志级别 (Log Level)
    environment: str = "development"  # 运行环境：development/production (Runtime Environment)

    @property
    def database_url(self) -> str:
        """
        构造 PostgreSQL 异步连接 URL (Build PostgreSQL Async Connection URL)

        生成适用于 asyncpg 驱动的连接字符串；设置了 DATABASE_URL_OVERRIDE 时直接使用。
        """
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def redis_url(self) -> str:
        """构造 Redis 连接 URL，默认使用数据库 0。(Build Redis URL, database 0.)"""
        return f"redis://{self.redis_host}:{self.redis_port}/0"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}  # Pydantic 配置：自动加载 .env 文件 (Auto-load .env file)


# 全局配置实例 (Global Configuration Instance)
settings = Settings()

# JWT 密钥安全检查：未设置时生成随机密钥并警告
if not settings.jwt_secret_key or settings.jwt_secret_key == "change-me-in-production":
    settings.jwt_secret_key = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY 未设置，已自动生成随机密钥，重启后所有令牌失效。"
        " | JWT_SECRET_KEY not set, using auto-generated random key. "
        "All tokens will be invalidated on restart. "
        "Set JWT_SECRET_KEY environment variable in production!"
    )
