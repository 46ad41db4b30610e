"""
安全工具模块 (Security Tools Module)

提供 JWT 令牌的签发与解析。生产环境中令牌由外部认证服务签发，本服务只做校验；
签发函数用于内部工具和测试。

Provides JWT token creation and decoding. In production tokens are issued by an
external authentication service and only validated here; the creation helper is
kept for tooling and tests.
"""
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from netwatch.core.config import settings


def create_access_token(subject: str, expires_delta: timedelta | None = None) -> str:
    """
    生成访问令牌（短期有效） (Generate access token with short expiry)

    Args:
        subject (str): 用户标识，通常是用户 ID (User identifier, usually the user ID)
        expires_delta: 可选的有效期，默认使用配置值 (Optional lifetime, defaults to settings)

    Returns:
        str: JWT 访问令牌字符串 (JWT access token string)
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.jwt_access_token_expire_minutes)
    expire = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(
        {"sub": subject, "exp": expire, "type": "access"},
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def decode_token(token: str) -> dict | None:
    """
    解析 JWT 令牌，失败返回 None (Decode JWT token, return None on failure)

    如果令牌格式错误、签名无效或已过期，则返回 None。

    Returns None if the token is malformed, the signature is invalid, or it has expired.
    """
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
