"""
FastAPI 依赖项模块 (FastAPI Dependencies Module)

提供 REST 接口的用户认证依赖：解析 Bearer JWT，返回对应的激活用户。
身份以显式参数的形式传给告警服务，不依赖任何全局上下文。

Provides the REST authentication dependency: parses the Bearer JWT and returns
the matching active user. The identity is passed explicitly to the alert
services; there is no ambient "current user".
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from netwatch.core.database import get_db
from netwatch.core.security import decode_token
from netwatch.models.user import User

# Bearer Token 认证方案 (Bearer Token Authentication Scheme)
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    从请求头中提取并验证 JWT，返回当前用户 (Extract and validate JWT from request header, return current user)

    签名无效、已过期、非访问令牌或用户不存在/未激活时返回 401。
    """
    payload = decode_token(credentials.credentials)
    if payload is None or payload.get("type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user_id = payload.get("sub")
    if user_id is None or not str(user_id).isdigit():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    result = await db.execute(select(User).where(User.id == int(user_id)))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found or inactive")

    return user
