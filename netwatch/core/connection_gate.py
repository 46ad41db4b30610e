"""
实时连接认证 (Realtime Connection Gate)

只在 WebSocket 握手阶段校验一次身份：要求 Authorization: Bearer <token>，
校验签名与有效期并解析出用户。任何失败都在 accept 之前直接关闭连接，
不返回错误内容；成功后身份绑定到会话，之后的消息不再逐条鉴权。

Authenticates a WebSocket once, at handshake time: requires
``Authorization: Bearer <token>``, validates signature and expiry and resolves
the user. Any failure closes the socket before it is accepted, without an
error payload. On success the identity is bound to the session for its whole
lifetime; later frames are not re-authorized.
"""
import logging
from typing import Awaitable, Callable, Mapping, Optional

from fastapi import WebSocket, status
from sqlalchemy import select

from netwatch.core.database import async_session
from netwatch.core.security import decode_token
from netwatch.models.user import User
from netwatch.services.realtime import RealtimeSession, SessionRegistry, session_registry

logger = logging.getLogger(__name__)

UserLoader = Callable[[int], Awaitable[Optional[User]]]


async def load_active_user(user_id: int) -> Optional[User]:
    """按 ID 读取激活用户，使用独立会话。(Load an active user with a dedicated session.)"""
    async with async_session() as db:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        return None
    return user


class ConnectionGate:

    def __init__(self, user_loader: UserLoader = load_active_user, registry: SessionRegistry = session_registry):
        self.user_loader = user_loader
        self.registry = registry

    async def authenticate(self, headers: Mapping[str, str]) -> Optional[User]:
        """解析握手头中的 Bearer 令牌，失败返回 None，从不抛出。"""
        authorization = headers.get("authorization")
        if not authorization:
            logger.warning("Realtime handshake rejected: missing Authorization header")
            return None
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            logger.warning("Realtime handshake rejected: Authorization header is not a bearer token")
            return None

        payload = decode_token(token.strip())
        if payload is None or payload.get("type") != "access":
            logger.warning("Realtime handshake rejected: invalid or expired token")
            return None
        subject = payload.get("sub")
        if subject is None or not str(subject).isdigit():
            logger.warning("Realtime handshake rejected: token has no usable subject")
            return None

        try:
            user = await self.user_loader(int(subject))
        except Exception as e:
            logger.warning("Realtime handshake rejected: identity lookup failed for %s: %s", subject, e)
            return None
        if user is None:
            logger.warning("Realtime handshake rejected: user %s not found or inactive", subject)
            return None
        return user

    async def admit(self, websocket: WebSocket) -> Optional[RealtimeSession]:
        """
        认证并建立会话 (Authenticate and open the session)

        失败时以 1008 关闭且不 accept；成功时 accept 并注册到会话表。
        """
        user = await self.authenticate(websocket.headers)
        if user is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return None
        await websocket.accept()
        return self.registry.register(user.id, user.username, websocket, user=user)


connection_gate = ConnectionGate()


def get_connection_gate() -> ConnectionGate:
    """FastAPI 依赖项，测试中可覆盖。"""
    return connection_gate
