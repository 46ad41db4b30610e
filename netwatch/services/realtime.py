"""
实时会话注册表 (Realtime Session Registry)

记录已通过 ConnectionGate 认证的 WebSocket 会话，按用户分组，
供通知分发按用户定向推送。

Tracks WebSocket sessions admitted by the ConnectionGate, grouped by user, so
the notification fanout can address a specific user.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import WebSocket

from netwatch.models.user import User

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class RealtimeSession:
    websocket: WebSocket
    user_id: int
    username: str
    user: Optional[User] = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionRegistry:
    """
    按用户维护的 WebSocket 会话集合。

    消息格式: {"channel": "alerts/new", "payload": {...}}
    """

    def __init__(self):
        self._sessions: Dict[int, List[RealtimeSession]] = {}

    def register(
        self, user_id: int, username: str, websocket: WebSocket, user: Optional[User] = None
    ) -> RealtimeSession:
        session = RealtimeSession(websocket=websocket, user_id=user_id, username=username, user=user)
        self._sessions.setdefault(user_id, []).append(session)
        logger.info("Realtime session opened for user %s (%d active)", username, len(self._sessions[user_id]))
        return session

    def unregister(self, session: RealtimeSession) -> None:
        sessions = self._sessions.get(session.user_id)
        if not sessions or session not in sessions:
            return
        sessions.remove(session)
        if not sessions:
            del self._sessions[session.user_id]
        logger.info("Realtime session closed for user %s", session.username)

    def sessions_for(self, user_id: int) -> List[RealtimeSession]:
        return list(self._sessions.get(user_id, []))

    def __len__(self) -> int:
        return sum(len(s) for s in self._sessions.values())

    async def send_to_user(self, user_id: int, channel: str, payload: Any) -> int:
        """
        向用户的所有会话推送一条消息，返回成功送达的会话数。

        发送失败的会话视为已断开，从注册表移除。用户没有会话时静默返回 0。
        """
        delivered = 0
        message = {"channel": channel, "payload": payload}
        for session in self.sessions_for(user_id):
            try:
                await session.websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Dropping realtime session of user %s after send failure on %s: %s",
                    session.username, channel, e,
                )
                self.unregister(session)
        return delivered


session_registry = SessionRegistry()
