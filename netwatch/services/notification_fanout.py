"""
告警通知分发服务 (Alert Notification Fanout Service)

订阅告警事件，在后台执行池中把告警快照推送到所属用户的实时会话。
投递为尽力而为、至多一次：用户离线或发送失败只记录日志，不重试、不抛出，
也不影响告警的持久化结果。

Subscribes to alert events and, on the background execution pool, pushes alert
snapshots to the owning user's realtime sessions. Delivery is best-effort and
at-most-once: offline users and transport failures are logged and dropped,
never retried and never raised back to the caller.

推送通道 (Channels):
  - alerts/new         新告警快照
  - alerts/update      告警更新快照（重复发生、确认、解决）
  - alerts/statistics  {activeCount, criticalCount, unacknowledgedCount}
  - device/status      {deviceId, status, timestamp}，由监控组件直接调用
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from netwatch.core.database import async_session
from netwatch.schemas.alert import AlertResponse, DeviceStatusUpdate
from netwatch.services.alert_correlator import alert_statistics
from netwatch.services.event_publisher import AlertEvent, AlertEventType, EventPublisher
from netwatch.services.realtime import SessionRegistry, session_registry

logger = logging.getLogger(__name__)

CHANNEL_NEW = "alerts/new"
CHANNEL_UPDATE = "alerts/update"
CHANNEL_STATISTICS = "alerts/statistics"
CHANNEL_DEVICE_STATUS = "device/status"


class NotificationFanout:
    """按用户定向的告警推送 (Per-user alert push)"""

    def __init__(
        self,
        registry: SessionRegistry,
        session_factory: Callable[[], AsyncSession] = async_session,
    ):
        self.registry = registry
        self.session_factory = session_factory

    def attach(self, publisher: EventPublisher) -> None:
        publisher.subscribe(self.dispatch)

    async def dispatch(self, event: AlertEvent) -> None:
        """
        处理一条告警事件 (Handle one alert event)

        在执行池 worker 上运行；任何异常都在这里被吞掉并记录。
        """
        try:
            if event.event_type is AlertEventType.NEW_ALERT:
                await self.send_alert(event.alert, event.user_id)
            elif event.event_type is AlertEventType.UPDATED_ALERT:
                await self.send_alert_update(event.alert, event.user_id)
            elif event.event_type is AlertEventType.STATISTICS_UPDATE:
                await self.send_statistics(event.user_id)
            else:
                logger.warning("Unknown alert event type: %s", event.event_type)
        except Exception:
            logger.exception(
                "Failed to dispatch %s event for user %s", event.event_type.value, event.username
            )

    async def send_alert(self, alert: Optional[AlertResponse], user_id: int) -> None:
        await self._push(user_id, CHANNEL_NEW, alert)

    async def send_alert_update(self, alert: Optional[AlertResponse], user_id: int) -> None:
        await self._push(user_id, CHANNEL_UPDATE, alert)

    async def send_statistics(self, user_id: int) -> None:
        """从存储重新统计后推送。(Recompute from the store, then push.)"""
        try:
            async with self.session_factory() as db:
                stats = await alert_statistics(db, user_id)
        except Exception as e:
            logger.error("Failed to compute alert statistics for user %s: %s", user_id, e)
            return
        await self._push(user_id, CHANNEL_STATISTICS, stats)

    async def send_device_status_update(self, device_id: int, status: str, user_id: int) -> None:
        update = DeviceStatusUpdate(
            device_id=device_id,
            status=status,
            timestamp=int(datetime.now(timezone.utc).timestamp() * 1000),
        )
        await self._push(user_id, CHANNEL_DEVICE_STATUS, update)

    async def _push(self, user_id: int, channel: str, payload: Any) -> None:
        if payload is None:
            logger.warning("Nothing to send on %s for user %s", channel, user_id)
            return
        if hasattr(payload, "model_dump"):
            payload = payload.model_dump(mode="json", by_alias=True)
        try:
            delivered = await self.registry.send_to_user(user_id, channel, payload)
        except Exception as e:
            logger.error("Failed to send %s notification to user %s: %s", channel, user_id, e)
            return
        if delivered:
            logger.debug("Sent %s notification to user %s (%d session(s))", channel, user_id, delivered)
        else:
            logger.debug("User %s has no live session, %s notification dropped", user_id, channel)


notification_fanout = NotificationFanout(session_registry)
