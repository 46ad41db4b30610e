"""
告警关联与去重服务 (Alert Correlation and Deduplication Service)

把原始监控信号（设备/接口/系统单元状态变化或 SNMP Trap）转换为持久化、去重后的告警记录，
并管理告警生命周期状态机。外部监控组件唯一的入口是 create_or_update。

Turns raw monitoring signals (device/interface/system-unit state changes or SNMP
traps) into durable, deduplicated alert records and drives the alert lifecycle
state machine. create_or_update is the single entry point for monitors.

去重规则 (Deduplication rules):
  - INFO 级别信号直接忽略，不落库、不发事件
  - alert_key = type|sourceType|sourceId|severity，跨进程重启稳定
  - 同一 (用户, alert_key) 已有 ACTIVE 告警时：
      距上次发生 >= 抑制窗口（默认 5 分钟）→ 次数 +1、刷新描述、发 UPDATED_ALERT
      否则 → 抑制，原样返回现有快照
  - 没有 ACTIVE 告警（包括只有已确认/已解决/已清除的历史记录）→ 新建 ACTIVE 记录

状态机 (State machine):
  ACTIVE → ACKNOWLEDGED (acknowledge)
  ACTIVE / ACKNOWLEDGED → RESOLVED (resolve)
  任意状态 → CLEARED (clear，终态，不发事件)

"读-判断-写" 在 (用户, alert_key) 锁内执行，事件在事务提交之后才发布。
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from netwatch.core.config import settings
from netwatch.core.exceptions import AlertNotFoundError, ConflictError
from netwatch.core.locks import KeyedLock, correlation_locks
from netwatch.models.alert import Alert, AlertSeverity, AlertStatus, AlertType, SourceType
from netwatch.models.user import User
from netwatch.schemas.alert import AlertResponse, AlertStatistics
from netwatch.services.event_publisher import AlertEvent, AlertEventType, EventPublisher

logger = logging.getLogger(__name__)

DEFAULT_RECENT_WINDOW = timedelta(hours=24)

# 各用户操作允许的起始状态 (Source states each user action may start from)
ALLOWED_TRANSITIONS = {
    "acknowledge": {AlertStatus.ACTIVE.value},
    "resolve": {AlertStatus.ACTIVE.value, AlertStatus.ACKNOWLEDGED.value},
    "clear": {s.value for s in AlertStatus},
}


class InvalidAlertTransitionError(ConflictError):
    """当前状态不允许该操作 (Action not allowed from the alert's current status)"""

    def __init__(self, alert_id: int, action: str, status: str):
        super().__init__(
            f"Cannot {action} alert in status {status}",
            detail=f"alert_id={alert_id}",
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite 读回的时间不带时区，统一按 UTC 解释。"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _value(member) -> str:
    return member.value if hasattr(member, "value") else str(member)


def generate_alert_key(alert_type, source_type, source_id: Optional[int], severity) -> str:
    """
    生成告警去重键 (Build the alert correlation key)

    Args:
        alert_type: 故障类型
        source_type: 来源类型
        source_id: 来源实体 ID，可为空
        severity: 严重程度

    Returns:
        str: 形如 DEVICE_DOWN|DEVICE|42|CRITICAL 的键
    """
    return "|".join([
        _value(alert_type),
        _value(source_type),
        "none" if source_id is None else str(source_id),
        _value(severity),
    ])


async def alert_statistics(db: AsyncSession, user_id: int) -> AlertStatistics:
    """按用户统计活跃、严重、未确认告警数量。(Per-user active / critical / unacknowledged counts.)"""
    active = (await db.execute(
        select(func.count(Alert.id)).where(and_(
            Alert.user_id == user_id,
            Alert.status == AlertStatus.ACTIVE.value,
        ))
    )).scalar() or 0
    critical = (await db.execute(
        select(func.count(Alert.id)).where(and_(
            Alert.user_id == user_id,
            Alert.status == AlertStatus.ACTIVE.value,
            Alert.severity == AlertSeverity.CRITICAL.value,
        ))
    )).scalar() or 0
    unacknowledged = (await db.execute(
        select(func.count(Alert.id)).where(and_(
            Alert.user_id == user_id,
            Alert.acknowledged == False,  # noqa: E712
        ))
    )).scalar() or 0
    return AlertStatistics(
        active_count=active,
        critical_count=critical,
        unacknowledged_count=unacknowledged,
    )


class AlertCorrelator:
    """告警关联器 (Alert correlator)"""

    def __init__(
        self,
        db: AsyncSession,
        publisher: Optional[EventPublisher],
        *,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[KeyedLock] = None,
        suppression_window: Optional[timedelta] = None,
    ):
        self.db = db
        self.publisher = publisher
        self._clock = clock or utcnow
        self._locks = locks if locks is not None else correlation_locks
        if suppression_window is None:
            suppression_window = timedelta(seconds=settings.alert_suppression_window_seconds)
        self.suppression_window = suppression_window

    # ------------------------------------------------------------------
    # 信号入口 (Signal entry point)
    # ------------------------------------------------------------------

    async def create_or_update(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        description: Optional[str],
        source_id: Optional[int],
        source_type: SourceType,
        source_name: Optional[str],
        user: User,
    ) -> Optional[AlertResponse]:
        """
        创建或更新告警 (Create or update an alert)

        Returns:
            AlertResponse | None: 新建/更新/被抑制时的告警快照；INFO 级别返回 None
        """
        alert_type = AlertType(alert_type)
        severity = AlertSeverity(severity)
        source_type = SourceType(source_type)

        if severity is AlertSeverity.INFO:
            logger.debug("Skipping INFO level alert: %s for user: %s", title, user.username)
            return None

        alert_key = generate_alert_key(alert_type, source_type, source_id, severity)

        async with self._locks.hold(self._lock_key(user.id, alert_key)):
            now = self._clock()
            existing = await self._find_active(user.id, alert_key)

            if existing is None:
                alert = Alert(
                    user_id=user.id,
                    alert_key=alert_key,
                    type=alert_type.value,
                    severity=severity.value,
                    status=AlertStatus.ACTIVE.value,
                    title=title,
                    description=description,
                    source_id=source_id,
                    source_type=source_type.value,
                    source_name=source_name,
                    first_occurrence=now,
                    last_occurrence=now,
                    occurrence_count=1,
                    acknowledged=False,
                )
                self.db.add(alert)
                try:
                    await self.db.commit()
                except IntegrityError:
                    # 其他进程已抢先插入同键 ACTIVE 记录
                    await self.db.rollback()
                    winner = await self._find_active(user.id, alert_key)
                    if winner is None:
                        raise
                    logger.info(
                        "Concurrent insert for alert key %s (user %s) lost to alert %s",
                        alert_key, user.username, winner.id,
                    )
                    return AlertResponse.model_validate(winner)
                except SQLAlchemyError:
                    await self.db.rollback()
                    raise
                await self.db.refresh(alert)
                event_type = AlertEventType.NEW_ALERT
                logger.info("Alert created: %s (id=%s) for user: %s", title, alert.id, user.username)

            elif now - as_utc(existing.last_occurrence) >= self.suppression_window:
                alert = existing
                alert.occurrence_count += 1
                alert.last_occurrence = now
                alert.description = description
                await self._commit(alert)
                event_type = AlertEventType.UPDATED_ALERT
                logger.info(
                    "Updated existing alert %s occurrence count: %s",
                    alert.id, alert.occurrence_count,
                )

            else:
                logger.debug(
                    "Suppressing duplicate alert within %ss window: %s",
                    int(self.suppression_window.total_seconds()), title,
                )
                return AlertResponse.model_validate(existing)

            snapshot = AlertResponse.model_validate(alert)

        self._publish(event_type, snapshot, user)
        return snapshot

    # ------------------------------------------------------------------
    # 用户操作 (User actions)
    # ------------------------------------------------------------------

    async def acknowledge(self, alert_id: int, comment: Optional[str], user: User) -> AlertResponse:
        """确认告警：ACTIVE → ACKNOWLEDGED，发布 UPDATED_ALERT。"""
        alert = await self._get_owned(alert_id, user)
        async with self._locks.hold(self._lock_key(user.id, alert.alert_key)):
            await self.db.refresh(alert)
            self._check_transition(alert, "acknowledge")
            alert.acknowledged = True
            alert.acknowledged_by = user.username
            alert.acknowledged_at = self._clock()
            alert.status = AlertStatus.ACKNOWLEDGED.value
            await self._commit(alert)
            snapshot = AlertResponse.model_validate(alert)

        self._publish(AlertEventType.UPDATED_ALERT, snapshot, user)
        logger.info(
            "Alert acknowledged: %s by user: %s%s",
            alert_id, user.username, f" ({comment})" if comment else "",
        )
        return snapshot

    async def resolve(self, alert_id: int, user: User) -> AlertResponse:
        """解决告警：ACTIVE / ACKNOWLEDGED → RESOLVED，发布 UPDATED_ALERT。"""
        alert = await self._get_owned(alert_id, user)
        async with self._locks.hold(self._lock_key(user.id, alert.alert_key)):
            await self.db.refresh(alert)
            self._check_transition(alert, "resolve")
            alert.status = AlertStatus.RESOLVED.value
            alert.resolved_at = self._clock()
            alert.resolved_by = user.username
            await self._commit(alert)
            snapshot = AlertResponse.model_validate(alert)

        self._publish(AlertEventType.UPDATED_ALERT, snapshot, user)
        logger.info("Alert resolved: %s by user: %s", alert_id, user.username)
        return snapshot

    async def clear(self, alert_id: int, user: User) -> None:
        """清除告警：任意状态 → CLEARED。记录保留，不发布事件。"""
        alert = await self._get_owned(alert_id, user)
        async with self._locks.hold(self._lock_key(user.id, alert.alert_key)):
            await self.db.refresh(alert)
            self._check_transition(alert, "clear")
            alert.status = AlertStatus.CLEARED.value
            await self._commit(alert)
        logger.info("Alert cleared: %s by user: %s", alert_id, user.username)

    def request_statistics_update(self, user: User) -> None:
        """请求向用户推送一次统计数据。"""
        self._publish(AlertEventType.STATISTICS_UPDATE, None, user)

    # ------------------------------------------------------------------
    # 查询 (Read paths)
    # ------------------------------------------------------------------

    async def get(self, alert_id: int, user: User) -> AlertResponse:
        return AlertResponse.model_validate(await self._get_owned(alert_id, user))

    async def list_for_user(
        self, user: User, page: int = 1, page_size: int = 20
    ) -> Tuple[List[AlertResponse], int]:
        total = (await self.db.execute(
            select(func.count(Alert.id)).where(Alert.user_id == user.id)
        )).scalar() or 0
        q = (
            select(Alert)
            .where(Alert.user_id == user.id)
            .order_by(Alert.last_occurrence.desc(), Alert.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return await self._snapshots(q), total

    async def by_status(self, user: User, status: AlertStatus) -> List[AlertResponse]:
        return await self._filtered(user, Alert.status == AlertStatus(status).value)

    async def by_severity(self, user: User, severity: AlertSeverity) -> List[AlertResponse]:
        return await self._filtered(user, Alert.severity == AlertSeverity(severity).value)

    async def by_type(self, user: User, alert_type: AlertType) -> List[AlertResponse]:
        return await self._filtered(user, Alert.type == AlertType(alert_type).value)

    async def unacknowledged(self, user: User) -> List[AlertResponse]:
        return await self._filtered(user, Alert.acknowledged == False)  # noqa: E712

    async def recent(self, user: User, since: Optional[datetime] = None) -> List[AlertResponse]:
        """最近产生且仍处于 ACTIVE 的告警，默认 24 小时。"""
        if since is None:
            since = self._clock() - DEFAULT_RECENT_WINDOW
        return await self._filtered(
            user,
            Alert.status == AlertStatus.ACTIVE.value,
            Alert.first_occurrence >= as_utc(since).astimezone(timezone.utc),
        )

    async def by_source(
        self, user: User, source_type: SourceType, source_id: int
    ) -> List[AlertResponse]:
        return await self._filtered(
            user,
            Alert.source_type == SourceType(source_type).value,
            Alert.source_id == source_id,
        )

    async def statistics(self, user: User) -> AlertStatistics:
        return await alert_statistics(self.db, user.id)

    # ------------------------------------------------------------------
    # 内部实现 (Internals)
    # ------------------------------------------------------------------

    @staticmethod
    def _lock_key(user_id: int, alert_key: str) -> str:
        return f"{user_id}:{alert_key}"

    async def _find_active(self, user_id: int, alert_key: str) -> Optional[Alert]:
        result = await self.db.execute(
            select(Alert).where(and_(
                Alert.user_id == user_id,
                Alert.alert_key == alert_key,
                Alert.status == AlertStatus.ACTIVE.value,
            ))
        )
        return result.scalar_one_or_none()

    async def _get_owned(self, alert_id: int, user: User) -> Alert:
        result = await self.db.execute(
            select(Alert).where(and_(Alert.id == alert_id, Alert.user_id == user.id))
        )
        alert = result.scalar_one_or_none()
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    @staticmethod
    def _check_transition(alert: Alert, action: str) -> None:
        if alert.status not in ALLOWED_TRANSITIONS[action]:
            raise InvalidAlertTransitionError(alert.id, action, alert.status)

    async def _commit(self, alert: Alert) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        await self.db.refresh(alert)

    async def _filtered(self, user: User, *conditions) -> List[AlertResponse]:
        q = (
            select(Alert)
            .where(and_(Alert.user_id == user.id, *conditions))
            .order_by(Alert.last_occurrence.desc(), Alert.id.desc())
        )
        return await self._snapshots(q)

    async def _snapshots(self, query) -> List[AlertResponse]:
        result = await self.db.execute(query)
        return [AlertResponse.model_validate(a) for a in result.scalars().all()]

    def _publish(
        self, event_type: AlertEventType, snapshot: Optional[AlertResponse], user: User
    ) -> None:
        if self.publisher is None:
            return
        try:
            self.publisher.publish(AlertEvent(event_type, user.id, user.username, snapshot))
        except Exception:
            logger.warning("Failed to publish %s alert event", event_type.value, exc_info=True)
