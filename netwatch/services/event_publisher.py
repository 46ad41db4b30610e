"""
告警事件发布器 (Alert Event Publisher)

告警关联器与通知分发之间的解耦点。关联器在事务提交之后把 AlertEvent 交给这里，
每个订阅者的处理都提交到后台执行池，从不在发布方的任务中执行。
执行池饱和时事件被丢弃并记录日志（尽力而为，不重试）。

Decoupling point between the correlator and the notification fanout. The
correlator hands an AlertEvent over after its transaction commits; every
subscriber invocation is submitted to the execution pool and never runs on the
publishing task. Events rejected by a saturated pool are logged and dropped.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from netwatch.core.executor import AsyncExecutionPool, execution_pool
from netwatch.schemas.alert import AlertResponse

logger = logging.getLogger(__name__)


class AlertEventType(str, enum.Enum):
    NEW_ALERT = "NEW_ALERT"
    UPDATED_ALERT = "UPDATED_ALERT"
    STATISTICS_UPDATE = "STATISTICS_UPDATE"


@dataclass(frozen=True)
class AlertEvent:
    """
    一次告警状态变化 (One alert state change)

    alert 为变化后的完整快照而非增量；STATISTICS_UPDATE 事件不携带快照。
    """
    event_type: AlertEventType
    user_id: int
    username: str
    alert: Optional[AlertResponse] = None


EventHandler = Callable[[AlertEvent], Awaitable[None]]


class EventPublisher:

    def __init__(self, pool: AsyncExecutionPool):
        self._pool = pool
        self._handlers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def publish(self, event: AlertEvent) -> None:
        """非阻塞发布，异常不会传回关联器。(Non-blocking; never raises into the correlator.)"""
        if not self._handlers:
            logger.debug("No subscribers for %s event of user %s", event.event_type.value, event.username)
            return
        for handler in list(self._handlers):
            if self._pool.submit(handler, event):
                logger.debug("Published %s event for user %s", event.event_type.value, event.username)
            else:
                logger.warning(
                    "Dropped %s event for user %s (alert %s): execution pool unavailable",
                    event.event_type.value,
                    event.username,
                    event.alert.id if event.alert else "-",
                )


event_publisher = EventPublisher(execution_pool)
