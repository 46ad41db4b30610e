"""
监控信号摄取服务 (Monitoring Signal Ingestion Service)

把设备探测结果和 SNMP Trap 转换为 create_or_update 调用。探测调度和 Trap 报文解码
由外部组件负责，这里只接收已解析的结果。所有工作都提交到后台执行池，
执行池饱和时本轮信号丢失并记录日志。

Turns device probe results and decoded SNMP traps into create_or_update calls.
Poll scheduling and trap wire decoding live elsewhere; this module receives
parsed results only. All work runs on the background execution pool; when the
pool is saturated the signal is lost for that cycle and logged.

探测规则 (Probe rules):
  - 不可达            → DEVICE_DOWN / CRITICAL "Device Down"，推送设备状态 DOWN
  - 响应 > 1000 ms    → PERFORMANCE / WARNING "Slow Response"
  - SNMP 不可达       → CONNECTIVITY / WARNING "SNMP Unreachable"
  - 每个 down 的接口  → INTERFACE_DOWN / WARNING "Interface Down"
  - 可达时推送设备状态 UP
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from netwatch.core.database import async_session
from netwatch.core.executor import AsyncExecutionPool, execution_pool
from netwatch.models.alert import AlertSeverity, AlertType, SourceType
from netwatch.models.user import User
from netwatch.services.alert_correlator import AlertCorrelator
from netwatch.services.event_publisher import EventPublisher, event_publisher
from netwatch.services.notification_fanout import NotificationFanout, notification_fanout

logger = logging.getLogger(__name__)

SLOW_RESPONSE_THRESHOLD_MS = 1000


class TrapType(str, enum.Enum):
    COLD_START = "COLD_START"
    WARM_START = "WARM_START"
    LINK_DOWN = "LINK_DOWN"
    LINK_UP = "LINK_UP"
    AUTHENTICATION_FAILURE = "AUTHENTICATION_FAILURE"
    EGP_NEIGHBOR_LOSS = "EGP_NEIGHBOR_LOSS"
    ENTERPRISE_SPECIFIC = "ENTERPRISE_SPECIFIC"
    DEVICE_DOWN = "DEVICE_DOWN"
    DEVICE_UP = "DEVICE_UP"
    INTERFACE_DOWN = "INTERFACE_DOWN"
    INTERFACE_UP = "INTERFACE_UP"
    CONFIGURATION_CHANGE = "CONFIGURATION_CHANGE"
    THRESHOLD_EXCEEDED = "THRESHOLD_EXCEEDED"
    SYSTEM_RESTART = "SYSTEM_RESTART"
    POWER_FAILURE = "POWER_FAILURE"
    TEMPERATURE_ALARM = "TEMPERATURE_ALARM"
    FAN_FAILURE = "FAN_FAILURE"
    DISK_FULL = "DISK_FULL"
    MEMORY_LOW = "MEMORY_LOW"
    CPU_HIGH = "CPU_HIGH"
    UNKNOWN = "UNKNOWN"


class TrapSeverity(str, enum.Enum):
    CRITICAL = "CRITICAL"
    MAJOR = "MAJOR"
    MINOR = "MINOR"
    WARNING = "WARNING"
    INFO = "INFO"
    CLEARED = "CLEARED"


TRAP_TYPE_MAP = {
    TrapType.COLD_START: AlertType.SYSTEM_UP,
    TrapType.WARM_START: AlertType.SYSTEM_UP,
    TrapType.SYSTEM_RESTART: AlertType.SYSTEM_UP,
    TrapType.LINK_DOWN: AlertType.INTERFACE_DOWN,
    TrapType.INTERFACE_DOWN: AlertType.INTERFACE_DOWN,
    TrapType.LINK_UP: AlertType.INTERFACE_UP,
    TrapType.INTERFACE_UP: AlertType.INTERFACE_UP,
    TrapType.DEVICE_DOWN: AlertType.DEVICE_DOWN,
    TrapType.DEVICE_UP: AlertType.DEVICE_UP,
    TrapType.AUTHENTICATION_FAILURE: AlertType.CONNECTIVITY,
    TrapType.TEMPERATURE_ALARM: AlertType.SYSTEM_DOWN,
    TrapType.FAN_FAILURE: AlertType.SYSTEM_DOWN,
    TrapType.POWER_FAILURE: AlertType.SYSTEM_DOWN,
    TrapType.CPU_HIGH: AlertType.PERFORMANCE,
    TrapType.MEMORY_LOW: AlertType.PERFORMANCE,
    TrapType.CONFIGURATION_CHANGE: AlertType.CONFIGURATION_CHANGED,
    TrapType.THRESHOLD_EXCEEDED: AlertType.THRESHOLD_BREACH,
}

TRAP_SEVERITY_MAP = {
    TrapSeverity.CRITICAL: AlertSeverity.CRITICAL,
    TrapSeverity.MAJOR: AlertSeverity.SEVERE,
    TrapSeverity.MINOR: AlertSeverity.WARNING,
    TrapSeverity.WARNING: AlertSeverity.WARNING,
    TrapSeverity.INFO: AlertSeverity.INFO,
    TrapSeverity.CLEARED: AlertSeverity.INFO,
}

TRAP_MESSAGES = {
    TrapType.COLD_START: "Device cold start detected",
    TrapType.WARM_START: "Device warm start detected",
    TrapType.LINK_DOWN: "Network link down",
    TrapType.LINK_UP: "Network link up",
    TrapType.INTERFACE_DOWN: "Interface down",
    TrapType.INTERFACE_UP: "Interface up",
    TrapType.DEVICE_DOWN: "Device is down",
    TrapType.DEVICE_UP: "Device is up",
    TrapType.AUTHENTICATION_FAILURE: "SNMP authentication failure",
    TrapType.TEMPERATURE_ALARM: "Temperature alarm",
    TrapType.FAN_FAILURE: "Fan failure detected",
    TrapType.POWER_FAILURE: "Power failure detected",
    TrapType.CPU_HIGH: "High CPU utilization",
    TrapType.MEMORY_LOW: "Low memory condition",
    TrapType.DISK_FULL: "Disk space full",
    TrapType.CONFIGURATION_CHANGE: "Configuration change detected",
    TrapType.SYSTEM_RESTART: "System restart detected",
}


@dataclass
class DeviceProbeResult:
    """一次设备探测的结果 (Outcome of one device probe)"""
    device_id: int
    device_name: str
    address: str
    reachable: bool
    response_time_ms: Optional[int] = None
    snmp_reachable: Optional[bool] = None  # None 表示未启用 SNMP (None: SNMP not enabled)
    down_interfaces: List[str] = field(default_factory=list)


@dataclass
class TrapSignal:
    """已解码的 SNMP Trap (Decoded SNMP trap)"""
    trap_type: TrapType
    severity: TrapSeverity
    source_ip: str
    message: Optional[str] = None
    device_id: Optional[int] = None


def map_trap_type(trap_type: TrapType) -> AlertType:
    return TRAP_TYPE_MAP.get(TrapType(trap_type), AlertType.CONNECTIVITY)


def map_trap_severity(severity: TrapSeverity) -> AlertSeverity:
    return TRAP_SEVERITY_MAP[TrapSeverity(severity)]


def trap_message(trap: TrapSignal) -> str:
    if trap.message:
        return trap.message
    base = TRAP_MESSAGES.get(TrapType(trap.trap_type), "SNMP trap received")
    return f"{base} from device {trap.source_ip}"


class MonitoringIngestor:
    """监控信号到告警关联器的适配层 (Adapter from monitoring signals to the correlator)"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = async_session,
        publisher: EventPublisher = event_publisher,
        fanout: NotificationFanout = notification_fanout,
        pool: AsyncExecutionPool = execution_pool,
        correlator_factory: Callable[[AsyncSession, EventPublisher], AlertCorrelator] = AlertCorrelator,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.fanout = fanout
        self.pool = pool
        self.correlator_factory = correlator_factory

    # ── 提交到执行池 (Pool submission) ──

    def submit_probe(self, result: DeviceProbeResult, user: User) -> bool:
        accepted = self.pool.submit(self.ingest_probe, result, user)
        if not accepted:
            logger.warning("Probe result for device %s lost: rejected by execution pool", result.device_name)
        return accepted

    def submit_trap(self, trap: TrapSignal, user: User) -> bool:
        accepted = self.pool.submit(self.ingest_trap, trap, user)
        if not accepted:
            logger.warning("Trap %s from %s lost: rejected by execution pool", trap.trap_type, trap.source_ip)
        return accepted

    # ── 处理逻辑 (Processing) ──

    async def ingest_probe(self, result: DeviceProbeResult, user: User) -> None:
        """处理一次设备探测结果。"""
        logger.debug("Processing probe result for device %s (%s)", result.device_name, result.address)
        async with self.session_factory() as db:
            correlator = self.correlator_factory(db, self.publisher)

            if not result.reachable:
                await correlator.create_or_update(
                    AlertType.DEVICE_DOWN,
                    AlertSeverity.CRITICAL,
                    "Device Down",
                    f"Device {result.device_name} ({result.address}) is not responding to ping",
                    result.device_id,
                    SourceType.DEVICE,
                    result.device_name,
                    user,
                )
                await self.fanout.send_device_status_update(result.device_id, "DOWN", user.id)
                return

            if result.response_time_ms is not None and result.response_time_ms > SLOW_RESPONSE_THRESHOLD_MS:
                await correlator.create_or_update(
                    AlertType.PERFORMANCE,
                    AlertSeverity.WARNING,
                    "Slow Response",
                    f"Device {result.device_name} ({result.address}) has slow response time: "
                    f"{result.response_time_ms} ms",
                    result.device_id,
                    SourceType.DEVICE,
                    result.device_name,
                    user,
                )

            if result.snmp_reachable is False:
                await correlator.create_or_update(
                    AlertType.CONNECTIVITY,
                    AlertSeverity.WARNING,
                    "SNMP Unreachable",
                    f"Device {result.device_name} ({result.address}) is not responding to SNMP requests",
                    result.device_id,
                    SourceType.DEVICE,
                    result.device_name,
                    user,
                )

            for if_index in result.down_interfaces:
                # 接口告警以设备 ID 作为来源 ID
                await correlator.create_or_update(
                    AlertType.INTERFACE_DOWN,
                    AlertSeverity.WARNING,
                    "Interface Down",
                    f"Interface {if_index} on device {result.device_name} ({result.address}) is down",
                    result.device_id,
                    SourceType.INTERFACE,
                    f"{result.device_name} Interface {if_index}",
                    user,
                )

        await self.fanout.send_device_status_update(result.device_id, "UP", user.id)

    async def ingest_trap(self, trap: TrapSignal, user: User) -> None:
        """把一条 Trap 转换为告警；INFO / CLEARED 级别由关联器忽略。"""
        alert_type = map_trap_type(trap.trap_type)
        severity = map_trap_severity(trap.severity)
        trap_name = TrapType(trap.trap_type).value
        async with self.session_factory() as db:
            correlator = self.correlator_factory(db, self.publisher)
            alert = await correlator.create_or_update(
                alert_type,
                severity,
                f"SNMP Trap: {trap_name}",
                trap_message(trap),
                trap.device_id,
                SourceType.DEVICE,
                trap.source_ip,
                user,
            )
        if alert is not None:
            logger.info("Trap %s from %s correlated to alert %s", trap_name, trap.source_ip, alert.id)
