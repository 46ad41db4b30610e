"""
告警模型 (Alert Model)

定义网络设备告警的表结构和分类枚举。一条告警对应 (用户, alert_key) 上的一个故障条件，
通过 occurrence_count / first_occurrence / last_occurrence 记录重复发生情况。
记录从不物理删除，CLEARED 为终态并保留用于历史审计。

Defines the network device alert table and its classification enums. One row
tracks one fault condition for a (user, alert_key) pair, with repeat signals
folded into occurrence_count / first_occurrence / last_occurrence. Rows are
never physically deleted; CLEARED is terminal and kept for history.
"""
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, BigInteger, DateTime, Boolean, Text, ForeignKey, Index, func, text
from sqlalchemy.orm import Mapped, mapped_column

from netwatch.core.database import Base


class AlertType(str, enum.Enum):
    """被监控的故障条件类型 (Monitored condition kinds)"""
    DEVICE_DOWN = "DEVICE_DOWN"
    DEVICE_UP = "DEVICE_UP"
    INTERFACE_DOWN = "INTERFACE_DOWN"
    INTERFACE_UP = "INTERFACE_UP"
    SYSTEM_DOWN = "SYSTEM_DOWN"
    SYSTEM_UP = "SYSTEM_UP"
    HIGH_CPU = "HIGH_CPU"
    HIGH_MEMORY = "HIGH_MEMORY"
    HIGH_BANDWIDTH = "HIGH_BANDWIDTH"
    SNMP_TIMEOUT = "SNMP_TIMEOUT"
    CONNECTIVITY_LOST = "CONNECTIVITY_LOST"
    CONFIGURATION_CHANGED = "CONFIGURATION_CHANGED"
    PERFORMANCE = "PERFORMANCE"
    CONNECTIVITY = "CONNECTIVITY"
    THRESHOLD_BREACH = "THRESHOLD_BREACH"


class AlertSeverity(str, enum.Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    SEVERE = "SEVERE"
    CRITICAL = "CRITICAL"


class AlertStatus(str, enum.Enum):
    """告警生命周期状态，ACTIVE 为初始态，CLEARED 为终态。"""
    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    CLEARED = "CLEARED"


class SourceType(str, enum.Enum):
    DEVICE = "DEVICE"
    INTERFACE = "INTERFACE"
    SYSTEM_UNIT = "SYSTEM_UNIT"


class Alert(Base):
    """
    告警事件表 (Alert Event Table)

    同一用户同一 alert_key 任意时刻最多一条 ACTIVE 记录，由部分唯一索引在存储层保证。

    At most one ACTIVE row per (user_id, alert_key); enforced in the store by a
    partial unique index.
    """
    __tablename__ = "alerts"
    __table_args__ = (
        Index(
            "uq_alerts_user_key_active",
            "user_id",
            "alert_key",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_alerts_user_status", "user_id", "status"),
        Index("ix_alerts_user_source", "user_id", "source_type", "source_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # 归属用户 ID (Owning User ID)
    alert_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)  # 去重键 type|sourceType|sourceId|severity (Correlation Key)
    type: Mapped[str] = mapped_column(String(40), nullable=False)  # 故障类型 (Condition Type)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)  # 严重程度 (Severity)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AlertStatus.ACTIVE.value)  # 生命周期状态 (Lifecycle Status)
    title: Mapped[str] = mapped_column(String(500), nullable=False)  # 告警标题 (Alert Title)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 最近一次发生的描述 (Latest Occurrence Description)
    source_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)  # 来源实体 ID (Source Entity ID)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)  # 来源类型：设备/接口/系统单元 (Source Type)
    source_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # 来源名称 (Source Name)
    first_occurrence: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # 首次发生时间 (First Occurrence)
    last_occurrence: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # 最后发生时间 (Last Occurrence)
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # 发生次数 (Occurrence Count)
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)  # 是否已确认 (Acknowledged)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)  # 确认人 (Acknowledged By)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 确认时间 (Acknowledged At)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 解决时间 (Resolved At)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)  # 解决人 (Resolved By)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )  # 更新时间 (Update Time)
