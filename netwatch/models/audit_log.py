"""
审计日志模型 (Audit Log Model)

记录用户对告警的确认、解决、清除操作，用于合规追踪和操作回溯。

Records user acknowledge/resolve/clear operations on alerts for compliance
tracking and operation traceability.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Text, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from netwatch.core.database import Base


class AuditLog(Base):
    """审计日志表 (Audit Log Table)"""
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # 操作用户 ID (Operating User ID)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # 操作类型，如 acknowledge, resolve, clear (Action Type)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # 资源类型，如 alert (Resource Type)
    resource_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 资源 ID (Resource ID)
    detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 操作详情描述 (Operation Detail Description)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)  # 操作者 IP 地址（支持 IPv6） (IP Address)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )  # 操作时间 (Operation Time)
