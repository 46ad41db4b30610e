"""
数据模型包 (Data Models Package)

集中导出所有 SQLAlchemy ORM 模型。
Centrally exports all SQLAlchemy ORM models.
"""
from netwatch.models.user import User
from netwatch.models.alert import Alert, AlertSeverity, AlertStatus, AlertType, SourceType
from netwatch.models.audit_log import AuditLog

# 导出所有模型类供外部模块使用 (Export all model classes for external modules)
__all__ = [
    "User", "Alert", "AlertSeverity", "AlertStatus", "AlertType", "SourceType", "AuditLog",
]
