"""
审计日志服务 (Audit Log Service)

记录用户通过 REST 接口对告警执行的确认、解决、清除操作，
保存操作者、资源、详情（如确认备注）和来源 IP。

Records acknowledge/resolve/clear operations issued on alerts through the REST
layer, with the operator, resource, detail (e.g. the acknowledge comment) and
source IP.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from netwatch.models.audit_log import AuditLog


async def log_audit(
    db: AsyncSession,
    user_id: int,
    action: str,
    resource_type: str,
    resource_id: Optional[int] = None,
    detail: Optional[str] = None,
    ip_address: Optional[str] = None,
):
    """
    写入一条审计记录 (Append one audit entry)

    只 flush 不 commit，由调用方决定事务边界。

    Args:
        db: 异步数据库会话
        user_id: 操作用户 ID
        action: 操作类型，如 acknowledge / resolve / clear
        resource_type: 资源类型，如 alert
        resource_id: 资源 ID
        detail: 操作详情
        ip_address: 客户端 IP
    """
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        detail=detail,
        ip_address=ip_address,
    )
    db.add(entry)
    await db.flush()
