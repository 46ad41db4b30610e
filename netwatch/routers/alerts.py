"""
告警管理路由模块 (Alert Management Router)

功能说明：告警服务的 REST 边界，只做认证、参数解析和审计，业务规则全部在 AlertCorrelator 中
核心职责：
  - 按用户查询告警（分页、状态、严重级别、来源、时间窗口、未确认）
  - 告警统计
  - 确认、解决、清除操作，并写入审计日志
API端点：/api/v1/alerts/...

不存在或不属于当前用户的告警统一返回 404。
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from netwatch.core.database import get_db
from netwatch.core.deps import get_current_user
from netwatch.models.alert import AlertSeverity, AlertStatus, AlertType, SourceType
from netwatch.models.user import User
from netwatch.schemas.alert import AlertAcknowledgeRequest, AlertResponse, AlertStatistics
from netwatch.services.alert_correlator import AlertCorrelator
from netwatch.services.audit import log_audit
from netwatch.services.event_publisher import event_publisher

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


def get_alert_correlator(db: AsyncSession = Depends(get_db)) -> AlertCorrelator:
    return AlertCorrelator(db, event_publisher)


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@router.get("", response_model=dict)
async def list_alerts(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    """
    告警列表查询接口 (Alert List Query)

    分页返回当前用户的告警，按最后发生时间倒序。

    Returns:
        dict: items / total / page / page_size
    """
    items, total = await correlator.list_for_user(user, page, page_size)
    return {
        "items": [a.model_dump(mode="json", by_alias=True) for a in items],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get("/unacknowledged", response_model=List[AlertResponse])
async def list_unacknowledged(
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    return await correlator.unacknowledged(user)


@router.get("/recent", response_model=List[AlertResponse])
async def list_recent(
    since: Optional[datetime] = None,
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    """最近产生的 ACTIVE 告警，since 缺省为 24 小时前。"""
    return await correlator.recent(user, since)


@router.get("/statistics", response_model=AlertStatistics)
async def alert_statistics(
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    return await correlator.statistics(user)


@router.get("/status/{alert_status}", response_model=List[AlertResponse])
async def list_by_status(
    alert_status: AlertStatus,
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    return await correlator.by_status(user, alert_status)


@router.get("/severity/{severity}", response_model=List[AlertResponse])
async def list_by_severity(
    severity: AlertSeverity,
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    return await correlator.by_severity(user, severity)


@router.get("/type/{alert_type}", response_model=List[AlertResponse])
async def list_by_type(
    alert_type: AlertType,
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    return await correlator.by_type(user, alert_type)


@router.get("/device/{device_id}", response_model=List[AlertResponse])
async def list_for_device(
    device_id: int,
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    return await correlator.by_source(user, SourceType.DEVICE, device_id)


@router.get("/interface/{interface_id}", response_model=List[AlertResponse])
async def list_for_interface(
    interface_id: int,
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    return await correlator.by_source(user, SourceType.INTERFACE, interface_id)


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(
    alert_id: int,
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    """
    单个告警详情查询接口 (Single Alert Detail Query)

    Raises:
        AlertNotFoundError: 告警不存在或不属于当前用户（404）
    """
    return await correlator.get(alert_id, user)


@router.post("/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: int,
    request: Request,
    body: Optional[AlertAcknowledgeRequest] = None,
    db: AsyncSession = Depends(get_db),
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    """
    告警确认操作接口 (Alert Acknowledgment)

    确认备注记入审计日志详情。只有 ACTIVE 告警可以确认，否则返回 409。
    """
    comment = body.comment if body else None
    alert = await correlator.acknowledge(alert_id, comment, user)
    await log_audit(db, user.id, "acknowledge", "alert", alert_id, comment, _client_ip(request))
    await db.commit()
    return alert


@router.post("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    alert = await correlator.resolve(alert_id, user)
    await log_audit(db, user.id, "resolve", "alert", alert_id, None, _client_ip(request))
    await db.commit()
    return alert


@router.delete("/{alert_id}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_alert(
    alert_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    correlator: AlertCorrelator = Depends(get_alert_correlator),
    user: User = Depends(get_current_user),
):
    """清除告警，记录保留为 CLEARED 状态。"""
    await correlator.clear(alert_id, user)
    await log_audit(db, user.id, "clear", "alert", alert_id, None, _client_ip(request))
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
