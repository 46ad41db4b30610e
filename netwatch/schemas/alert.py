from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """对外 JSON 使用 camelCase 字段名，内部仍按 snake_case 构造。"""

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ── Alert ──

class AlertResponse(CamelModel):
    """告警完整快照，REST 响应和实时推送共用。(Full alert snapshot, shared by REST and realtime pushes.)"""

    id: int
    user_id: int
    alert_key: str
    type: str
    severity: str
    status: str
    title: str
    description: str | None
    source_id: int | None
    source_type: str
    source_name: str | None
    first_occurrence: datetime
    last_occurrence: datetime
    occurrence_count: int
    acknowledged: bool
    acknowledged_by: str | None
    acknowledged_at: datetime | None
    resolved_at: datetime | None
    resolved_by: str | None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AlertAcknowledgeRequest(BaseModel):
    comment: str | None = Field(default=None, max_length=1000)


class AlertStatistics(CamelModel):
    active_count: int
    critical_count: int
    unacknowledged_count: int


# ── Realtime ──

class DeviceStatusUpdate(CamelModel):
    device_id: int
    status: str
    timestamp: int  # epoch 毫秒 (epoch millis)
