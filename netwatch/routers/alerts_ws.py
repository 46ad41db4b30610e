"""
告警实时推送 WebSocket 模块 (Alert Realtime WebSocket Module)

WebSocket端点：/api/v1/ws/alerts

握手时由 ConnectionGate 校验 Bearer 令牌，失败直接关闭；成功后会话注册到
SessionRegistry，由 NotificationFanout 按用户推送。建立连接后先推送一次当前
未确认告警快照 (alerts/unacknowledged)。

客户端消息 (Client frames):
  {"action": "ping"}                  → {"channel": "pong"}
  {"action": "statistics"}            → 为当前用户发布一次 STATISTICS_UPDATE
  {"action": "recent", "hours": 24}   → alerts/recent，最近 N 小时仍 ACTIVE 的告警
  {"action": "device", "deviceId": 1} → alerts/device，该设备的告警
无法解析的消息记录日志后忽略，连接保持。
"""
import json
import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from netwatch.core.connection_gate import ConnectionGate, get_connection_gate
from netwatch.core.database import async_session
from netwatch.models.alert import SourceType
from netwatch.services.alert_correlator import DEFAULT_RECENT_WINDOW, AlertCorrelator, utcnow
from netwatch.services.event_publisher import AlertEvent, AlertEventType, event_publisher
from netwatch.services.realtime import RealtimeSession

logger = logging.getLogger(__name__)

router = APIRouter()

CHANNEL_SNAPSHOT = "alerts/unacknowledged"
CHANNEL_RECENT = "alerts/recent"
CHANNEL_DEVICE = "alerts/device"
CHANNEL_ERROR = "error"

DEFAULT_RECENT_HOURS = int(DEFAULT_RECENT_WINDOW.total_seconds() // 3600)


async def _reply(websocket: WebSocket, channel: str, payload: Any) -> None:
    await websocket.send_json({"channel": channel, "payload": payload})


async def _reply_error(websocket: WebSocket, action: str, message: str) -> None:
    await _reply(websocket, CHANNEL_ERROR, {"action": action, "message": message})


def _dump(alerts) -> list:
    return [a.model_dump(mode="json", by_alias=True) for a in alerts]


async def _send_snapshot(session: RealtimeSession) -> None:
    """推送当前未确认告警，失败只记录日志。"""
    try:
        async with async_session() as db:
            alerts = await AlertCorrelator(db, event_publisher).unacknowledged(session.user)
    except Exception as e:
        logger.warning("Failed to load alert snapshot for %s: %s", session.username, e)
        return
    await _reply(session.websocket, CHANNEL_SNAPSHOT, _dump(alerts))


async def _handle_action(session: RealtimeSession, message: Any) -> None:
    websocket = session.websocket
    action = message.get("action") if isinstance(message, dict) else None

    if action == "ping":
        await websocket.send_json({"channel": "pong"})

    elif action == "statistics":
        event_publisher.publish(AlertEvent(
            AlertEventType.STATISTICS_UPDATE, session.user_id, session.username,
        ))

    elif action == "recent":
        try:
            hours = int(message.get("hours", DEFAULT_RECENT_HOURS))
        except (TypeError, ValueError):
            await _reply_error(websocket, action, "hours must be an integer")
            return
        async with async_session() as db:
            alerts = await AlertCorrelator(db, event_publisher).recent(
                session.user, since=utcnow() - timedelta(hours=hours),
            )
        await _reply(websocket, CHANNEL_RECENT, _dump(alerts))

    elif action == "device":
        device_id = message.get("deviceId")
        if device_id is None or not str(device_id).isdigit():
            await _reply_error(websocket, action, "deviceId is required")
            return
        async with async_session() as db:
            alerts = await AlertCorrelator(db, event_publisher).by_source(
                session.user, SourceType.DEVICE, int(device_id),
            )
        await _reply(websocket, CHANNEL_DEVICE, _dump(alerts))

    else:
        logger.debug("Ignoring unknown realtime action %r from %s", action, session.username)


@router.websocket("/api/v1/ws/alerts")
async def ws_alerts(websocket: WebSocket, gate: ConnectionGate = Depends(get_connection_gate)):
    """告警实时推送通道，身份在握手时绑定，之后不再逐条鉴权。"""
    session = await gate.admit(websocket)
    if session is None:
        return
    try:
        await _send_snapshot(session)
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Ignoring malformed realtime frame from %s", session.username)
                continue
            try:
                await _handle_action(session, message)
            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.warning("Realtime action failed for %s: %s", session.username, e)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("告警 WebSocket 异常 (alert websocket error) for %s: %s", session.username, e)
    finally:
        gate.registry.unregister(session)
