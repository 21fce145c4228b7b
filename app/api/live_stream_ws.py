"""
app.api.live_stream_ws
~~~~~~~~~~~~~~~~~~~~~~

WebSocket 实时交互接口。

提供 ``/ws`` 端点。每个连接分配一个连接 ID，通过事件加入/离开某个主播的直播间，
并可以发送评论、点赞、开播状态。所有消息均为 JSON 文本:

    {"event": "<事件名>", "data": <载荷>}

客户端事件:
  - ``join_agent_stream``       data 为 agent_id
  - ``leave_agent_stream``      data 为 agent_id
  - ``request_peer_count``      无 data
  - ``update_streaming_status`` ``{agent_id, is_live, title}``
  - ``new_comment``             ``{agent_id, user, message, handle, avatar}``
  - ``new_like``                ``{agent_id, user, handle}``
  - ``new_gift``                ``{recipient_agent_id, sender_public_key, gift_name, tx_hash, ...}``

处理单条消息出错只会给发送方回一个 ``error`` 事件，连接保持不断。
"""
from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.core.logging import get_logger, request_id_ctx_var
from app.core.rate_limit import WebSocketRateLimiter
from app.core.settings import settings
from app.schemas.live_events import (
    ERROR,
    SYSTEM_NOTICE,
    ErrorPayload,
    LiveEvent,
    SystemNoticePayload,
)
from app.schemas.live_interactions import (
    CommentRequest,
    GiftRequest,
    LikeRequest,
    WsStreamStatusUpdate,
)
from app.services.live_system import LiveSystem

logger = get_logger(__name__)

router: APIRouter = APIRouter()

EventHandler = Callable[[LiveSystem, str, Any, WebSocketRateLimiter], Awaitable[None]]


def _require_agent_id(data: Any) -> str:
    if not isinstance(data, str) or not data.strip():
        raise ValueError("agent_id 不能为空")
    return data.strip()


async def _on_join(system: LiveSystem, connection_id: str, data: Any, _: WebSocketRateLimiter) -> None:
    await system.join_stream(connection_id, _require_agent_id(data))


async def _on_leave(system: LiveSystem, connection_id: str, data: Any, _: WebSocketRateLimiter) -> None:
    await system.leave_stream(connection_id, _require_agent_id(data))


async def _on_peer_count(system: LiveSystem, connection_id: str, data: Any, _: WebSocketRateLimiter) -> None:
    await system.send_peer_count(connection_id)


async def _on_streaming_status(
    system: LiveSystem, connection_id: str, data: Any, _: WebSocketRateLimiter,
) -> None:
    update = WsStreamStatusUpdate.model_validate(data)
    await system.update_status(update.agent_id, is_live=update.is_live, title=update.title)


async def _on_comment(
    system: LiveSystem, connection_id: str, data: Any, limiter: WebSocketRateLimiter,
) -> None:
    # 先校验再限流，格式错误的消息不占用发送额度
    request = CommentRequest.model_validate(data)
    if not limiter.is_allowed(connection_id):
        await system.hub.send_to(
            connection_id, SYSTEM_NOTICE, SystemNoticePayload(message="评论发送太快啦，请慢一点~"),
        )
        return
    await system.add_comment(request)


async def _on_like(system: LiveSystem, connection_id: str, data: Any, _: WebSocketRateLimiter) -> None:
    await system.add_like(LikeRequest.model_validate(data))


async def _on_gift(system: LiveSystem, connection_id: str, data: Any, _: WebSocketRateLimiter) -> None:
    await system.add_gift(GiftRequest.model_validate(data))


EVENT_HANDLERS: dict[str, EventHandler] = {
    "join_agent_stream": _on_join,
    "leave_agent_stream": _on_leave,
    "request_peer_count": _on_peer_count,
    "update_streaming_status": _on_streaming_status,
    "new_comment": _on_comment,
    "new_like": _on_like,
    "new_gift": _on_gift,
}


async def handle_client_message(
    system: LiveSystem,
    connection_id: str,
    raw: str,
    limiter: WebSocketRateLimiter,
) -> None:
    """解析并分发一条客户端消息。"""
    try:
        message = LiveEvent.model_validate_json(raw)
    except ValidationError:
        await system.hub.send_to(connection_id, ERROR, ErrorPayload(message="消息格式错误"))
        return

    handler = EVENT_HANDLERS.get(message.event)
    if handler is None:
        await system.hub.send_to(
            connection_id, ERROR, ErrorPayload(message=f"未知事件: {message.event}"),
        )
        return

    try:
        await handler(system, connection_id, message.data, limiter)
    except ValueError as e:
        # pydantic.ValidationError 也是 ValueError
        await system.hub.send_to(
            connection_id, ERROR, ErrorPayload(message=f"{message.event} 参数错误: {e}"),
        )
    except Exception as e:
        logger.error("处理事件失败 | event=%s | %s", message.event, e, exc_info=True)
        await system.hub.send_to(
            connection_id, ERROR, ErrorPayload(message=f"{message.event} 处理失败"),
        )


@router.websocket("/ws")
async def websocket_live_endpoint(websocket: WebSocket) -> None:
    """WebSocket 直播互动端点。

    连接建立后下发 ``initial_state``，断开时自动退出所在直播间并广播最新人数。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    connection_id = uuid.uuid4().hex
    token = request_id_ctx_var.set(f"ws-{connection_id[:8]}")
    system: LiveSystem = websocket.app.state.live_system
    ws_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_RATE_LIMIT_INTERVAL)

    try:
        await system.connect(connection_id, websocket)
        logger.info("连接建立 | 在线: %d", system.hub.peer_count)
        try:
            while True:
                raw: str = await websocket.receive_text()
                await handle_client_message(system, connection_id, raw, ws_limiter)
        except WebSocketDisconnect:
            pass  # 正常断开
        except Exception as e:
            logger.error("WebSocket 接收异常: %s", e, exc_info=True)
        finally:
            await system.disconnect(connection_id)
            ws_limiter.remove_client(connection_id)
            logger.info("连接断开 | 在线: %d", system.hub.peer_count)
    finally:
        request_id_ctx_var.reset(token)
