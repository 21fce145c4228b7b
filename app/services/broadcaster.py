"""
app.services.broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~

实时广播层 —— ``BroadcastGateway`` 协议与基于 WebSocket 的实现 ``ConnectionHub``。

核心组件（人数广播、心跳巡检）只依赖 ``BroadcastGateway`` 协议，
不关心底层传输；测试中用记录调用的假实现替换即可。

所有消息以 ``{"event": <事件名/频道名>, "data": <载荷>}`` 的 JSON 文本发送。
频道消息同样发给全部连接，由前端按事件名订阅自己关心的直播间。
"""
from __future__ import annotations

import asyncio
from typing import Protocol

from fastapi import WebSocket
from pydantic import BaseModel

from app.core.logging import get_logger
from app.schemas.live_events import LiveEvent

logger = get_logger(__name__)


class BroadcastGateway(Protocol):
    """"发给所有人"与"发到指定频道"两种推送能力。发出即忘，不保证送达。"""

    async def publish_global(self, event: str, payload: BaseModel) -> None: ...

    async def publish_to_channel(self, channel: str, payload: BaseModel) -> None: ...


def encode_event(event: str, payload: BaseModel | None) -> str:
    """把事件名与载荷编码为 WebSocket 文本帧。"""
    data = payload.model_dump(mode="json") if payload is not None else None
    return LiveEvent(event=event, data=data).model_dump_json()


class ConnectionHub:
    """WebSocket 连接中心。

    以连接 ID 为键保存所有在线的 WebSocket，提供全量广播与单连接发送能力。
    广播时发送失败的连接会被移除。

    Attributes:
        active_connections: 连接 ID → WebSocket。
    """

    def __init__(self) -> None:
        self.active_connections: dict[str, WebSocket] = {}

    async def connect(self, connection_id: str, websocket: WebSocket) -> None:
        """接受新连接并加入在线表。"""
        await websocket.accept()
        self.active_connections[connection_id] = websocket

    def disconnect(self, connection_id: str) -> None:
        """从在线表移除断开的连接。"""
        self.active_connections.pop(connection_id, None)

    async def publish_global(self, event: str, payload: BaseModel) -> None:
        await self._broadcast(encode_event(event, payload))

    async def publish_to_channel(self, channel: str, payload: BaseModel) -> None:
        await self._broadcast(encode_event(channel, payload))

    async def send_to(self, connection_id: str, event: str, payload: BaseModel | None = None) -> None:
        """只发给指定连接（如 ``initial_state``、错误提示）。"""
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            return
        try:
            await websocket.send_text(encode_event(event, payload))
        except Exception as e:
            logger.warning("单播失败，移除断开的连接 | conn=%s | %s", connection_id, e)
            self.disconnect(connection_id)

    async def _broadcast(self, message: str) -> None:
        targets = list(self.active_connections.items())
        if not targets:
            return
        results = await asyncio.gather(
            *(ws.send_text(message) for _, ws in targets),
            return_exceptions=True,
        )
        for (connection_id, _), result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("广播失败，移除断开的连接 | conn=%s", connection_id)
                self.disconnect(connection_id)

    async def close_all(self, code: int = 1001) -> None:
        """关闭所有连接（进程退出前调用）。"""
        targets = list(self.active_connections.values())
        self.active_connections.clear()
        await asyncio.gather(
            *(ws.close(code=code) for ws in targets),
            return_exceptions=True,
        )

    @property
    def peer_count(self) -> int:
        """当前在线连接数。"""
        return len(self.active_connections)
