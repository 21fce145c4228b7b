"""
tests.test_live_stream_ws
~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 消息分发与端点生命周期单元测试。
"""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import WebSocketDisconnect

from app.api.live_stream_ws import handle_client_message, websocket_live_endpoint
from app.core.rate_limit import WebSocketRateLimiter
from app.schemas.live_events import ERROR, SYSTEM_NOTICE


def mock_system() -> MagicMock:
    system = MagicMock()
    for name in (
        "connect", "disconnect", "join_stream", "leave_stream", "send_peer_count",
        "update_status", "add_comment", "add_like", "add_gift",
    ):
        setattr(system, name, AsyncMock())
    system.hub.send_to = AsyncMock()
    system.hub.peer_count = 0
    return system


def frame(event: str, data=None) -> str:
    return json.dumps({"event": event, "data": data})


def sent_events(system: MagicMock) -> list[str]:
    return [c.args[1] for c in system.hub.send_to.call_args_list]


class TestHandleClientMessage:
    """测试单条消息的解析与分发。"""

    @pytest.mark.asyncio
    async def test_join_dispatches(self) -> None:
        system = mock_system()

        await handle_client_message(system, "c1", frame("join_agent_stream", " A "), WebSocketRateLimiter())

        system.join_stream.assert_awaited_once_with("c1", "A")

    @pytest.mark.asyncio
    async def test_leave_dispatches(self) -> None:
        system = mock_system()

        await handle_client_message(system, "c1", frame("leave_agent_stream", "A"), WebSocketRateLimiter())

        system.leave_stream.assert_awaited_once_with("c1", "A")

    @pytest.mark.asyncio
    async def test_streaming_status(self) -> None:
        system = mock_system()
        data = {"agent_id": "A", "is_live": False}

        await handle_client_message(system, "c1", frame("update_streaming_status", data), WebSocketRateLimiter())

        system.update_status.assert_awaited_once_with("A", is_live=False, title=None)

    @pytest.mark.asyncio
    async def test_invalid_json_replies_error(self) -> None:
        system = mock_system()

        await handle_client_message(system, "c1", "not json", WebSocketRateLimiter())

        assert sent_events(system) == [ERROR]

    @pytest.mark.asyncio
    async def test_unknown_event_replies_error(self) -> None:
        system = mock_system()

        await handle_client_message(system, "c1", frame("dance"), WebSocketRateLimiter())

        assert sent_events(system) == [ERROR]

    @pytest.mark.asyncio
    async def test_missing_agent_id_replies_error(self) -> None:
        system = mock_system()

        await handle_client_message(system, "c1", frame("join_agent_stream", ""), WebSocketRateLimiter())

        system.join_stream.assert_not_awaited()
        assert sent_events(system) == [ERROR]

    @pytest.mark.asyncio
    async def test_invalid_comment_replies_error(self) -> None:
        system = mock_system()

        await handle_client_message(system, "c1", frame("new_comment", {"agent_id": "A"}), WebSocketRateLimiter())

        system.add_comment.assert_not_awaited()
        assert sent_events(system) == [ERROR]

    @pytest.mark.asyncio
    async def test_comment_rate_limited(self) -> None:
        system = mock_system()
        limiter = WebSocketRateLimiter(interval_seconds=60)
        comment = frame("new_comment", {"agent_id": "A", "user": "u1", "message": "hi"})

        await handle_client_message(system, "c1", comment, limiter)
        await handle_client_message(system, "c1", comment, limiter)

        system.add_comment.assert_awaited_once()
        assert sent_events(system) == [SYSTEM_NOTICE]

    @pytest.mark.asyncio
    async def test_handler_failure_keeps_connection(self) -> None:
        system = mock_system()
        system.add_like.side_effect = ConnectionError("mongo down")

        await handle_client_message(
            system, "c1", frame("new_like", {"agent_id": "A", "user": "u1"}), WebSocketRateLimiter(),
        )

        assert sent_events(system) == [ERROR]

    @pytest.mark.asyncio
    async def test_gift_dispatches(self) -> None:
        system = mock_system()
        data = {
            "recipient_agent_id": "A",
            "sender_public_key": "pk-1",
            "gift_name": "rocket",
            "gift_count": 3,
            "tx_hash": "0xabc",
        }

        await handle_client_message(system, "c1", frame("new_gift", data), WebSocketRateLimiter())

        request = system.add_gift.call_args.args[0]
        assert (request.recipient_agent_id, request.gift_name, request.gift_count) == ("A", "rocket", 3)
        assert request.tx_hash == "0xabc"
        assert sent_events(system) == []

    @pytest.mark.asyncio
    async def test_gift_without_tx_hash_replies_error(self) -> None:
        system = mock_system()
        data = {"recipient_agent_id": "A", "sender_public_key": "pk-1", "gift_name": "rocket"}

        await handle_client_message(system, "c1", frame("new_gift", data), WebSocketRateLimiter())

        system.add_gift.assert_not_awaited()
        assert sent_events(system) == [ERROR]


class TestWebSocketEndpoint:
    """测试端点的连接与断开清理。"""

    @pytest.mark.asyncio
    async def test_disconnect_cleans_up(self) -> None:
        system = mock_system()
        ws = MagicMock()
        ws.app.state.live_system = system
        ws.receive_text = AsyncMock(side_effect=[frame("join_agent_stream", "A"), WebSocketDisconnect()])

        await websocket_live_endpoint(ws)

        system.connect.assert_awaited_once()
        connection_id = system.connect.call_args.args[0]
        system.join_stream.assert_awaited_once_with(connection_id, "A")
        system.disconnect.assert_awaited_once_with(connection_id)

    @pytest.mark.asyncio
    async def test_receive_error_still_disconnects(self) -> None:
        system = mock_system()
        ws = MagicMock()
        ws.app.state.live_system = system
        ws.receive_text = AsyncMock(side_effect=RuntimeError("socket broken"))

        await websocket_live_endpoint(ws)

        system.disconnect.assert_awaited_once()
