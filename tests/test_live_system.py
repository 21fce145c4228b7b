"""
tests.test_live_system
~~~~~~~~~~~~~~~~~~~~~~

LiveSystem 业务编排层单元测试。

仓库全部用 ``AsyncMock`` 替换，连接中心用 Mock 记录推送调用，
不依赖 MongoDB 与真实 WebSocket。
"""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.schemas.live_events import (
    COMMENT_RECEIVED,
    GIFT_RECEIVED,
    INITIAL_STATE,
    LIKE_RECEIVED,
    PEER_COUNT,
    STREAM_COUNTS,
    STREAMING_STATUS_UPDATE,
    UPDATE_ANIMATION,
    UPDATE_EMOTION,
    UPDATE_EXPRESSION,
    EmotionPayload,
    ExpressionPayload,
    HeartbeatPayload,
    ViewerCountPayload,
)
from app.schemas.live_interactions import (
    AnimationUpdateRequest,
    CommentData,
    CommentRequest,
    EmotionUpdateRequest,
    GiftData,
    GiftRequest,
    LikeData,
    LikeRequest,
    StreamStatusData,
)
from app.services.live_system import LiveSystem

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def mock_hub() -> MagicMock:
    hub = MagicMock()
    hub.connect = AsyncMock()
    hub.send_to = AsyncMock()
    hub.publish_global = AsyncMock()
    hub.publish_to_channel = AsyncMock()
    hub.close_all = AsyncMock()
    hub.peer_count = 1
    return hub


def make_system(**kwargs) -> LiveSystem:
    status_repo = MagicMock()
    status_repo.record_heartbeat = AsyncMock()
    status_repo.get = AsyncMock(return_value=None)
    status_repo.find_stale = AsyncMock(return_value=[])
    comments = MagicMock()
    comments.count = AsyncMock(return_value=0)
    comments.save = AsyncMock()
    likes = MagicMock()
    likes.count = AsyncMock(return_value=0)
    likes.save = AsyncMock()
    gifts = MagicMock()
    gifts.save = AsyncMock()
    return LiveSystem(
        status_repo=status_repo, comments=comments, likes=likes, gifts=gifts,
        hub=mock_hub(), **kwargs,
    )


def global_events(system: LiveSystem, event: str) -> list:
    return [c.args[1] for c in system.hub.publish_global.call_args_list if c.args[0] == event]


def channel_events(system: LiveSystem, channel: str) -> list:
    return [c.args[1] for c in system.hub.publish_to_channel.call_args_list if c.args[0] == channel]


# ── 连接与直播间成员 ─────────────────────────────────────────────────

class TestMembership:
    """测试加入/离开/断开时的人数推送。"""

    @pytest.mark.asyncio
    async def test_connect_sends_initial_state_and_peer_count(self) -> None:
        system = make_system()
        system.like_total, system.comment_total = 5, 3
        ws = MagicMock()

        await system.connect("c1", ws)

        system.hub.connect.assert_awaited_once_with("c1", ws)
        event, payload = system.hub.send_to.call_args.args[1:]
        assert event == INITIAL_STATE
        assert (payload.peer_count, payload.likes, payload.comment_count) == (1, 5, 3)
        assert len(global_events(system, PEER_COUNT)) == 1

    @pytest.mark.asyncio
    async def test_join_emits_snapshot(self) -> None:
        system = make_system()

        await system.join_stream("c1", "A")

        assert system.viewer_count("A") == 1
        snapshots = global_events(system, STREAM_COUNTS)
        assert [s.model_dump() for s in snapshots] == [{"A": 1}]

    @pytest.mark.asyncio
    async def test_rejoin_same_stream_does_not_emit(self) -> None:
        system = make_system()
        await system.join_stream("c1", "A")
        system.hub.publish_global.reset_mock()

        await system.join_stream("c1", "A")

        system.hub.publish_global.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_leave_emits_stream_count_and_snapshot(self) -> None:
        system = make_system()
        await system.join_stream("c1", "A")

        await system.leave_stream("c1", "A")

        assert channel_events(system, "A_viewer_count") == [ViewerCountPayload(count=0)]
        assert global_events(system, STREAM_COUNTS)[-1].model_dump() == {}

    @pytest.mark.asyncio
    async def test_disconnect_cleans_registry(self) -> None:
        system = make_system()
        await system.join_stream("c1", "A")

        await system.disconnect("c1")

        system.hub.disconnect.assert_called_once_with("c1")
        assert system.all_counts() == {}
        assert global_events(system, STREAM_COUNTS)[-1].model_dump() == {}
        assert len(global_events(system, PEER_COUNT)) == 1

    @pytest.mark.asyncio
    async def test_disconnect_outside_stream_skips_snapshot(self) -> None:
        system = make_system()

        await system.disconnect("c1")

        assert global_events(system, STREAM_COUNTS) == []


# ── 主播心跳 ──────────────────────────────────────────────────────────

class TestUpdateStatus:
    """测试主播心跳上报。"""

    @pytest.mark.asyncio
    async def test_heartbeat_publishes_status_and_channel(self) -> None:
        system = make_system()
        system.status_repo.record_heartbeat.return_value = StreamStatusData(
            agent_id="A", is_live=True, last_heartbeat_at=NOW, started_at=NOW,
        )
        await system.join_stream("c1", "A")

        status = await system.update_status("A", title="晚间直播")

        system.status_repo.record_heartbeat.assert_awaited_once_with(
            "A", is_live=True, title="晚间直播",
        )
        assert status.viewers == 1
        assert global_events(system, STREAMING_STATUS_UPDATE) == [status]
        assert channel_events(system, "A_heartbeat") == [
            HeartbeatPayload(last_heartbeat_at=NOW, is_live=True, viewers=1),
        ]

    @pytest.mark.asyncio
    async def test_get_status_adds_viewers(self) -> None:
        system = make_system()
        system.status_repo.get.return_value = StreamStatusData(
            agent_id="A", is_live=True, last_heartbeat_at=NOW,
        )

        status = await system.get_status("A")

        assert status is not None
        assert status.viewers == 0

    @pytest.mark.asyncio
    async def test_get_status_missing(self) -> None:
        assert await make_system().get_status("nobody") is None


# ── 观众互动 ──────────────────────────────────────────────────────────

class TestInteractions:
    """测试评论、点赞与礼物。"""

    @pytest.mark.asyncio
    async def test_comment_is_filtered_saved_and_broadcast(self) -> None:
        system = make_system(comment_filter=lambda text: text.replace("坏", "*"))
        saved = CommentData(agent_id="A", user="u1", message="*话", created_at=NOW)
        system.comments.save.return_value = saved
        request = CommentRequest(agent_id="A", user="u1", message="坏话")

        comment = await system.add_comment(request)

        system.comments.save.assert_awaited_once_with(request, "*话")
        assert comment is saved
        assert system.comment_total == 1
        payload = global_events(system, COMMENT_RECEIVED)[0]
        assert payload.comment_count == 1
        assert channel_events(system, f"A_{COMMENT_RECEIVED}") == [payload]

    @pytest.mark.asyncio
    async def test_like_increments_total(self) -> None:
        system = make_system()
        like = LikeData(agent_id="A", user="u1", created_at=NOW)
        system.likes.save.return_value = like

        await system.add_like(LikeRequest(agent_id="A", user="u1"))

        assert system.like_total == 1
        assert global_events(system, LIKE_RECEIVED)[0].likes == 1
        assert channel_events(system, f"A_{LIKE_RECEIVED}") == [like]

    @pytest.mark.asyncio
    async def test_animation_without_agent_is_global_only(self) -> None:
        system = make_system()

        await system.update_animation(AnimationUpdateRequest(animation="wave"))

        assert len(global_events(system, UPDATE_ANIMATION)) == 1
        system.hub.publish_to_channel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gift_goes_to_recipient_channel_only(self) -> None:
        """礼物只通知收礼主播，不做全局广播，也不影响点赞/评论计数。"""
        system = make_system()
        request = GiftRequest(
            recipient_agent_id="A", sender_public_key="pk-1", gift_name="rocket", tx_hash="0xabc",
        )
        saved = GiftData(**request.model_dump(exclude={"handle"}), created_at=NOW)
        system.gifts.save.return_value = saved

        gift = await system.add_gift(request)

        system.gifts.save.assert_awaited_once_with(request)
        assert gift is saved
        assert channel_events(system, f"A_{GIFT_RECEIVED}") == [saved]
        system.hub.publish_global.assert_not_awaited()
        assert (system.like_total, system.comment_total) == (0, 0)


class TestUpdateEmotion:
    """测试表情、动作、情绪联动推送。"""

    @pytest.mark.asyncio
    async def test_pushes_expression_animation_and_emotion(self) -> None:
        system = make_system()
        request = EmotionUpdateRequest(
            agent_id="A", expression="smile", animation="wave", emotion="happy",
        )

        result = await system.update_emotion(request)

        assert result is request
        assert global_events(system, UPDATE_EXPRESSION) == [
            ExpressionPayload(agent_id="A", expression="smile"),
        ]
        assert global_events(system, UPDATE_ANIMATION)[0].animation == "wave"
        assert global_events(system, UPDATE_EMOTION) == [EmotionPayload(agent_id="A", emotion="happy")]
        assert len(channel_events(system, f"A_{UPDATE_EXPRESSION}")) == 1
        assert len(channel_events(system, f"A_{UPDATE_ANIMATION}")) == 1
        assert channel_events(system, f"A_{UPDATE_EMOTION}") == [
            EmotionPayload(agent_id="A", emotion="happy"),
        ]

    @pytest.mark.asyncio
    async def test_expression_only(self) -> None:
        system = make_system()

        await system.update_emotion(EmotionUpdateRequest(expression="smile"))

        assert len(global_events(system, UPDATE_EXPRESSION)) == 1
        assert global_events(system, UPDATE_ANIMATION) == []
        assert global_events(system, UPDATE_EMOTION) == []
        system.hub.publish_to_channel.assert_not_awaited()


# ── 生命周期 ──────────────────────────────────────────────────────────

class TestLifecycle:
    """测试启动与关闭。"""

    @pytest.mark.asyncio
    async def test_start_loads_totals_and_stop_closes(self) -> None:
        system = make_system(viewer_count_interval=60, liveness_sweep_interval=60)
        system.likes.count.return_value = 4
        system.comments.count.return_value = 2

        await system.start()
        assert system.count_task.is_running
        assert system.liveness_task.is_running
        assert (system.like_total, system.comment_total) == (4, 2)

        await system.stop()
        assert not system.count_task.is_running
        assert not system.liveness_task.is_running
        system.hub.close_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_survives_count_failure(self) -> None:
        system = make_system(viewer_count_interval=60, liveness_sweep_interval=60)
        system.likes.count.side_effect = ConnectionError("mongo down")

        await system.start()

        assert system.like_total == 0
        assert system.count_task.is_running
        await system.stop()
