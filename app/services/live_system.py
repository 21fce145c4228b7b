"""
app.services.live_system
~~~~~~~~~~~~~~~~~~~~~~~~

直播系统 —— 组装在线登记表、广播中心、人数推送、心跳巡检与各仓库。

不做模块级单例：在 FastAPI lifespan 中通过 ``create_live_system()`` 创建，
挂载到 ``app.state.live_system``，路由通过依赖注入获取。
"""
from __future__ import annotations

from collections.abc import Callable

from fastapi import WebSocket

from app.core.logging import get_logger
from app.core.settings import settings
from app.db import get_database
from app.db.interaction_repository import CommentRepository, GiftRepository, LikeRepository
from app.db.streaming_status_repository import StreamingStatusRepository
from app.schemas.live_events import (
    COMMENT_RECEIVED,
    GIFT_RECEIVED,
    INITIAL_STATE,
    LIKE_RECEIVED,
    PEER_COUNT,
    STREAMING_STATUS_UPDATE,
    UPDATE_ANIMATION,
    UPDATE_EMOTION,
    UPDATE_EXPRESSION,
    AnimationPayload,
    CommentReceivedPayload,
    EmotionPayload,
    ExpressionPayload,
    HeartbeatPayload,
    InitialStatePayload,
    LikeReceivedPayload,
    PeerCountPayload,
    agent_channel,
    heartbeat_channel,
)
from app.schemas.live_interactions import (
    AnimationUpdateRequest,
    CommentData,
    CommentRequest,
    EmotionUpdateRequest,
    ExpressionUpdateRequest,
    GiftData,
    GiftRequest,
    LikeData,
    LikeRequest,
    StreamStatsData,
    StreamStatusData,
)
from app.services.broadcaster import ConnectionHub
from app.services.count_emitter import CountEmitter
from app.services.liveness_monitor import LivenessMonitor
from app.services.periodic import PeriodicTask
from app.services.presence import PresenceRegistry

logger = get_logger(__name__)

CommentFilter = Callable[[str], str]


def _passthrough(text: str) -> str:
    return text


class LiveSystem:
    """直播系统。

    - 连接生命周期：``connect`` / ``join_stream`` / ``leave_stream`` / ``disconnect``
    - 主播心跳：``update_status``
    - 观众互动：``add_comment`` / ``add_like`` / ``add_gift``
    - 形象控制：``update_animation`` / ``update_expression`` / ``update_emotion``
    - 后台巡检：``start`` / ``stop``

    Attributes:
        registry: 观众在线登记表。
        hub: WebSocket 连接中心（同时是广播通道）。
        status_repo: 直播状态仓库。
        comments: 评论仓库。
        likes: 点赞仓库。
        gifts: 礼物仓库。
        count_emitter: 人数推送器。
        liveness_monitor: 心跳巡检器。
    """

    def __init__(
        self,
        status_repo: StreamingStatusRepository,
        comments: CommentRepository,
        likes: LikeRepository,
        gifts: GiftRepository,
        hub: ConnectionHub | None = None,
        registry: PresenceRegistry | None = None,
        comment_filter: CommentFilter | None = None,
        viewer_count_interval: float = 5.0,
        liveness_sweep_interval: float = 15.0,
        heartbeat_timeout: float = 30.0,
    ) -> None:
        self.status_repo = status_repo
        self.comments = comments
        self.likes = likes
        self.gifts = gifts
        self.hub = hub or ConnectionHub()
        self.registry = registry or PresenceRegistry()
        self.comment_filter: CommentFilter = comment_filter or _passthrough

        self.count_emitter = CountEmitter(self.registry, self.hub)
        self.liveness_monitor = LivenessMonitor(
            status_repo, self.hub, heartbeat_timeout=heartbeat_timeout,
        )
        self.count_task = PeriodicTask(
            "viewer-count", viewer_count_interval, self.count_emitter.sweep,
        )
        self.liveness_task = PeriodicTask(
            "liveness", liveness_sweep_interval, self.liveness_monitor.sweep,
        )

        # 全站互动计数，启动时从数据库加载，之后在内存中累加
        self.like_total = 0
        self.comment_total = 0

    # ── 生命周期 ──────────────────────────────────────────────────────

    async def start(self) -> None:
        """加载互动计数并启动两个后台巡检。"""
        try:
            self.like_total = await self.likes.count()
            self.comment_total = await self.comments.count()
            logger.info(
                "互动计数已加载 | likes=%d | comments=%d",
                self.like_total, self.comment_total,
            )
        except Exception as e:
            logger.error("加载互动计数失败，从 0 开始: %s", e, exc_info=True)
        self.count_task.start()
        self.liveness_task.start()

    async def stop(self) -> None:
        """先停掉巡检，再关闭所有连接，避免巡检往已关闭的通道推送。"""
        await self.count_task.stop()
        await self.liveness_task.stop()
        await self.hub.close_all()

    # ── 连接 ──────────────────────────────────────────────────────────

    async def connect(self, connection_id: str, websocket: WebSocket) -> None:
        """接入新连接：下发初始状态，并广播最新连接数。"""
        await self.hub.connect(connection_id, websocket)
        await self.hub.send_to(
            connection_id,
            INITIAL_STATE,
            InitialStatePayload(
                peer_count=self.hub.peer_count,
                likes=self.like_total,
                comment_count=self.comment_total,
            ),
        )
        await self.broadcast_peer_count()

    async def disconnect(self, connection_id: str) -> None:
        stream_id = self.registry.disconnect(connection_id)
        self.hub.disconnect(connection_id)
        if stream_id is not None:
            await self.count_emitter.emit_all()
        await self.broadcast_peer_count()

    async def join_stream(self, connection_id: str, agent_id: str) -> None:
        if self.registry.join(connection_id, agent_id):
            await self.count_emitter.emit_all()

    async def leave_stream(self, connection_id: str, agent_id: str) -> None:
        changed = self.registry.leave(connection_id, agent_id)
        await self.count_emitter.emit_stream(agent_id)
        if changed:
            await self.count_emitter.emit_all()

    async def broadcast_peer_count(self) -> None:
        await self.hub.publish_global(PEER_COUNT, PeerCountPayload(count=self.hub.peer_count))

    async def send_peer_count(self, connection_id: str) -> None:
        await self.hub.send_to(connection_id, PEER_COUNT, PeerCountPayload(count=self.hub.peer_count))

    # ── 查询 ──────────────────────────────────────────────────────────

    def viewer_count(self, agent_id: str) -> int:
        return self.registry.viewer_count(agent_id)

    def all_counts(self) -> dict[str, int]:
        return self.registry.all_counts()

    async def stream_stats(self, agent_id: str) -> StreamStatsData:
        return StreamStatsData(
            likes=await self.likes.count(agent_id),
            comments=await self.comments.count(agent_id),
        )

    async def get_status(self, agent_id: str) -> StreamStatusData | None:
        status = await self.status_repo.get(agent_id)
        if status is None:
            return None
        return status.model_copy(update={"viewers": self.viewer_count(agent_id)})

    # ── 主播心跳 ──────────────────────────────────────────────────────

    async def update_status(
        self, agent_id: str, is_live: bool = True, title: str | None = None,
    ) -> StreamStatusData:
        """记录一次心跳/状态上报，并推送状态变更与心跳事件。"""
        record = await self.status_repo.record_heartbeat(agent_id, is_live=is_live, title=title)
        viewers = self.viewer_count(agent_id)
        status = record.model_copy(update={"viewers": viewers})

        await self.hub.publish_global(STREAMING_STATUS_UPDATE, status)
        await self.hub.publish_to_channel(
            heartbeat_channel(agent_id),
            HeartbeatPayload(
                last_heartbeat_at=status.last_heartbeat_at,
                is_live=status.is_live,
                viewers=viewers,
            ),
        )
        return status

    # ── 观众互动 ──────────────────────────────────────────────────────

    async def add_comment(self, request: CommentRequest) -> CommentData:
        comment = await self.comments.save(request, self.comment_filter(request.message))
        self.comment_total += 1
        payload = CommentReceivedPayload(comment=comment, comment_count=self.comment_total)
        await self.hub.publish_global(COMMENT_RECEIVED, payload)
        await self.hub.publish_to_channel(agent_channel(comment.agent_id, COMMENT_RECEIVED), payload)
        return comment

    async def add_like(self, request: LikeRequest) -> LikeData:
        like = await self.likes.save(request)
        self.like_total += 1
        await self.hub.publish_global(LIKE_RECEIVED, LikeReceivedPayload(likes=self.like_total))
        await self.hub.publish_to_channel(agent_channel(like.agent_id, LIKE_RECEIVED), like)
        return like

    async def add_gift(self, request: GiftRequest) -> GiftData:
        """记录一笔礼物，只推送到收礼主播的 ``<agent_id>_gift_received`` 频道。"""
        gift = await self.gifts.save(request)
        logger.info(
            "收到礼物 | agent=%s | gift=%s x%d | tx=%s",
            gift.recipient_agent_id, gift.gift_name, gift.gift_count, gift.tx_hash,
        )
        await self.hub.publish_to_channel(agent_channel(gift.recipient_agent_id, GIFT_RECEIVED), gift)
        return gift

    # ── 形象控制 ──────────────────────────────────────────────────────

    async def update_animation(self, request: AnimationUpdateRequest) -> AnimationPayload:
        payload = AnimationPayload(agent_id=request.agent_id, animation=request.animation)
        await self.hub.publish_global(UPDATE_ANIMATION, payload)
        if request.agent_id:
            await self.hub.publish_to_channel(agent_channel(request.agent_id, UPDATE_ANIMATION), payload)
        return payload

    async def update_expression(self, request: ExpressionUpdateRequest) -> ExpressionPayload:
        payload = ExpressionPayload(agent_id=request.agent_id, expression=request.expression)
        await self.hub.publish_global(UPDATE_EXPRESSION, payload)
        if request.agent_id:
            await self.hub.publish_to_channel(agent_channel(request.agent_id, UPDATE_EXPRESSION), payload)
        return payload

    async def update_emotion(self, request: EmotionUpdateRequest) -> EmotionUpdateRequest:
        """表情、动作、情绪一起切换；未提供的动作/情绪不推送。"""
        await self.update_expression(
            ExpressionUpdateRequest(agent_id=request.agent_id, expression=request.expression),
        )
        if request.animation:
            await self.update_animation(
                AnimationUpdateRequest(agent_id=request.agent_id, animation=request.animation),
            )
        if request.emotion:
            payload = EmotionPayload(agent_id=request.agent_id, emotion=request.emotion)
            await self.hub.publish_global(UPDATE_EMOTION, payload)
            if request.agent_id:
                await self.hub.publish_to_channel(agent_channel(request.agent_id, UPDATE_EMOTION), payload)
        return request


def create_live_system() -> LiveSystem:
    """基于全局 MongoDB 连接与配置创建 ``LiveSystem``。须在 ``connect_mongo()`` 之后调用。"""
    db = get_database()
    return LiveSystem(
        status_repo=StreamingStatusRepository(db),
        comments=CommentRepository(db),
        likes=LikeRepository(db),
        gifts=GiftRepository(db),
        viewer_count_interval=settings.VIEWER_COUNT_INTERVAL,
        liveness_sweep_interval=settings.LIVENESS_SWEEP_INTERVAL,
        heartbeat_timeout=settings.HEARTBEAT_TIMEOUT,
    )
