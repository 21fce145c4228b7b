"""
app.schemas.live_events
~~~~~~~~~~~~~~~~~~~~~~~

实时推送事件的载荷模型与频道命名。

每种事件都有显式的 Pydantic 载荷类型，广播层统一以
``{"event": <事件名>, "data": <载荷>}`` 的 JSON 信封发送。

频道命名需与前端保持兼容:
  - ``<agent_id>_viewer_count``   → 单个直播间观众人数
  - ``<agent_id>_heartbeat``      → 单个直播间心跳/在线状态
  - ``streaming_status_update``   → 全局直播状态变更
  - ``stream_counts``             → 全部直播间观众人数快照
  - ``<agent_id>_gift_received``  → 主播收到礼物
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import (
    BaseModel,
    Field,
    RootModel,
    SerializerFunctionWrapHandler,
    model_serializer,
)

from app.schemas.live_interactions import CommentData

# ── 全局事件名 ────────────────────────────────────────────────────────

STREAMING_STATUS_UPDATE = "streaming_status_update"
STREAM_COUNTS = "stream_counts"
PEER_COUNT = "peer_count"
INITIAL_STATE = "initial_state"
COMMENT_RECEIVED = "comment_received"
LIKE_RECEIVED = "like_received"
UPDATE_ANIMATION = "update_animation"
UPDATE_EXPRESSION = "update_expression"
UPDATE_EMOTION = "update_emotion"
GIFT_RECEIVED = "gift_received"
SYSTEM_NOTICE = "system_notice"
ERROR = "error"


# ── 频道命名 ──────────────────────────────────────────────────────────

def viewer_count_channel(agent_id: str) -> str:
    return f"{agent_id}_viewer_count"


def heartbeat_channel(agent_id: str) -> str:
    return f"{agent_id}_heartbeat"


def agent_channel(agent_id: str, event: str) -> str:
    """按 ``<agent_id>_<event>`` 规则拼接直播间专属频道名。"""
    return f"{agent_id}_{event}"


# ── 载荷模型 ──────────────────────────────────────────────────────────

class LiveEvent(BaseModel):
    """WebSocket 上收发的消息信封。"""

    event: str = Field(..., min_length=1, description="事件名或频道名")
    data: Any = Field(default=None, description="事件载荷")


class ViewerCountPayload(BaseModel):
    """单个直播间的观众人数。"""

    count: int = Field(..., ge=0, description="当前观众人数")


class StreamCountsPayload(RootModel[dict[str, int]]):
    """全部直播间的观众人数快照（agent_id → 人数）。"""


class HeartbeatPayload(BaseModel):
    """直播间心跳事件。"""

    last_heartbeat_at: datetime = Field(..., description="最近一次心跳时间（UTC）")
    is_live: bool = Field(..., description="是否在播")
    viewers: int | None = Field(default=None, description="当前观众人数（下播时不携带）")

    @model_serializer(mode="wrap")
    def _omit_missing_viewers(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        data = handler(self)
        if self.viewers is None:
            data.pop("viewers", None)
        return data


class PeerCountPayload(BaseModel):
    count: int = Field(..., ge=0, description="当前 WebSocket 连接总数")


class InitialStatePayload(BaseModel):
    """新连接建立后下发的初始状态。"""

    peer_count: int = Field(..., ge=0, description="当前 WebSocket 连接总数")
    likes: int = Field(..., ge=0, description="全站点赞总数")
    comment_count: int = Field(..., ge=0, description="全站评论总数")


class CommentReceivedPayload(BaseModel):
    comment: CommentData
    comment_count: int = Field(..., ge=0, description="全站评论总数")


class LikeReceivedPayload(BaseModel):
    likes: int = Field(..., ge=0, description="全站点赞总数")


class AnimationPayload(BaseModel):
    agent_id: str | None = Field(default=None, description="目标主播，为空表示全局")
    animation: str = Field(..., min_length=1, description="动画名称")


class ExpressionPayload(BaseModel):
    agent_id: str | None = Field(default=None, description="目标主播，为空表示全局")
    expression: str = Field(..., min_length=1, description="表情名称")


class EmotionPayload(BaseModel):
    agent_id: str | None = Field(default=None, description="目标主播，为空表示全局")
    emotion: str = Field(..., min_length=1, description="情绪名称")


class SystemNoticePayload(BaseModel):
    message: str


class ErrorPayload(BaseModel):
    message: str
