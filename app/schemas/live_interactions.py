"""
app.schemas.live_interactions
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播状态、评论、点赞、礼物与形象控制相关的 Pydantic 请求/响应模型。
"""
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


def _new_id() -> str:
    return uuid.uuid4().hex


# ── 直播状态 ──────────────────────────────────────────────────────────

class StreamStatusData(BaseModel):
    """``streaming_status`` 集合中单个主播的直播状态。"""

    agent_id: str = Field(..., description="主播唯一标识")
    title: str | None = Field(default=None, description="直播标题")
    is_live: bool = Field(default=False, description="是否在播")
    last_heartbeat_at: datetime = Field(..., description="最近一次心跳时间（UTC）")
    started_at: datetime | None = Field(default=None, description="本次开播时间")
    updated_at: datetime | None = Field(default=None, description="最后更新时间")
    viewers: int | None = Field(default=None, description="当前观众人数（仅响应中携带）")


class StreamStatusUpdateRequest(BaseModel):
    """主播端上报的心跳/状态更新。"""

    title: str | None = Field(default=None, max_length=200, description="直播标题")
    is_live: bool = Field(default=True, description="是否在播")


class WsStreamStatusUpdate(StreamStatusUpdateRequest):
    """WebSocket ``update_streaming_status`` 事件载荷。"""

    agent_id: str = Field(..., min_length=1, description="主播唯一标识")


class ViewerCountData(BaseModel):
    agent_id: str = Field(..., description="主播唯一标识")
    count: int = Field(..., ge=0, description="当前观众人数")


class StreamStatsData(BaseModel):
    likes: int = Field(..., ge=0, description="点赞总数")
    comments: int = Field(..., ge=0, description="评论总数")


# ── 评论 / 点赞 ───────────────────────────────────────────────────────

class CommentRequest(BaseModel):
    """WebSocket ``new_comment`` 事件载荷。"""

    agent_id: str = Field(..., min_length=1, description="评论所属主播")
    user: str = Field(..., min_length=1, description="评论用户标识")
    message: str = Field(..., min_length=1, max_length=500, description="评论内容")
    handle: str | None = Field(default=None, description="用户昵称")
    avatar: str | None = Field(default=None, description="用户头像 URL")


class CommentData(BaseModel):
    id: str = Field(default_factory=_new_id, description="评论 ID")
    agent_id: str
    user: str
    message: str
    handle: str | None = None
    avatar: str | None = None
    read_by_agent: bool = False
    created_at: datetime


class CommentPageData(BaseModel):
    comments: list[CommentData] = Field(..., description="评论列表（新的在前）")
    total: int = Field(..., ge=0, description="满足条件的评论总数")


class UnreadCommentPageData(BaseModel):
    """主播端拉取的未读评论。"""

    comments: list[CommentData] = Field(..., description="未读评论（新的在前）")
    count: int = Field(..., ge=0, description="本次返回条数")
    since: datetime | None = Field(default=None, description="查询起始时间")
    has_more: bool = Field(..., description="是否可能还有更多")


class MarkCommentsReadRequest(BaseModel):
    comment_ids: list[str] = Field(..., description="要标记为已读的评论 ID")


class MarkReadData(BaseModel):
    modified_count: int = Field(..., ge=0, description="实际被修改的条数")


class LikeRequest(BaseModel):
    """WebSocket ``new_like`` 事件载荷。"""

    agent_id: str = Field(..., min_length=1, description="点赞所属主播")
    user: str = Field(..., min_length=1, description="点赞用户标识")
    handle: str | None = Field(default=None, description="用户昵称")


class LikeData(BaseModel):
    agent_id: str
    user: str
    handle: str | None = None
    created_at: datetime


# ── 礼物 ──────────────────────────────────────────────────────────────

class GiftRequest(BaseModel):
    """WebSocket ``new_gift`` 事件载荷。

    链上转账由客户端完成，这里只记录结果（``tx_hash``）并通知主播。
    """

    recipient_agent_id: str = Field(..., min_length=1, description="收礼主播")
    sender_public_key: str = Field(..., min_length=1, description="送礼人钱包公钥")
    recipient_wallet: str | None = Field(default=None, description="收礼钱包地址")
    gift_name: str = Field(..., min_length=1, max_length=100, description="礼物名称")
    gift_count: int = Field(default=1, ge=1, description="礼物数量")
    coins_total: float = Field(default=0, ge=0, description="礼物总价值")
    tx_hash: str = Field(..., min_length=1, description="转账交易哈希")
    icon: str | None = Field(default=None, description="礼物图标")
    handle: str | None = Field(default=None, description="送礼人昵称")
    avatar: str | None = Field(default=None, description="送礼人头像 URL")


class GiftData(BaseModel):
    id: str = Field(default_factory=_new_id, description="礼物记录 ID")
    recipient_agent_id: str
    sender_public_key: str
    recipient_wallet: str | None = None
    gift_name: str
    gift_count: int
    coins_total: float
    tx_hash: str
    icon: str | None = None
    handle: str = "Anonymous"
    avatar: str | None = None
    read_by_agent: bool = False
    created_at: datetime


class GiftPageData(BaseModel):
    gifts: list[GiftData] = Field(..., description="礼物列表（新的在前）")
    page: int = Field(..., ge=1, description="当前页码")
    total_pages: int = Field(..., ge=0, description="总页数")
    total: int = Field(..., ge=0, description="满足条件的礼物总数")
    has_more: bool = Field(..., description="是否还有下一页")


class MarkGiftsReadRequest(BaseModel):
    gift_ids: list[str] = Field(..., description="要标记为已读的礼物 ID")


# ── 形象控制 ──────────────────────────────────────────────────────────

class AnimationUpdateRequest(BaseModel):
    agent_id: str | None = Field(default=None, description="目标主播，为空表示全局")
    animation: str = Field(..., min_length=1, max_length=100, description="动画名称")


class ExpressionUpdateRequest(BaseModel):
    agent_id: str | None = Field(default=None, description="目标主播，为空表示全局")
    expression: str = Field(..., min_length=1, max_length=100, description="表情名称")


class EmotionUpdateRequest(BaseModel):
    """一次性切换表情、动作与情绪。表情必填，动作和情绪可选。"""

    agent_id: str | None = Field(default=None, description="目标主播，为空表示全局")
    expression: str = Field(..., min_length=1, max_length=100, description="表情名称")
    animation: str | None = Field(default=None, max_length=100, description="动画名称")
    emotion: str | None = Field(default=None, max_length=100, description="情绪名称")
