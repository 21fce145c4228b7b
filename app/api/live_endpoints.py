"""
app.api.live_endpoints
~~~~~~~~~~~~~~~~~~~~~~

直播 REST 接口 —— 观众人数、直播状态/心跳、互动统计、评论与礼物、形象控制。

端点:
  - ``GET  /agents/{agent_id}/viewers``   → 单个直播间观众人数
  - ``GET  /streams/counts``              → 全部直播间观众人数快照
  - ``GET  /streams/live``                → 在播且心跳未超时的直播间
  - ``GET  /streams/{agent_id}/stats``    → 点赞/评论总数
  - ``GET  /streams/{agent_id}/status``   → 直播状态
  - ``PUT  /streams/{agent_id}/status``   → 主播心跳/状态上报
  - ``GET  /comments``                    → 评论列表（分页，新的在前）
  - ``GET  /streams/{agent_id}/unread-comments`` → 主播端拉取未读评论
  - ``POST /comments/mark-read``          → 评论标记为已读
  - ``GET  /agents/{agent_id}/gifts``     → 主播收到的礼物（分页）
  - ``PUT  /agents/{agent_id}/gifts/mark-read`` → 礼物标记为已读
  - ``POST /update-animation``            → 推送形象动画
  - ``POST /update-expression``           → 推送形象表情
  - ``POST /update-emotion``              → 同时推送表情、动画与情绪
"""
import math
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.api.deps import get_live_system
from app.core.rate_limit import limiter
from app.core.settings import settings
from app.schemas.api_response import ApiResponse
from app.schemas.live_events import AnimationPayload, ExpressionPayload
from app.schemas.live_interactions import (
    AnimationUpdateRequest,
    CommentPageData,
    EmotionUpdateRequest,
    ExpressionUpdateRequest,
    GiftPageData,
    MarkCommentsReadRequest,
    MarkGiftsReadRequest,
    MarkReadData,
    StreamStatsData,
    StreamStatusData,
    StreamStatusUpdateRequest,
    UnreadCommentPageData,
    ViewerCountData,
)
from app.services.live_system import LiveSystem

router: APIRouter = APIRouter()


# ── 观众人数 ──────────────────────────────────────────────────────────

@router.get(
    "/agents/{agent_id}/viewers",
    summary="获取直播间观众人数",
    response_model=ApiResponse[ViewerCountData],
)
@limiter.limit("20/second")
async def viewer_count(
    request: Request, agent_id: str, system: LiveSystem = Depends(get_live_system),
):
    return ApiResponse.ok(
        data=ViewerCountData(agent_id=agent_id, count=system.viewer_count(agent_id)),
    )


@router.get(
    "/streams/counts",
    summary="获取全部直播间观众人数",
    response_model=ApiResponse[dict[str, int]],
)
@limiter.limit("10/second")
async def stream_counts(request: Request, system: LiveSystem = Depends(get_live_system)):
    """返回 ``agent_id → 人数`` 的快照，没有观众的直播间不出现。"""
    return ApiResponse.ok(data=system.all_counts())


# ── 直播状态 ──────────────────────────────────────────────────────────

@router.get(
    "/streams/live",
    summary="获取在播直播间列表",
    response_model=ApiResponse[list[StreamStatusData]],
)
@limiter.limit("10/second")
async def live_streams(request: Request, system: LiveSystem = Depends(get_live_system)):
    """返回在播且心跳未超时的直播间，附带当前观众人数。"""
    records = await system.status_repo.list_live(
        datetime.now(timezone.utc), settings.HEARTBEAT_TIMEOUT,
    )
    return ApiResponse.ok(
        data=[
            r.model_copy(update={"viewers": system.viewer_count(r.agent_id)})
            for r in records
        ],
    )


@router.get(
    "/streams/{agent_id}/stats",
    summary="获取直播间互动统计",
    response_model=ApiResponse[StreamStatsData],
)
@limiter.limit("10/second")
async def stream_stats(
    request: Request, agent_id: str, system: LiveSystem = Depends(get_live_system),
):
    return ApiResponse.ok(data=await system.stream_stats(agent_id))


@router.get(
    "/streams/{agent_id}/status",
    summary="获取直播状态",
    response_model=ApiResponse[StreamStatusData],
)
@limiter.limit("10/second")
async def get_stream_status(
    request: Request, agent_id: str, system: LiveSystem = Depends(get_live_system),
):
    status = await system.get_status(agent_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"直播间不存在: {agent_id}")
    return ApiResponse.ok(data=status)


@router.put(
    "/streams/{agent_id}/status",
    summary="主播心跳/状态上报",
    response_model=ApiResponse[StreamStatusData],
)
@limiter.limit("20/second")
async def update_stream_status(
    request: Request,
    agent_id: str,
    update: StreamStatusUpdateRequest,
    system: LiveSystem = Depends(get_live_system),
):
    """刷新心跳时间并更新在播状态（不存在则创建）。

    主播端应以小于 ``HEARTBEAT_TIMEOUT`` 的间隔持续调用，否则会被巡检标记为下播。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        agent_id: 主播唯一标识。
        update: 心跳内容。
    """
    status = await system.update_status(agent_id, is_live=update.is_live, title=update.title)
    return ApiResponse.ok(data=status)


# ── 评论 ──────────────────────────────────────────────────────────────

@router.get(
    "/comments",
    summary="获取评论列表",
    response_model=ApiResponse[CommentPageData],
)
@limiter.limit("10/second")
async def list_comments(
    request: Request,
    agent_id: str | None = Query(None, description="只看某个主播的评论"),
    skip: int = Query(0, ge=0, description="跳过条数（分页偏移）"),
    limit: int = Query(50, ge=1, le=settings.COMMENT_PAGE_LIMIT, description="每页最大条数"),
    system: LiveSystem = Depends(get_live_system),
):
    comments = await system.comments.list_recent(agent_id, skip=skip, limit=limit)
    total = await system.comments.count(agent_id)
    return ApiResponse.ok(data=CommentPageData(comments=comments, total=total))


@router.get(
    "/streams/{agent_id}/unread-comments",
    summary="主播端拉取未读评论",
    response_model=ApiResponse[UnreadCommentPageData],
)
@limiter.limit("20/second")
async def unread_comments(
    request: Request,
    agent_id: str,
    limit: int = Query(10, ge=1, le=settings.COMMENT_PAGE_LIMIT, description="最大条数"),
    since: datetime | None = Query(None, description="只返回该时间之后的评论"),
    system: LiveSystem = Depends(get_live_system),
):
    """主播端轮询未读评论，处理完后调用 ``/comments/mark-read``。"""
    comments = await system.comments.list_unread(agent_id, since=since, limit=limit)
    return ApiResponse.ok(
        data=UnreadCommentPageData(
            comments=comments,
            count=len(comments),
            since=since,
            has_more=len(comments) >= limit,
        ),
    )


@router.post(
    "/comments/mark-read",
    summary="评论标记为已读",
    response_model=ApiResponse[MarkReadData],
)
@limiter.limit("10/second")
async def mark_comments_read(
    request: Request,
    body: MarkCommentsReadRequest,
    system: LiveSystem = Depends(get_live_system),
):
    modified = await system.comments.mark_read(body.comment_ids)
    return ApiResponse.ok(data=MarkReadData(modified_count=modified))


# ── 礼物 ──────────────────────────────────────────────────────────────

@router.get(
    "/agents/{agent_id}/gifts",
    summary="获取主播收到的礼物",
    response_model=ApiResponse[GiftPageData],
)
@limiter.limit("10/second")
async def list_gifts(
    request: Request,
    agent_id: str,
    page: int = Query(1, ge=1, description="页码，从 1 开始"),
    limit: int = Query(10, ge=1, le=settings.COMMENT_PAGE_LIMIT, description="每页最大条数"),
    read_by_agent: bool | None = Query(None, description="按已读状态过滤，不传则不过滤"),
    system: LiveSystem = Depends(get_live_system),
):
    skip = (page - 1) * limit
    gifts = await system.gifts.list_for_agent(
        agent_id, read_by_agent=read_by_agent, skip=skip, limit=limit,
    )
    total = await system.gifts.count(agent_id, read_by_agent=read_by_agent)
    return ApiResponse.ok(
        data=GiftPageData(
            gifts=gifts,
            page=page,
            total_pages=math.ceil(total / limit),
            total=total,
            has_more=skip + len(gifts) < total,
        ),
    )


@router.put(
    "/agents/{agent_id}/gifts/mark-read",
    summary="礼物标记为已读",
    response_model=ApiResponse[MarkReadData],
)
@limiter.limit("10/second")
async def mark_gifts_read(
    request: Request,
    agent_id: str,
    body: MarkGiftsReadRequest,
    system: LiveSystem = Depends(get_live_system),
):
    """只会修改属于该主播的礼物。"""
    modified = await system.gifts.mark_read(agent_id, body.gift_ids)
    return ApiResponse.ok(data=MarkReadData(modified_count=modified))


# ── 形象控制 ──────────────────────────────────────────────────────────

@router.post(
    "/update-animation",
    summary="推送形象动画",
    response_model=ApiResponse[AnimationPayload],
)
@limiter.limit("10/second")
async def update_animation(
    request: Request,
    update: AnimationUpdateRequest,
    system: LiveSystem = Depends(get_live_system),
):
    return ApiResponse.ok(data=await system.update_animation(update))


@router.post(
    "/update-expression",
    summary="推送形象表情",
    response_model=ApiResponse[ExpressionPayload],
)
@limiter.limit("10/second")
async def update_expression(
    request: Request,
    update: ExpressionUpdateRequest,
    system: LiveSystem = Depends(get_live_system),
):
    return ApiResponse.ok(data=await system.update_expression(update))


@router.post(
    "/update-emotion",
    summary="同时推送表情、动画与情绪",
    response_model=ApiResponse[EmotionUpdateRequest],
)
@limiter.limit("10/second")
async def update_emotion(
    request: Request,
    update: EmotionUpdateRequest,
    system: LiveSystem = Depends(get_live_system),
):
    return ApiResponse.ok(data=await system.update_emotion(update))
