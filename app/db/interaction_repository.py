"""
app.db.interaction_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

观众互动持久化仓库 —— 封装 MongoDB ``comments`` / ``likes`` / ``gift_transactions`` 集合。

每条评论、每次点赞、每笔礼物各一个文档（扁平设计），按 ``agent_id`` 分区、按时间排序。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from app.core.logging import get_logger
from app.schemas.live_interactions import (
    CommentData,
    CommentRequest,
    GiftData,
    GiftRequest,
    LikeData,
    LikeRequest,
)

logger = get_logger(__name__)

_COMMENTS = "comments"
_LIKES = "likes"
_GIFTS = "gift_transactions"
_PROJECTION: dict[str, int] = {"_id": 0}

_UNREAD_MIN_LENGTH = 3
_UNREAD_MAX_LENGTH = 200


class CommentRepository:
    """评论仓库。"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[_COMMENTS]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        if self._indexes_created:
            return
        await self._collection.create_index(
            [("agent_id", ASCENDING), ("created_at", DESCENDING)],
            name="idx_agent_time",
        )
        await self._collection.create_index([("id", ASCENDING)], name="uniq_id", unique=True, sparse=True)
        self._indexes_created = True
        logger.debug("comments 索引已就绪")

    async def save(self, request: CommentRequest, message: str) -> CommentData:
        """保存一条评论。

        Args:
            request: 原始评论请求。
            message: 过滤后的评论文本（取代 ``request.message`` 入库）。

        Returns:
            已入库的评论。
        """
        await self._ensure_indexes()
        comment = CommentData(
            agent_id=request.agent_id,
            user=request.user,
            message=message,
            handle=request.handle,
            avatar=request.avatar,
            created_at=datetime.now(timezone.utc),
        )
        await self._collection.insert_one(comment.model_dump())
        return comment

    async def list_recent(
        self,
        agent_id: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[CommentData]:
        """分页获取评论，新的在前。``agent_id`` 为空时返回全站评论。"""
        await self._ensure_indexes()
        query = {"agent_id": agent_id} if agent_id else {}
        cursor = (
            self._collection
            .find(query, _PROJECTION)
            .sort("created_at", -1)
            .skip(skip)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        return [CommentData(**doc) for doc in docs]

    async def list_unread(
        self,
        agent_id: str,
        since: datetime | None = None,
        limit: int = 10,
    ) -> list[CommentData]:
        """主播端拉取尚未读过的评论，新的在前。

        过短（≤ 3 字）或过长（≥ 200 字）的评论不交给主播回复。

        Args:
            agent_id: 主播唯一标识。
            since: 只返回该时间之后的评论。
            limit: 最大条数。
        """
        await self._ensure_indexes()
        query: dict[str, Any] = {
            "agent_id": agent_id,
            "read_by_agent": False,
            "$expr": {
                "$and": [
                    {"$gt": [{"$strLenCP": "$message"}, _UNREAD_MIN_LENGTH]},
                    {"$lt": [{"$strLenCP": "$message"}, _UNREAD_MAX_LENGTH]},
                ],
            },
        }
        if since is not None:
            query["created_at"] = {"$gt": since}
        cursor = self._collection.find(query, _PROJECTION).sort("created_at", -1).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [CommentData(**doc) for doc in docs]

    async def mark_read(self, comment_ids: list[str]) -> int:
        """把评论标记为主播已读，返回实际修改条数。"""
        if not comment_ids:
            return 0
        await self._ensure_indexes()
        result = await self._collection.update_many(
            {"id": {"$in": comment_ids}},
            {"$set": {"read_by_agent": True}},
        )
        return result.modified_count

    async def count(self, agent_id: str | None = None) -> int:
        await self._ensure_indexes()
        return await self._collection.count_documents({"agent_id": agent_id} if agent_id else {})


class LikeRepository:
    """点赞仓库。允许同一用户多次点赞。"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[_LIKES]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        if self._indexes_created:
            return
        await self._collection.create_index(
            [("agent_id", ASCENDING), ("user", ASCENDING)],
            name="idx_agent_user",
        )
        self._indexes_created = True
        logger.debug("likes 索引已就绪")

    async def save(self, request: LikeRequest) -> LikeData:
        await self._ensure_indexes()
        like = LikeData(
            agent_id=request.agent_id,
            user=request.user,
            handle=request.handle,
            created_at=datetime.now(timezone.utc),
        )
        await self._collection.insert_one(like.model_dump())
        return like

    async def count(self, agent_id: str | None = None) -> int:
        await self._ensure_indexes()
        return await self._collection.count_documents({"agent_id": agent_id} if agent_id else {})


class GiftRepository:
    """礼物记录仓库。

    只保存客户端上报的转账结果，不校验链上交易。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[_GIFTS]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        if self._indexes_created:
            return
        await self._collection.create_index(
            [("recipient_agent_id", ASCENDING), ("created_at", DESCENDING)],
            name="idx_recipient_time",
        )
        await self._collection.create_index([("id", ASCENDING)], name="uniq_id", unique=True, sparse=True)
        self._indexes_created = True
        logger.debug("gift_transactions 索引已就绪")

    async def save(self, request: GiftRequest) -> GiftData:
        await self._ensure_indexes()
        gift = GiftData(
            recipient_agent_id=request.recipient_agent_id,
            sender_public_key=request.sender_public_key,
            recipient_wallet=request.recipient_wallet,
            gift_name=request.gift_name,
            gift_count=request.gift_count,
            coins_total=request.coins_total,
            tx_hash=request.tx_hash,
            icon=request.icon,
            handle=request.handle or "Anonymous",
            avatar=request.avatar,
            created_at=datetime.now(timezone.utc),
        )
        await self._collection.insert_one(gift.model_dump())
        return gift

    @staticmethod
    def _filter(agent_id: str, read_by_agent: bool | None) -> dict[str, Any]:
        query: dict[str, Any] = {"recipient_agent_id": agent_id}
        if read_by_agent is not None:
            query["read_by_agent"] = read_by_agent
        return query

    async def list_for_agent(
        self,
        agent_id: str,
        read_by_agent: bool | None = None,
        skip: int = 0,
        limit: int = 10,
    ) -> list[GiftData]:
        """分页获取主播收到的礼物，新的在前。``read_by_agent`` 为空时不过滤已读状态。"""
        await self._ensure_indexes()
        cursor = (
            self._collection
            .find(self._filter(agent_id, read_by_agent), _PROJECTION)
            .sort("created_at", -1)
            .skip(skip)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        return [GiftData(**doc) for doc in docs]

    async def count(self, agent_id: str, read_by_agent: bool | None = None) -> int:
        await self._ensure_indexes()
        return await self._collection.count_documents(self._filter(agent_id, read_by_agent))

    async def mark_read(self, agent_id: str, gift_ids: list[str]) -> int:
        """把属于该主播的礼物标记为已读，其他主播的礼物 ID 会被忽略。"""
        if not gift_ids:
            return 0
        await self._ensure_indexes()
        result = await self._collection.update_many(
            {"recipient_agent_id": agent_id, "id": {"$in": gift_ids}},
            {"$set": {"read_by_agent": True}},
        )
        return result.modified_count
