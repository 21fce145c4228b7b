"""
app.db.streaming_status_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播状态持久化仓库 —— 封装 MongoDB ``streaming_status`` 集合。

每个主播一条文档（``agent_id`` 唯一），记录是否在播与最近一次心跳时间。
主播端的心跳负责把文档写成在播；``LivenessMonitor`` 只负责把超时的文档降级为下播，
并且降级是条件更新：只有心跳时间仍等于巡检时读到的值才会生效，
避免用过期的"下播"覆盖刚到达的新心跳。
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from app.core.logging import get_logger
from app.schemas.live_interactions import StreamStatusData

logger = get_logger(__name__)

_COLLECTION_NAME = "streaming_status"
_PROJECTION: dict[str, int] = {"_id": 0}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StreamingStatusRepository:
    """直播状态仓库。

    同时满足 ``LivenessMonitor`` 依赖的 ``StreamLifecycleStore`` 协议
    （``find_stale`` / ``mark_offline``）。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._collection.create_index(
            [("agent_id", ASCENDING)], name="uniq_agent", unique=True,
        )
        # 巡检查询：is_live + 心跳时间范围
        await self._collection.create_index(
            [("is_live", ASCENDING), ("last_heartbeat_at", ASCENDING)],
            name="idx_live_heartbeat",
        )
        self._indexes_created = True
        logger.debug("streaming_status 索引已就绪")

    async def get(self, agent_id: str) -> StreamStatusData | None:
        """读取指定主播的直播状态，不存在时返回 ``None``。"""
        await self._ensure_indexes()
        doc = await self._collection.find_one({"agent_id": agent_id}, _PROJECTION)
        return StreamStatusData(**doc) if doc else None

    async def record_heartbeat(
        self,
        agent_id: str,
        is_live: bool = True,
        title: str | None = None,
        now: datetime | None = None,
    ) -> StreamStatusData:
        """写入一次心跳/状态上报（不存在则创建）。

        心跳时间总是刷新为 ``now``。从下播切到在播时重置 ``started_at``，
        切到下播时清空 ``started_at``。

        Args:
            agent_id: 主播唯一标识。
            is_live: 上报的在播状态。
            title: 直播标题，为 ``None`` 时保留原值。
            now: 当前时间（UTC），测试时可注入。

        Returns:
            更新后的直播状态。
        """
        await self._ensure_indexes()
        now = now or _utcnow()

        fields: dict[str, Any] = {
            "agent_id": {"$literal": agent_id},
            "last_heartbeat_at": now,
            "updated_at": now,
            # 管道更新中 $is_live 引用的是更新前的值，字符串字段用 $literal 防止被当作字段路径
            "started_at": (
                {"$cond": [{"$eq": ["$is_live", True]}, "$started_at", now]}
                if is_live
                else None
            ),
            "is_live": is_live,
        }
        if title is not None:
            fields["title"] = {"$literal": title}

        doc = await self._collection.find_one_and_update(
            {"agent_id": agent_id},
            [{"$set": fields}],
            projection=_PROJECTION,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return StreamStatusData(**doc)

    async def find_stale(self, now: datetime, timeout: float) -> list[StreamStatusData]:
        """查找仍标记为在播、但心跳早于 ``now - timeout`` 的记录。

        Args:
            now: 当前时间（UTC）。
            timeout: 心跳超时时间（秒）。
        """
        await self._ensure_indexes()
        threshold = now - timedelta(seconds=timeout)
        cursor = self._collection.find(
            {"is_live": True, "last_heartbeat_at": {"$lt": threshold}},
            _PROJECTION,
        )
        docs = await cursor.to_list(length=None)
        return [StreamStatusData(**doc) for doc in docs]

    async def mark_offline(
        self,
        agent_id: str,
        expected_last_heartbeat_at: datetime,
        now: datetime | None = None,
    ) -> StreamStatusData | None:
        """条件更新：仅当心跳时间仍为 ``expected_last_heartbeat_at`` 时标记为下播。

        Returns:
            更新后的记录；如果期间有新心跳（或已被其他进程下播）则返回 ``None``。
        """
        await self._ensure_indexes()
        doc = await self._collection.find_one_and_update(
            {
                "agent_id": agent_id,
                "is_live": True,
                "last_heartbeat_at": expected_last_heartbeat_at,
            },
            {"$set": {"is_live": False, "updated_at": now or _utcnow()}},
            projection=_PROJECTION,
            return_document=ReturnDocument.AFTER,
        )
        return StreamStatusData(**doc) if doc else None

    async def list_live(self, now: datetime, timeout: float) -> list[StreamStatusData]:
        """列出在播且心跳未超时的直播间（按心跳时间倒序）。"""
        await self._ensure_indexes()
        threshold = now - timedelta(seconds=timeout)
        cursor = (
            self._collection
            .find(
                {"is_live": True, "last_heartbeat_at": {"$gte": threshold}},
                _PROJECTION,
            )
            .sort("last_heartbeat_at", -1)
        )
        docs = await cursor.to_list(length=None)
        return [StreamStatusData(**doc) for doc in docs]
