"""
app.services.liveness_monitor
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播心跳巡检 —— 把心跳超时的直播间降级为下播并通知前端。

在播状态由主播端心跳驱动，与有没有观众无关：没有观众的主播依然可以在播。
巡检只做"在播 → 下播"一个方向，重新开播由新的心跳完成。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

from app.core.logging import get_logger
from app.schemas.live_events import (
    STREAMING_STATUS_UPDATE,
    HeartbeatPayload,
    heartbeat_channel,
)
from app.schemas.live_interactions import StreamStatusData
from app.services.broadcaster import BroadcastGateway

logger = get_logger(__name__)


class StreamLifecycleStore(Protocol):
    """巡检依赖的持久化能力，由 ``StreamingStatusRepository`` 实现。"""

    async def find_stale(self, now: datetime, timeout: float) -> list[StreamStatusData]: ...

    async def mark_offline(
        self, agent_id: str, expected_last_heartbeat_at: datetime,
    ) -> StreamStatusData | None: ...


class LivenessMonitor:
    """心跳超时巡检器。

    Attributes:
        store: 直播状态存储。
        gateway: 广播通道。
        heartbeat_timeout: 心跳超时阈值（秒）。
    """

    def __init__(
        self,
        store: StreamLifecycleStore,
        gateway: BroadcastGateway,
        heartbeat_timeout: float = 30.0,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.heartbeat_timeout = heartbeat_timeout

    async def sweep(self, now: datetime | None = None) -> int:
        """执行一次巡检。

        存储层异常在这里捕获并记录，本轮巡检直接结束，等下一轮重试。

        Args:
            now: 当前时间（UTC），测试时可注入。

        Returns:
            本轮被降级为下播的直播间数量。
        """
        now = now or datetime.now(timezone.utc)
        demoted = 0
        try:
            stale = await self.store.find_stale(now, self.heartbeat_timeout)
            for record in stale:
                updated = await self.store.mark_offline(record.agent_id, record.last_heartbeat_at)
                if updated is None:
                    # 查询与更新之间来了新心跳，本条跳过
                    logger.info("心跳已刷新，跳过下播 | agent=%s", record.agent_id)
                    continue
                demoted += 1
                logger.info(
                    "心跳超时，标记下播 | agent=%s | last_heartbeat=%s",
                    updated.agent_id, updated.last_heartbeat_at.isoformat(),
                )
                await self.gateway.publish_global(STREAMING_STATUS_UPDATE, updated)
                await self.gateway.publish_to_channel(
                    heartbeat_channel(updated.agent_id),
                    HeartbeatPayload(last_heartbeat_at=updated.last_heartbeat_at, is_live=False),
                )
        except Exception as e:
            logger.error("心跳巡检失败: %s", e, exc_info=True)
        return demoted
