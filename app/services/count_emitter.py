"""
app.services.count_emitter
~~~~~~~~~~~~~~~~~~~~~~~~~~

观众人数广播 —— 把 ``PresenceRegistry`` 的快照转换为推送事件。

两种触发方式:
  - 周期巡检 ``sweep()``：逐个直播间推送 ``<agent_id>_viewer_count``
  - 即时推送 ``emit_all()``：成员变化后立刻推送一次全量 ``stream_counts``

人数只保证最终一致：即时推送一定发生在登记表修改之后，
但不保证先于下一次周期推送到达。
"""
from __future__ import annotations

from app.core.logging import get_logger
from app.schemas.live_events import (
    STREAM_COUNTS,
    StreamCountsPayload,
    ViewerCountPayload,
    viewer_count_channel,
)
from app.services.broadcaster import BroadcastGateway
from app.services.presence import PresenceRegistry

logger = get_logger(__name__)


class CountEmitter:
    """观众人数推送器。"""

    def __init__(self, registry: PresenceRegistry, gateway: BroadcastGateway) -> None:
        self.registry = registry
        self.gateway = gateway

    async def sweep(self) -> int:
        """向每个被观看中的直播间频道推送当前人数。

        Returns:
            本次推送的直播间数量。
        """
        counts = self.registry.all_counts()
        for stream_id, count in counts.items():
            await self.gateway.publish_to_channel(
                viewer_count_channel(stream_id), ViewerCountPayload(count=count),
            )
        return len(counts)

    async def emit_stream(self, stream_id: str) -> None:
        """推送单个直播间人数（人数为 0 时也推送，让前端归零）。"""
        await self.gateway.publish_to_channel(
            viewer_count_channel(stream_id),
            ViewerCountPayload(count=self.registry.viewer_count(stream_id)),
        )

    async def emit_all(self) -> None:
        """向所有连接推送一次全量人数快照。"""
        counts = self.registry.all_counts()
        logger.debug("推送人数快照 | %s", counts)
        await self.gateway.publish_global(STREAM_COUNTS, StreamCountsPayload(counts))
