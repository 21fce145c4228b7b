"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用内存实现替换广播通道与直播状态存储，
使单元测试无需 MongoDB 和真实 WebSocket 即可运行。
"""
from __future__ import annotations

import os
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import BaseModel

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")

from app.schemas.live_interactions import StreamStatusData  # noqa: E402
from app.services.presence import PresenceRegistry  # noqa: E402


# ── 广播通道 ──────────────────────────────────────────────────────────

class RecordingGateway:
    """记录所有推送调用的假广播通道。"""

    def __init__(self) -> None:
        self.global_events: list[tuple[str, BaseModel]] = []
        self.channel_events: list[tuple[str, BaseModel]] = []

    async def publish_global(self, event: str, payload: BaseModel) -> None:
        self.global_events.append((event, payload))

    async def publish_to_channel(self, channel: str, payload: BaseModel) -> None:
        self.channel_events.append((channel, payload))

    def channel(self, name: str) -> list[BaseModel]:
        return [payload for channel, payload in self.channel_events if channel == name]

    def global_(self, name: str) -> list[BaseModel]:
        return [payload for event, payload in self.global_events if event == name]


# ── 直播状态存储 ──────────────────────────────────────────────────────

class InMemoryStatusStore:
    """``StreamLifecycleStore`` 的内存实现，条件更新语义与 MongoDB 仓库一致。

    Attributes:
        before_mark_offline: 在条件更新执行前调用的钩子，用于模拟并发心跳。
        find_error: 设置后 ``find_stale`` 直接抛出该异常。
    """

    def __init__(self) -> None:
        self.records: dict[str, StreamStatusData] = {}
        self.before_mark_offline: Callable[[str], None] | None = None
        self.find_error: Exception | None = None
        self.mark_offline_calls: list[tuple[str, datetime]] = []

    def put(self, agent_id: str, is_live: bool, last_heartbeat_at: datetime) -> StreamStatusData:
        record = StreamStatusData(
            agent_id=agent_id, is_live=is_live, last_heartbeat_at=last_heartbeat_at,
        )
        self.records[agent_id] = record
        return record

    def heartbeat(self, agent_id: str, at: datetime) -> None:
        self.records[agent_id] = self.records[agent_id].model_copy(
            update={"is_live": True, "last_heartbeat_at": at},
        )

    async def find_stale(self, now: datetime, timeout: float) -> list[StreamStatusData]:
        if self.find_error is not None:
            raise self.find_error
        threshold = now - timedelta(seconds=timeout)
        return [
            r.model_copy()
            for r in self.records.values()
            if r.is_live and r.last_heartbeat_at < threshold
        ]

    async def mark_offline(
        self, agent_id: str, expected_last_heartbeat_at: datetime,
    ) -> StreamStatusData | None:
        self.mark_offline_calls.append((agent_id, expected_last_heartbeat_at))
        if self.before_mark_offline is not None:
            self.before_mark_offline(agent_id)
        record = self.records.get(agent_id)
        if (
            record is None
            or not record.is_live
            or record.last_heartbeat_at != expected_last_heartbeat_at
        ):
            return None
        updated = record.model_copy(update={"is_live": False})
        self.records[agent_id] = updated
        return updated


# ── fixtures ──────────────────────────────────────────────────────────

@pytest.fixture()
def now() -> datetime:
    return datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture()
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture()
def status_store() -> InMemoryStatusStore:
    return InMemoryStatusStore()


@pytest.fixture()
def registry() -> PresenceRegistry:
    return PresenceRegistry()

