"""
app.services.presence
~~~~~~~~~~~~~~~~~~~~~

观众在线登记表 —— 记录每个连接正在观看哪个直播间，以及每个直播间有哪些连接。

两张映射表必须始终保持一致:
  - ``连接 → 直播间``：一个连接同一时刻只能观看一个直播间
  - ``直播间 → 连接集合``：集合变空时直接删除该直播间条目

所有操作都是同步的、不会挂起，在单事件循环内天然原子；
额外加了一把锁覆盖两张表，供多线程调用方使用。
"""
from __future__ import annotations

import threading

from app.core.logging import get_logger

logger = get_logger(__name__)


class PresenceRegistry:
    """观众在线登记表。

    由 ``LiveSystem`` 显式创建并持有，测试中可以创建任意多个独立实例。
    修改类方法返回 ``bool`` 表示成员关系是否发生变化，调用方据此决定是否广播。
    """

    def __init__(self) -> None:
        self._connection_to_stream: dict[str, str] = {}
        self._stream_to_connections: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    # ── 修改 ──────────────────────────────────────────────────────────

    def join(self, connection: str, stream_id: str) -> bool:
        """让连接加入直播间；如果它正在看别的直播间，先从那边移除。"""
        with self._lock:
            previous = self._connection_to_stream.get(connection)
            if previous == stream_id and connection in self._stream_to_connections.get(stream_id, ()):
                return False
            if previous is not None and previous != stream_id:
                self._discard(connection, previous)
            self._stream_to_connections.setdefault(stream_id, set()).add(connection)
            self._connection_to_stream[connection] = stream_id
        logger.debug("观众进入 | conn=%s | stream=%s | prev=%s", connection, stream_id, previous)
        return True

    def leave(self, connection: str, stream_id: str) -> bool:
        """把连接从直播间移除。连接或直播间不存在时什么都不做。

        不要求连接当前登记的就是 ``stream_id``（调用方可能拿着过期的直播间 ID）；
        只有登记一致时才同时清掉 ``连接 → 直播间`` 的记录。
        """
        with self._lock:
            removed = self._discard(connection, stream_id)
            if self._connection_to_stream.get(connection) == stream_id:
                del self._connection_to_stream[connection]
        if removed:
            logger.debug("观众离开 | conn=%s | stream=%s", connection, stream_id)
        return removed

    def disconnect(self, connection: str) -> str | None:
        """连接断开：从其所在直播间移除并删除登记。

        Returns:
            断开前所在的直播间 ID，没有则为 ``None``。
        """
        with self._lock:
            stream_id = self._connection_to_stream.pop(connection, None)
            if stream_id is not None:
                self._discard(connection, stream_id)
        return stream_id

    def _discard(self, connection: str, stream_id: str) -> bool:
        # 调用方需持有锁
        connections = self._stream_to_connections.get(stream_id)
        if not connections or connection not in connections:
            return False
        connections.discard(connection)
        if not connections:
            del self._stream_to_connections[stream_id]
        return True

    # ── 查询 ──────────────────────────────────────────────────────────

    def viewer_count(self, stream_id: str) -> int:
        with self._lock:
            return len(self._stream_to_connections.get(stream_id, ()))

    def all_counts(self) -> dict[str, int]:
        """所有被观看中的直播间人数快照（没人看的直播间不会出现）。"""
        with self._lock:
            return {
                stream_id: len(connections)
                for stream_id, connections in self._stream_to_connections.items()
            }

    def stream_of(self, connection: str) -> str | None:
        with self._lock:
            return self._connection_to_stream.get(connection)

    def connections_of(self, stream_id: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._stream_to_connections.get(stream_id, ()))
