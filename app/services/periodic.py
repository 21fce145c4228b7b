"""
app.services.periodic
~~~~~~~~~~~~~~~~~~~~~

周期任务 —— 把一次巡检（sweep）包装成可启动、可停止的后台任务。

测试直接调用 ``run_once()`` 同步执行一次巡检，不依赖真实计时器；
生产环境在 lifespan 中 ``start()``，退出前 ``stop()``。
"""
from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

from app.core.logging import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    """按固定间隔重复执行一个异步任务。

    单次执行抛出的异常会被记录并吞掉，下一个周期照常执行。

    Attributes:
        name: 任务名，用于日志。
        interval: 执行间隔（秒）。
    """

    def __init__(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[Any]],
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval 必须为正数: {interval}")
        self.name = name
        self.interval = interval
        self._job = job
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        """立即执行一次任务（异常会向上抛出）。"""
        return await self._job()

    def start(self) -> None:
        """在当前事件循环中启动后台循环。重复调用无副作用。"""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info("周期任务已启动 | task=%s | interval=%.1fs", self.name, self.interval)

    async def stop(self) -> None:
        """取消后台循环并等待其退出。"""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("周期任务已停止 | task=%s", self.name)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._job()
            except Exception as e:
                logger.error("周期任务执行失败 | task=%s | %s", self.name, e, exc_info=True)
