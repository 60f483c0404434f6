"""进度事件模型、回调封装与多消费者事件流。"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

from image_batch.core.statistics import round_half_up

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """单个条目完成后的进度信息。"""

    completed: int
    total: int
    percentage: int

    @classmethod
    def of(cls, completed: int, total: int) -> "ProgressEvent":
        percentage = round_half_up(completed / total * 100) if total else 100
        return cls(completed=completed, total=total, percentage=percentage)


ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]

_CLOSED = object()


class ProgressStream:
    """可被多个消费者订阅的进度事件流。

    每个订阅者拥有独立的有界队列；队列已满时 ``publish`` 会等待，
    从而把慢消费者的压力传导回批处理流程。实例本身可直接作为
    ``on_progress`` 回调传给执行器。
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._maxsize = maxsize
        self._queues: list[asyncio.Queue] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> AsyncIterator[ProgressEvent]:
        """注册一个订阅者，返回其事件迭代器。必须在发布事件之前调用。"""

        if self._closed:
            raise RuntimeError("进度事件流已关闭")
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._queues.append(queue)
        return self._iterate(queue)

    async def publish(self, event: ProgressEvent) -> None:
        if self._closed:
            raise RuntimeError("进度事件流已关闭")
        for queue in self._queues:
            await queue.put(event)

    async def close(self) -> None:
        """结束事件流，所有订阅者的迭代在消费完剩余事件后停止。"""

        if self._closed:
            return
        self._closed = True
        for queue in self._queues:
            await queue.put(_CLOSED)

    async def __call__(self, event: ProgressEvent) -> None:
        await self.publish(event)

    @staticmethod
    async def _iterate(queue: asyncio.Queue) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await queue.get()
            if item is _CLOSED:
                return
            yield item


class ProgressReporter:
    """批处理内部使用的进度计数器。

    每次 ``advance`` 计数恰好加一；投递过程串行化，
    保证回调收到的 ``completed`` 严格递增。
    """

    def __init__(
        self,
        total: int,
        callback: Optional[ProgressCallback] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.total = total
        self.completed = 0
        self._callback = callback
        self._logger = logger or LOGGER
        self._lock = asyncio.Lock()

    async def advance(self) -> Optional[ProgressEvent]:
        if self._callback is None:
            self.completed += 1
            return None

        async with self._lock:
            self.completed += 1
            event = ProgressEvent.of(self.completed, self.total)
            try:
                result = self._callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                self._logger.warning("进度回调执行失败（%d/%d）：%s", event.completed, event.total, exc)
            return event
