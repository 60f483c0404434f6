"""批处理执行器：在并发上限内调度分发，收集有序结果并汇总统计。"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Mapping, Optional, Sequence, Union

from image_batch.core.config import BatchConfig
from image_batch.core.models import BatchOutcome, BatchSummary, OperationKind, WorkItem
from image_batch.core.progress import ProgressCallback, ProgressReporter
from image_batch.core.sources import ValidationReport, classify_sources
from image_batch.core.statistics import summarize
from image_batch.processing.dispatcher import Dispatcher, OperationProvider

LOGGER = logging.getLogger(__name__)

Operation = Union[str, OperationKind]


class BatchExecutor:
    """按并发上限批量执行图片操作。

    支持两种调度策略：

    * ``window``：按并发数切分为连续窗口，窗口内并发执行，全部结束后
      暂停 ``window_delay_ms`` 再开始下一个窗口；
    * ``pool``：信号量控制同时在途的数量，空出的名额立即由后续条目补上。

    两种策略下结果都按输入顺序排列。
    """

    def __init__(
        self,
        provider: OperationProvider,
        *,
        config: Optional[BatchConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or BatchConfig()
        self.config.validate()
        self.logger = logger or LOGGER
        self.dispatcher = Dispatcher(provider, logger=self.logger)

    async def run(
        self,
        sources: Sequence[str],
        operation: Operation,
        options: Optional[Mapping[str, Any]] = None,
        concurrency: Optional[int] = None,
    ) -> BatchSummary:
        """批量处理（无进度回调）。"""

        return await self._execute(sources, operation, options, concurrency, None)

    async def run_with_progress(
        self,
        sources: Sequence[str],
        operation: Operation,
        options: Optional[Mapping[str, Any]] = None,
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchSummary:
        """批量处理，每个条目完成后调用一次 ``on_progress``。"""

        return await self._execute(sources, operation, options, concurrency, on_progress)

    def validate_sources(self, sources: Sequence[str]) -> ValidationReport:
        """执行前的来源预检，不访问网络或磁盘。"""

        return classify_sources(sources)

    async def _execute(
        self,
        sources: Sequence[str],
        operation: Operation,
        options: Optional[Mapping[str, Any]],
        concurrency: Optional[int],
        on_progress: Optional[ProgressCallback],
    ) -> BatchSummary:
        if isinstance(sources, (str, bytes)):
            raise TypeError("sources 必须是来源字符串的序列")
        sources = list(sources)
        limit = max(1, int(concurrency if concurrency is not None else self.config.concurrency))
        reporter = ProgressReporter(len(sources), on_progress, self.logger)

        self.logger.info(
            "开始批处理：操作 %s，共 %d 项，并发 %d，策略 %s",
            getattr(operation, "value", operation),
            len(sources),
            limit,
            self.config.strategy,
        )

        started = time.perf_counter()
        if self.config.strategy == "pool":
            outcomes = await self._run_pool(sources, operation, options, limit, reporter)
        else:
            outcomes = await self._run_windows(sources, operation, options, limit, reporter)
        total_time_ms = int(round((time.perf_counter() - started) * 1000))

        summary = summarize(outcomes, total_time_ms)
        self.logger.info(
            "批处理完成：成功 %d，失败 %d，成功率 %d%%，总耗时 %dms",
            summary.successful,
            summary.failed,
            summary.success_rate,
            summary.total_time_ms,
        )
        return summary

    async def _run_windows(
        self,
        sources: list[str],
        operation: Operation,
        options: Optional[Mapping[str, Any]],
        limit: int,
        reporter: ProgressReporter,
    ) -> list[BatchOutcome]:
        outcomes: list[BatchOutcome] = []
        delay = self.config.window_delay_ms / 1000

        for start in range(0, len(sources), limit):
            window = [WorkItem.create(source, operation, options) for source in sources[start : start + limit]]
            # gather 按传入顺序返回结果，与完成顺序无关
            settled = await asyncio.gather(*(self._settle(item, reporter) for item in window))
            outcomes.extend(settled)

            if start + limit < len(sources):
                await asyncio.sleep(delay)

        return outcomes

    async def _run_pool(
        self,
        sources: list[str],
        operation: Operation,
        options: Optional[Mapping[str, Any]],
        limit: int,
        reporter: ProgressReporter,
    ) -> list[BatchOutcome]:
        semaphore = asyncio.Semaphore(limit)
        outcomes: list[Optional[BatchOutcome]] = [None] * len(sources)

        async def worker(index: int, source: str) -> None:
            item = WorkItem.create(source, operation, options)
            async with semaphore:
                outcome = await self.dispatcher.dispatch(item)
            outcomes[index] = outcome
            await reporter.advance()

        await asyncio.gather(*(worker(index, source) for index, source in enumerate(sources)))
        return [outcome for outcome in outcomes if outcome is not None]

    async def _settle(self, item: WorkItem, reporter: ProgressReporter) -> BatchOutcome:
        outcome = await self.dispatcher.dispatch(item)
        await reporter.advance()
        return outcome
