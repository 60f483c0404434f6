"""单条目分发：路由到对应的操作提供者，计时并统一结果结构。"""

from __future__ import annotations

import inspect
import logging
import time
from typing import Any, Mapping, Optional, Protocol

from image_batch.core.exceptions import UnsupportedOperationError, ValidationError
from image_batch.core.models import BatchOutcome, Failure, OperationKind, Success, WorkItem

LOGGER = logging.getLogger(__name__)

UNKNOWN_ERROR = "Unknown error"


class OperationProvider(Protocol):
    """操作提供者接口。方法可以是协程函数，也可以是普通函数。"""

    def analyze(self, source: str, options: Mapping[str, Any]) -> Any: ...

    def compress(self, source: str, options: Mapping[str, Any]) -> Any: ...

    def convert(self, source: str, target_format: str, options: Mapping[str, Any]) -> Any: ...

    def extract_colors(self, source: str, options: Mapping[str, Any]) -> Any: ...


def get_target_format(options: Mapping[str, Any]) -> Optional[str]:
    return options.get("targetFormat") or None


class Dispatcher:
    """把单个 WorkItem 交给提供者执行，任何异常都转换为 Failure。"""

    def __init__(self, provider: OperationProvider, logger: Optional[logging.Logger] = None) -> None:
        self.provider = provider
        self.logger = logger or LOGGER

    async def dispatch(self, item: WorkItem) -> BatchOutcome:
        try:
            kind = OperationKind.parse(item.operation)
            if kind is OperationKind.CONVERT and not get_target_format(item.options):
                raise ValidationError("targetFormat is required for convert operation")
        except (ValidationError, UnsupportedOperationError) as exc:
            return self._failure(item, exc)

        started = time.perf_counter()
        try:
            payload = await self._invoke(kind, item)
        except Exception as exc:  # noqa: BLE001
            elapsed = (time.perf_counter() - started) * 1000
            self.logger.debug("条目失败耗时 %.1fms：%s", elapsed, _shorten(item.source))
            return self._failure(item, exc)

        duration_ms = int(round((time.perf_counter() - started) * 1000))
        return BatchOutcome(source=item.source, status=Success(payload=payload, duration_ms=duration_ms))

    async def _invoke(self, kind: OperationKind, item: WorkItem) -> Any:
        provider = self.provider
        if kind is OperationKind.ANALYZE:
            result = provider.analyze(item.source, item.options)
        elif kind is OperationKind.COMPRESS:
            result = provider.compress(item.source, item.options)
        elif kind is OperationKind.CONVERT:
            result = provider.convert(item.source, get_target_format(item.options), item.options)
        else:
            result = provider.extract_colors(item.source, item.options)

        if inspect.isawaitable(result):
            result = await result
        return result

    def _failure(self, item: WorkItem, exc: Exception) -> BatchOutcome:
        message = str(exc) or UNKNOWN_ERROR
        self.logger.warning("处理失败 %s：%s", _shorten(item.source), message)
        return BatchOutcome(source=item.source, status=Failure(message=message))


def _shorten(source: str, limit: int = 80) -> str:
    # data URI 可能非常长，日志中只保留前缀
    if len(source) <= limit:
        return source
    return source[:limit] + "..."
