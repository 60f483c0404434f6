"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from image_batch.core.exceptions import UnsupportedOperationError


class OperationKind(str, Enum):
    """批处理支持的操作类型。"""

    ANALYZE = "analyze"
    COMPRESS = "compress"
    CONVERT = "convert"
    EXTRACT_COLORS = "extract_colors"

    @classmethod
    def parse(cls, value: Union[str, "OperationKind"]) -> "OperationKind":
        """将调用方传入的操作名解析为枚举值。"""

        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as exc:
            raise UnsupportedOperationError(f"Unsupported operation: {value}") from exc


def _freeze(options: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(options or {}))


@dataclass(frozen=True, slots=True)
class WorkItem:
    """单个待处理条目：来源 + 操作 + 透传参数。

    ``operation`` 保留调用方的原始值，未知操作由分发器转换为失败结果。
    """

    source: str
    operation: Union[str, OperationKind]
    options: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        source: str,
        operation: Union[str, OperationKind],
        options: Optional[Mapping[str, Any]] = None,
    ) -> "WorkItem":
        return cls(source=source, operation=operation, options=_freeze(options))


@dataclass(frozen=True, slots=True)
class Success:
    """处理成功：提供者返回的负载与耗时（毫秒）。"""

    payload: Any
    duration_ms: int


@dataclass(frozen=True, slots=True)
class Failure:
    """处理失败：错误信息。"""

    message: str


Status = Union[Success, Failure]


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    """单个条目的最终结果。"""

    source: str
    status: Status

    @property
    def succeeded(self) -> bool:
        return isinstance(self.status, Success)

    @property
    def duration_ms(self) -> int:
        # 失败条目的耗时没有意义，统一视为 0
        if isinstance(self.status, Success):
            return self.status.duration_ms
        return 0

    @property
    def payload(self) -> Any:
        if isinstance(self.status, Success):
            return self.status.payload
        return None

    @property
    def error(self) -> Optional[str]:
        if isinstance(self.status, Failure):
            return self.status.message
        return None

    def to_dict(self) -> dict[str, Any]:
        """转换为报告使用的字典结构。"""

        record: dict[str, Any] = {
            "source": self.source,
            "success": self.succeeded,
            "processingTime": self.duration_ms,
        }
        if self.succeeded:
            record["result"] = self.payload
        else:
            record["error"] = self.error
        return record


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """一次批处理调用的汇总结果。"""

    total_processed: int
    successful: int
    failed: int
    results: tuple[BatchOutcome, ...]
    total_time_ms: int
    average_time_ms: int
    success_rate: int

    def failures(self) -> list[BatchOutcome]:
        return [outcome for outcome in self.results if not outcome.succeeded]

    def to_dict(self) -> dict[str, Any]:
        """转换为 JSON 报告结构。"""

        return {
            "totalProcessed": self.total_processed,
            "successful": self.successful,
            "failed": self.failed,
            "results": [outcome.to_dict() for outcome in self.results],
            "summary": {
                "totalTime": self.total_time_ms,
                "averageTime": self.average_time_ms,
                "successRate": self.success_rate,
            },
        }
