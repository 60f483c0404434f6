"""批处理与默认提供者的配置模型。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from image_batch.core.exceptions import InvalidConfigurationError

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 10

DEFAULT_CONCURRENCY = 3
DEFAULT_WINDOW_DELAY_MS = 100

VALID_STRATEGIES = {"window", "pool"}


def clamp_concurrency(value: int) -> int:
    """将并发数限制在推荐范围内（供调用方使用，引擎只保证下限）。"""

    return max(MIN_CONCURRENCY, min(int(value), MAX_CONCURRENCY))


@dataclass(slots=True)
class BatchConfig:
    """批处理引擎配置。"""

    concurrency: int = DEFAULT_CONCURRENCY
    window_delay_ms: int = DEFAULT_WINDOW_DELAY_MS
    strategy: str = "window"  # window | pool

    def validate(self) -> None:
        if self.strategy not in VALID_STRATEGIES:
            raise InvalidConfigurationError(f"未知的调度策略: {self.strategy}")
        if self.window_delay_ms < 0:
            raise InvalidConfigurationError("window_delay_ms 不能为负数")
        if self.concurrency < MIN_CONCURRENCY:
            raise InvalidConfigurationError("concurrency 必须大于 0")


@dataclass(slots=True)
class ProviderConfig:
    """默认图片提供者的配置。"""

    output_dir: Path = field(default_factory=lambda: Path("output"))
    request_timeout: float = 30.0
    user_agent: str = "image-batch/0.1"
