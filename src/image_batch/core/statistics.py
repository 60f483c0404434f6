"""批处理结果的统计汇总。"""

from __future__ import annotations

import math
from typing import Sequence

from image_batch.core.models import BatchOutcome, BatchSummary


def round_half_up(value: float) -> int:
    """四舍五入到整数（0.5 向上取整，区别于内置 round 的银行家舍入）。"""

    return int(math.floor(value + 0.5))


def summarize(outcomes: Sequence[BatchOutcome], total_time_ms: int) -> BatchSummary:
    """根据全部结果与总耗时计算汇总信息。"""

    total = len(outcomes)
    durations = [outcome.duration_ms for outcome in outcomes if outcome.succeeded]
    successful = len(durations)

    average = round_half_up(sum(durations) / successful) if successful else 0
    success_rate = round_half_up(successful / total * 100) if total else 0

    return BatchSummary(
        total_processed=total,
        successful=successful,
        failed=total - successful,
        results=tuple(outcomes),
        total_time_ms=int(total_time_ms),
        average_time_ms=average,
        success_rate=success_rate,
    )
