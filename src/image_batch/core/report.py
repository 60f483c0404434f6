"""报告生成工具。"""

from __future__ import annotations

import csv
import json
from pathlib import Path

from image_batch.core.models import BatchSummary

HEADER = ["source", "status", "duration_ms", "message"]


def write_csv_report(summary: BatchSummary, output_dir: Path, filename: str) -> Path:
    """将每个条目的处理结果写入 CSV 报告。"""

    output_dir.mkdir(parents=True, exist_ok=True)
    report_path = output_dir / filename
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for outcome in summary.results:
            writer.writerow(
                [
                    outcome.source,
                    "success" if outcome.succeeded else "failed",
                    str(outcome.duration_ms) if outcome.succeeded else "",
                    outcome.error or "",
                ]
            )
    return report_path


def write_json_report(summary: BatchSummary, output_dir: Path, filename: str) -> Path:
    """将完整汇总写入 JSON 报告，无法序列化的负载以字符串形式写出。"""

    output_dir.mkdir(parents=True, exist_ok=True)
    report_path = output_dir / filename
    with report_path.open("w", encoding="utf-8") as handle:
        json.dump(summary.to_dict(), handle, ensure_ascii=False, indent=2, default=_fallback)
    return report_path


def _fallback(value: object) -> str:
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    return str(value)
