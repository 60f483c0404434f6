"""命令行入口。"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, List, Optional

import typer
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from image_batch.core.config import BatchConfig, DEFAULT_WINDOW_DELAY_MS, ProviderConfig, clamp_concurrency
from image_batch.core.exceptions import InvalidConfigurationError
from image_batch.core.models import OperationKind
from image_batch.core.progress import ProgressCallback, ProgressEvent
from image_batch.core.report import write_csv_report, write_json_report
from image_batch.core.sources import classify_sources
from image_batch.processing.executor import BatchExecutor
from image_batch.processing.imaging import PillowProvider
from image_batch.utils.logging import setup_logging

app = typer.Typer(help="批量图片分析、压缩、格式转换与取色工具。")


def _build_progress_callback(progress: Progress) -> ProgressCallback:
    task_id: Optional[int] = None

    def callback(event: ProgressEvent) -> None:
        nonlocal task_id
        if task_id is None:
            task_id = progress.add_task("处理图片", total=event.total)
        progress.update(task_id, completed=event.completed)

    return callback


def _build_options(
    target_format: Optional[str],
    quality: Optional[int],
    output_format: str,
    output_dir: Path,
    color_count: Optional[int],
) -> dict[str, Any]:
    options: dict[str, Any] = {"outputFormat": output_format, "outputDir": str(output_dir)}
    if target_format:
        options["targetFormat"] = target_format
    if quality is not None:
        options["quality"] = quality
    if color_count is not None:
        options["colorCount"] = color_count
    return options


@app.command("run")
def run_cli(  # noqa: PLR0913
    source: List[str] = typer.Argument(..., help="图片来源：URL、data URI 或文件路径，可指定多个"),
    operation: str = typer.Option(
        OperationKind.ANALYZE.value, "--operation", help="操作类型 analyze/compress/convert/extract_colors"
    ),
    concurrency: int = typer.Option(3, "--concurrency", "-c", help="并发数量，限制在 1~10"),
    target_format: Optional[str] = typer.Option(None, "--target-format", "-f", help="convert 的目标格式"),
    quality: Optional[int] = typer.Option(None, "--quality", "-q", help="编码质量 1~100"),
    color_count: Optional[int] = typer.Option(None, "--color-count", help="提取的主色数量"),
    output: Path = typer.Option(Path("output"), "--output", "-o", help="输出与报告目录"),
    output_format: str = typer.Option("file", "--output-format", help="结果输出方式 file/base64"),
    strategy: str = typer.Option("window", "--strategy", help="调度策略 window 或 pool"),
    window_delay: int = typer.Option(DEFAULT_WINDOW_DELAY_MS, "--window-delay", help="窗口间暂停毫秒数"),
    report_filename: str = typer.Option("report.csv", "--report", help="CSV 报告文件名"),
    json_report: bool = typer.Option(False, "--json", help="额外写出 JSON 汇总报告"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """执行批量处理。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger(__name__).debug("CLI 参数解析完成")

    output_dir = output.expanduser().resolve()
    try:
        executor = BatchExecutor(
            PillowProvider(ProviderConfig(output_dir=output_dir)),
            config=BatchConfig(
                concurrency=clamp_concurrency(concurrency),
                window_delay_ms=window_delay,
                strategy=strategy,
            ),
        )
    except InvalidConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    options = _build_options(target_format, quality, output_format, output_dir, color_count)

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )

    with progress:
        summary = asyncio.run(
            executor.run_with_progress(
                source,
                operation,
                options,
                on_progress=_build_progress_callback(progress),
            )
        )

    for outcome in summary.failures():
        typer.echo(f"失败：{outcome.source} -> {outcome.error}", err=True)

    typer.echo(
        f"处理完成：成功 {summary.successful} 项，失败 {summary.failed} 项，"
        f"成功率 {summary.success_rate}%，平均耗时 {summary.average_time_ms}ms，总耗时 {summary.total_time_ms}ms。"
    )

    report_path = write_csv_report(summary, output_dir, report_filename)
    typer.echo(f"报告文件：{report_path}")
    if json_report:
        json_path = write_json_report(summary, output_dir, Path(report_filename).with_suffix(".json").name)
        typer.echo(f"JSON 报告：{json_path}")


@app.command("validate")
def validate_cli(
    source: List[str] = typer.Argument(..., help="待校验的图片来源"),
) -> None:
    """只校验来源格式，不读取任何内容。"""

    setup_logging(logging.WARNING)
    report = classify_sources(source)

    for item in report.valid:
        typer.echo(f"合法：{item}")
    for item in report.invalid:
        typer.echo(f"不合法：{item}")

    if report.invalid:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
