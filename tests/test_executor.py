"""批处理执行器与单条目分发的测试。"""

from __future__ import annotations

import asyncio
import logging

import pytest

from image_batch.core.config import BatchConfig
from image_batch.core.exceptions import InvalidConfigurationError
from image_batch.core.models import BatchOutcome, Failure, OperationKind, Success, WorkItem
from image_batch.core.progress import ProgressEvent, ProgressStream
from image_batch.processing.dispatcher import Dispatcher
from image_batch.processing.executor import BatchExecutor


def make_executor(provider, *, strategy: str = "window", delay: int = 0) -> BatchExecutor:
    return BatchExecutor(provider, config=BatchConfig(window_delay_ms=delay, strategy=strategy))


def test_dispatch_routes_each_operation(make_provider) -> None:
    provider = make_provider()
    dispatcher = Dispatcher(provider)

    async def scenario() -> list[BatchOutcome]:
        return [
            await dispatcher.dispatch(WorkItem.create("a.png", "analyze")),
            await dispatcher.dispatch(WorkItem.create("b.png", OperationKind.COMPRESS)),
            await dispatcher.dispatch(WorkItem.create("c.png", "convert", {"targetFormat": "webp"})),
            await dispatcher.dispatch(WorkItem.create("d.png", "extract_colors")),
        ]

    outcomes = asyncio.run(scenario())

    assert all(outcome.succeeded for outcome in outcomes)
    assert provider.calls == [
        ("analyze", "a.png", None),
        ("compress", "b.png", None),
        ("convert", "c.png", "webp"),
        ("extract_colors", "d.png", None),
    ]
    assert isinstance(outcomes[0].status, Success)
    assert outcomes[0].status.duration_ms >= 0


def test_dispatch_converts_provider_errors(make_provider) -> None:
    provider = make_provider(failures={"bad.png": OSError("decode failed"), "empty.png": RuntimeError()})
    dispatcher = Dispatcher(provider)

    bad = asyncio.run(dispatcher.dispatch(WorkItem.create("bad.png", "analyze")))
    empty = asyncio.run(dispatcher.dispatch(WorkItem.create("empty.png", "analyze")))

    assert bad.status == Failure(message="decode failed")
    assert bad.duration_ms == 0
    assert bad.payload is None
    assert empty.error == "Unknown error"


def test_dispatch_accepts_sync_provider() -> None:
    class SyncProvider:
        def analyze(self, source, options):
            return {"size": len(source)}

        def compress(self, source, options):
            raise ValueError("no compressor")

        def convert(self, source, target_format, options):
            return target_format

        def extract_colors(self, source, options):
            return []

    dispatcher = Dispatcher(SyncProvider())

    analyzed = asyncio.run(dispatcher.dispatch(WorkItem.create("abc.png", "analyze")))
    compressed = asyncio.run(dispatcher.dispatch(WorkItem.create("abc.png", "compress")))

    assert analyzed.payload == {"size": 7}
    assert compressed.error == "no compressor"


def test_dispatch_failures_are_logged_on_injected_logger(make_provider, caplog) -> None:
    logger = logging.getLogger("tests.injected")
    provider = make_provider(failures={"x.png": RuntimeError("kaput")})

    with caplog.at_level(logging.WARNING, logger="tests.injected"):
        asyncio.run(Dispatcher(provider, logger=logger).dispatch(WorkItem.create("x.png", "analyze")))

    assert any(record.name == "tests.injected" and "kaput" in record.getMessage() for record in caplog.records)


@pytest.mark.parametrize("strategy", ["window", "pool"])
@pytest.mark.parametrize("concurrency", [1, 2, 3, 5, 7])
def test_results_follow_input_order(make_provider, strategy: str, concurrency: int) -> None:
    sources = [f"img{i}.png" for i in range(7)]
    # 越靠前的条目越慢，保证完成顺序与输入顺序相反。
    delays = {source: 0.002 * (len(sources) - i) for i, source in enumerate(sources)}
    provider = make_provider(delays=delays, failures={"img3.png": RuntimeError("bad")})

    summary = asyncio.run(make_executor(provider, strategy=strategy).run(sources, "analyze", concurrency=concurrency))

    assert summary.total_processed == len(sources)
    assert [outcome.source for outcome in summary.results] == sources
    assert summary.successful + summary.failed == summary.total_processed
    assert summary.failed == 1
    assert summary.results[3].error == "bad"
    assert provider.max_in_flight <= concurrency


def test_window_waits_for_whole_window_before_next(make_provider) -> None:
    provider = make_provider(delays={"a": 0.05, "b": 0.01, "c": 0})

    asyncio.run(make_executor(provider).run(["a", "b", "c"], "analyze", concurrency=2))

    start_c = provider.index_of("start", "c")
    assert start_c > provider.index_of("end", "a")
    assert start_c > provider.index_of("end", "b")
    assert provider.max_in_flight == 2


def test_pool_refills_free_slot_immediately(make_provider) -> None:
    provider = make_provider(delays={"a": 0.05, "b": 0.01, "c": 0})

    summary = asyncio.run(make_executor(provider, strategy="pool").run(["a", "b", "c"], "analyze", concurrency=2))

    assert provider.index_of("start", "c") < provider.index_of("end", "a")
    assert provider.max_in_flight == 2
    assert [outcome.source for outcome in summary.results] == ["a", "b", "c"]


def test_inter_window_delay_applies_between_windows_only(make_provider, monkeypatch) -> None:
    provider = make_provider()
    executor = make_executor(provider, delay=50)
    real_sleep = asyncio.sleep
    waits: list[float] = []

    async def recording_sleep(seconds, *args, **kwargs):
        if seconds > 0:
            waits.append(seconds)
        return await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", recording_sleep)

    asyncio.run(executor.run(["a", "b"], "analyze", concurrency=2))
    assert waits == []

    asyncio.run(executor.run(["a", "b", "c"], "analyze", concurrency=1))
    # 三个窗口之间只有两次等待，最后一个窗口之后不再等待
    assert waits == [0.05, 0.05]


def test_convert_without_target_format_fails_every_item(make_provider) -> None:
    provider = make_provider()
    sources = ["a.png", "b.png", "c.png"]

    summary = asyncio.run(make_executor(provider).run(sources, "convert", {"quality": 80}, concurrency=2))

    assert summary.failed == 3
    assert summary.success_rate == 0
    assert all("targetFormat" in outcome.error for outcome in summary.results)
    assert provider.calls == []


def test_unknown_operation_is_reported_per_item(make_provider) -> None:
    provider = make_provider()

    summary = asyncio.run(make_executor(provider).run(["a.png", "b.png"], "resize"))

    assert summary.failed == 2
    assert summary.results[0].status == Failure(message="Unsupported operation: resize")
    assert provider.calls == []


def test_empty_sources_and_non_positive_concurrency(make_provider) -> None:
    provider = make_provider()
    executor = make_executor(provider)

    empty = asyncio.run(executor.run([], "analyze"))
    serial = asyncio.run(executor.run(["a", "b"], "analyze", concurrency=0))

    assert empty.total_processed == 0
    assert empty.success_rate == 0
    assert empty.results == ()
    assert serial.successful == 2
    assert provider.max_in_flight == 1


def test_string_sources_are_rejected(make_provider) -> None:
    with pytest.raises(TypeError):
        asyncio.run(make_executor(make_provider()).run("a.png", "analyze"))


def test_invalid_config_raises_at_construction(make_provider) -> None:
    with pytest.raises(InvalidConfigurationError):
        BatchExecutor(make_provider(), config=BatchConfig(strategy="greedy"))
    with pytest.raises(InvalidConfigurationError):
        BatchExecutor(make_provider(), config=BatchConfig(window_delay_ms=-1))


@pytest.mark.parametrize("strategy", ["window", "pool"])
def test_progress_counts_every_item_once(make_provider, strategy: str) -> None:
    sources = ["a", "b", "c", "d", "e"]
    # 窗口内后一个条目先完成。
    provider = make_provider(delays={"a": 0.03, "b": 0.01, "c": 0.02, "d": 0, "e": 0.01}, failures={"d": OSError("x")})
    events: list[ProgressEvent] = []

    summary = asyncio.run(
        make_executor(provider, strategy=strategy).run_with_progress(
            sources, "analyze", concurrency=2, on_progress=events.append
        )
    )

    assert [event.completed for event in events] == [1, 2, 3, 4, 5]
    assert all(event.total == 5 for event in events)
    assert [event.percentage for event in events] == [20, 40, 60, 80, 100]
    assert [outcome.source for outcome in summary.results] == sources


def test_async_progress_callback_and_failing_sink(make_provider) -> None:
    provider = make_provider(delays={"a": 0.02, "b": 0})
    seen: list[int] = []

    async def slow_sink(event: ProgressEvent) -> None:
        await asyncio.sleep(0.01 if event.completed == 1 else 0)
        seen.append(event.completed)

    def broken_sink(event: ProgressEvent) -> None:
        raise RuntimeError("sink down")

    executor = make_executor(provider)
    summary = asyncio.run(executor.run_with_progress(["a", "b", "c"], "analyze", concurrency=2, on_progress=slow_sink))
    broken = asyncio.run(executor.run_with_progress(["a", "b"], "analyze", on_progress=broken_sink))

    assert seen == [1, 2, 3]
    assert summary.successful == 3
    assert broken.successful == 2


def test_progress_stream_supports_multiple_consumers(make_provider) -> None:
    provider = make_provider(delays={"a": 0.01})
    stream = ProgressStream(maxsize=1)

    async def scenario():
        first = stream.subscribe()
        second = stream.subscribe()

        async def collect(iterator) -> list[int]:
            return [event.completed async for event in iterator]

        consumers = [asyncio.create_task(collect(first)), asyncio.create_task(collect(second))]
        summary = await make_executor(provider).run_with_progress(
            ["a", "b", "c"], "analyze", concurrency=3, on_progress=stream
        )
        await stream.close()
        return summary, await asyncio.gather(*consumers)

    summary, (first_seen, second_seen) = asyncio.run(scenario())

    assert summary.total_processed == 3
    assert first_seen == [1, 2, 3]
    assert second_seen == [1, 2, 3]
    assert stream.closed


def test_validate_sources_delegates_to_classifier(make_provider) -> None:
    report = make_executor(make_provider()).validate_sources(["x.jpg", "x.doc"])

    assert report.valid == ["x.jpg"]
    assert report.invalid == ["x.doc"]
