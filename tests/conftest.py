"""测试共用的假提供者。"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional

import pytest


class RecordingProvider:
    """记录每个条目开始/结束顺序的异步提供者。"""

    def __init__(
        self,
        delays: Optional[dict[str, float]] = None,
        failures: Optional[dict[str, Exception]] = None,
    ) -> None:
        self.delays = delays or {}
        self.failures = failures or {}
        self.events: list[tuple[str, str]] = []
        self.calls: list[tuple[str, str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _run(self, source: str, operation: str, extra: Any = None) -> dict[str, Any]:
        self.calls.append((operation, source, extra))
        self.events.append(("start", source))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(source, 0))
            if source in self.failures:
                raise self.failures[source]
            return {"operation": operation, "source": source}
        finally:
            self.in_flight -= 1
            self.events.append(("end", source))

    async def analyze(self, source: str, options: Mapping[str, Any]) -> dict[str, Any]:
        return await self._run(source, "analyze")

    async def compress(self, source: str, options: Mapping[str, Any]) -> dict[str, Any]:
        return await self._run(source, "compress")

    async def convert(self, source: str, target_format: str, options: Mapping[str, Any]) -> dict[str, Any]:
        return await self._run(source, "convert", target_format)

    async def extract_colors(self, source: str, options: Mapping[str, Any]) -> dict[str, Any]:
        return await self._run(source, "extract_colors")

    def index_of(self, kind: str, source: str) -> int:
        return self.events.index((kind, source))


@pytest.fixture
def make_provider():
    def factory(**kwargs: Any) -> RecordingProvider:
        return RecordingProvider(**kwargs)

    return factory
