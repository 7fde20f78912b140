"""Shared fixtures: virtual clock, temp project home, sample job configs."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from trade_harvester.config import ConfigLocator, ConfigRepository, JobConfig
from trade_harvester.config.loader import HOME_ENV
from trade_harvester.engine.models import PageRequest, PageResult
from trade_harvester.logging_conf import configure_logging


class VirtualClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        if delay > 0:
            self.now += delay
        await asyncio.sleep(0)


@pytest.fixture(scope="session", autouse=True)
def _session_logging(tmp_path_factory: pytest.TempPathFactory) -> Iterable[None]:
    home = tmp_path_factory.mktemp("harvester-home")
    patcher = pytest.MonkeyPatch()
    patcher.setenv(HOME_ENV, str(home))
    configure_logging()
    yield
    patcher.undo()


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def temp_config_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> ConfigRepository:
    monkeypatch.setenv(HOME_ENV, str(tmp_path))
    return ConfigRepository(ConfigLocator(project_root=tmp_path))


@pytest.fixture
def sample_job_config() -> Callable[..., JobConfig]:
    def _builder(**overrides: Any) -> JobConfig:
        base: dict[str, Any] = {
            "name": "demo",
            "sources": ["alpha", "beta", "gamma"],
            "endpoint": {
                "url": "https://api.example.com/history",
                "method": "POST",
                "records_path": "data.list",
                "cursor_path": "data.cursor",
                "cursor_param": "cursor",
                "source_in_records": "portfolioId",
            },
            "harvest": {
                "concurrency": 2,
                "request_timeout": 5,
                "rate_limit": {"capacity": 50, "min_capacity": 2, "jitter_max": 0, "max_cooldown": 0},
                "retry": {"max_attempts": 2, "base_delay": 0, "jitter": 0},
                "pagination": {"page_size": 2, "max_pages": 5, "page_delay": 0},
            },
            "dedup": {"identity_fields": ["portfolioId", "orderId"], "recency_field": "updateTime"},
        }
        base.update(overrides)
        return JobConfig.model_validate(base)

    return _builder


def make_records(source: str, start: int, count: int, update_time: int = 1) -> list[dict]:
    return [
        {"source": source, "orderId": f"{source}-{start + index}", "updateTime": update_time}
        for index in range(count)
    ]


class ScriptedSource:
    """Serve a fixed list of pages for one source and remember the requests."""

    def __init__(self, pages: list[Any]) -> None:
        self.pages = pages
        self.requests: list[PageRequest] = []

    async def __call__(self, request: PageRequest) -> Any:
        self.requests.append(request)
        index = len(self.requests) - 1
        page = self.pages[min(index, len(self.pages) - 1)]
        if isinstance(page, BaseException):
            raise page
        return page


def cursor_pages(source: str, sizes: list[int], page_size: int) -> list[PageResult]:
    pages = []
    offset = 0
    for number, size in enumerate(sizes, start=1):
        next_cursor = f"{source}-c{number}" if size == page_size else None
        pages.append(PageResult(records=make_records(source, offset, size), next_cursor=next_cursor))
        offset += size
    return pages


@pytest.fixture
def records_factory() -> Callable[..., list[dict]]:
    return make_records


@pytest.fixture
def scripted_source() -> type[ScriptedSource]:
    return ScriptedSource


@pytest.fixture
def pages_factory() -> Callable[..., list[PageResult]]:
    return cursor_pages
