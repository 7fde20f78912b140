"""Source discovery: turn leaderboard listings into source ids."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable

import httpx
import structlog

from ..config import DiscoveryConfig, HttpMethod
from ..engine.models import FatalFailure, PageFetchFn, PageRequest, PageResult
from ..errors import PayloadError
from .http_json import DEFAULT_HEADERS, dig

GuardFactory = Callable[[PageFetchFn], PageFetchFn]


def merge_sources(*groups: Iterable[Any]) -> list[str]:
    """Concatenate source lists keeping the first occurrence of each id."""

    return list(dict.fromkeys(str(source) for group in groups for source in group))


class SourceDiscovery:
    """Query every configured variant once and collect the listed ids.

    Requests go through the same guarded attempt loop as page fetches, so
    they share the run's rate limiter and retry policy. A variant that
    fails is logged and skipped.
    """

    def __init__(
        self,
        config: DiscoveryConfig,
        client: httpx.AsyncClient,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.logger = logger or structlog.get_logger("trade_harvester.discovery")

    def extract_id(self, item: Any) -> str | None:
        if not isinstance(item, dict):
            return None
        for name in self.config.id_fields:
            value = item.get(name)
            if value not in (None, ""):
                return str(value)
        return None

    async def fetch(self, request: PageRequest) -> PageResult | FatalFailure:
        """One listing request; ``request.source`` is the variant index."""

        config = self.config
        body = {**config.params, **config.variants[request.source]}
        headers = {**DEFAULT_HEADERS, **config.headers}
        if config.method is HttpMethod.GET:
            response = await self.client.get(config.url, params=body, headers=headers)
        else:
            response = await self.client.post(config.url, json=body, headers=headers)
        if not response.is_success:
            return FatalFailure(
                status=response.status_code,
                message=f"{response.reason_phrase} - {response.text[:160]}".strip(" -"),
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise PayloadError(f"discovery response is not JSON: {response.text[:160]!r}") from exc
        if config.success_path is not None:
            flag = dig(payload, config.success_path)
            if flag != config.success_value:
                return FatalFailure(status=None, message=f"{config.success_path}={flag!r}")

        items = dig(payload, config.ids_path) or []
        if not isinstance(items, list):
            raise PayloadError(f"{config.ids_path} is {type(items).__name__}, expected a list")
        ids = [source for source in map(self.extract_id, items) if source is not None]
        return PageResult(records=ids)

    async def discover(self, guard: GuardFactory) -> list[str]:
        variants = range(len(self.config.variants))
        pages = await asyncio.gather(
            *(guard(self.fetch)(PageRequest(source=index, page_size=0)) for index in variants)
        )
        found: list[list[str]] = []
        for index, page in zip(variants, pages):
            if isinstance(page, FatalFailure):
                self.logger.warning(
                    "discovery_variant_failed",
                    variant=self.config.variants[index],
                    error=page.describe(),
                )
                continue
            found.append(page.records)
        sources = merge_sources(*found)
        self.logger.info("discovery_done", variants=len(variants), sources=len(sources))
        return sources


__all__ = ["GuardFactory", "SourceDiscovery", "merge_sources"]
