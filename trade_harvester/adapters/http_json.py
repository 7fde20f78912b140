"""JSON-over-HTTP page fetcher built on ``httpx.AsyncClient``.

Each call performs exactly one request. Transport failures propagate as
``httpx.TransportError`` so the attempt loop can retry them; non-success
responses come back as :class:`FatalFailure` carrying the HTTP status.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from ..config import EndpointConfig, HttpMethod
from ..engine.models import FatalFailure, PageFetchFn, PageRequest, PageResult, Source
from ..errors import PayloadError

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
}

_MISSING = object()


def dig(payload: Any, path: str | None, default: Any = None) -> Any:
    """Resolve a dotted path; integer segments index lists (``-1`` = last)."""

    if not path:
        return payload
    current = payload
    for segment in path.split("."):
        if isinstance(current, dict):
            current = current.get(segment, _MISSING)
        elif isinstance(current, list):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError):
                current = _MISSING
        else:
            current = _MISSING
        if current is _MISSING:
            return default
    return current


class JsonPageFetcher:
    """Build per-source page fetch callables for one configured endpoint."""

    def __init__(
        self,
        endpoint: EndpointConfig,
        client: httpx.AsyncClient,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.client = client
        self.logger = logger or structlog.get_logger("trade_harvester.http")

    def __call__(self, source: Source) -> PageFetchFn:
        """Page fetch callable for ``source``; requests already carry the source id."""

        return self.fetch

    def build_params(self, request: PageRequest) -> dict[str, Any]:
        endpoint = self.endpoint
        params: dict[str, Any] = dict(endpoint.params)
        params[endpoint.source_param] = str(request.source)
        if endpoint.page_size_param:
            params[endpoint.page_size_param] = request.page_size
        if endpoint.page_param:
            params[endpoint.page_param] = request.page_number
        if endpoint.cursor_param and request.cursor is not None:
            params[endpoint.cursor_param] = str(request.cursor)
        if request.time_range is not None:
            start, end = request.time_range
            if endpoint.start_param:
                params[endpoint.start_param] = start
            if endpoint.end_param:
                params[endpoint.end_param] = end
        return params

    async def fetch(self, request: PageRequest) -> PageResult | FatalFailure:
        endpoint = self.endpoint
        params = self.build_params(request)
        headers = {**DEFAULT_HEADERS, **endpoint.headers}
        if endpoint.method is HttpMethod.GET:
            response = await self.client.get(endpoint.url, params=params, headers=headers)
        else:
            response = await self.client.post(endpoint.url, json=params, headers=headers)
        self.logger.debug(
            "http_response",
            method=endpoint.method.value,
            url=str(response.request.url),
            status=response.status_code,
            source=request.source,
            page=request.page_number,
        )
        if not response.is_success:
            return FatalFailure(
                status=response.status_code,
                message=f"{response.reason_phrase} - {response.text[:160]}".strip(" -"),
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise PayloadError(f"response is not JSON: {response.text[:160]!r}") from exc

        if endpoint.success_path is not None:
            flag = dig(payload, endpoint.success_path)
            if flag != endpoint.success_value:
                message = dig(payload, "message") or dig(payload, "msg") or "upstream rejected"
                return FatalFailure(status=None, message=f"{endpoint.success_path}={flag!r}: {message}")

        records = dig(payload, endpoint.records_path)
        if records is None:
            records = []
        if not isinstance(records, list):
            raise PayloadError(
                f"{endpoint.records_path} is {type(records).__name__}, expected a list"
            )
        if endpoint.source_in_records:
            records = [
                {**item, endpoint.source_in_records: str(request.source)}
                if isinstance(item, dict)
                else item
                for item in records
            ]
        next_cursor = dig(payload, endpoint.cursor_path) if endpoint.cursor_path else None
        return PageResult(records=records, next_cursor=next_cursor, total=self._total(payload))

    def _total(self, payload: Any) -> int | None:
        if not self.endpoint.total_path:
            return None
        try:
            return int(dig(payload, self.endpoint.total_path))
        except (TypeError, ValueError):
            return None


__all__ = ["DEFAULT_HEADERS", "JsonPageFetcher", "dig"]
