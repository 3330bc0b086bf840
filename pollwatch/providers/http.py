"""Shared httpx plumbing for fetch providers."""

from __future__ import annotations

import json
from types import TracebackType
from typing import Any, Dict, Mapping, Optional, Type

import httpx

from pollwatch.errors import (
    FetchTimeoutError,
    HTTPError,
    MalformedResponseError,
    NetworkError,
)
from pollwatch.fetch import parse_retry_after
from pollwatch.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_HEADERS = {"accept": "application/json"}


def strip_trailing_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


class HTTPProvider:
    """Base class mapping httpx failures onto the pollwatch error taxonomy.

    Timeouts per attempt are owned by :class:`~pollwatch.fetch.FetchClient`;
    the httpx client gets no timeout of its own unless one is passed in.
    """

    def __init__(
        self,
        base_url: str,
        headers: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not base_url or not isinstance(base_url, str):
            raise ValueError("base_url must be a valid non-empty string")
        self.base_url = strip_trailing_slash(base_url)
        self.headers: Dict[str, str] = {**DEFAULT_HEADERS, **dict(headers or {})}
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers=self.headers, timeout=None)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HTTPProvider":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self.headers,
            )
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError() from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{type(exc).__name__}: {exc}") from exc

        if response.status_code >= 400:
            raise HTTPError(
                response.status_code,
                body=response.text,
                retry_after=parse_retry_after(response.headers.get("retry-after")),
            )

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            preview = response.text[:100]
            raise MalformedResponseError(
                f"Response from {url} is not valid JSON: {preview!r}"
            ) from exc
