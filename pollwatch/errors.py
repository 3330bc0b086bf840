"""Error taxonomy shared by the fetch client, providers and engine."""

from __future__ import annotations

import asyncio
import errno
import socket
from typing import Optional

RETRYABLE_STATUS_CODES = frozenset({408, 429})
RETRYABLE_ERRNOS = frozenset(
    {
        errno.ECONNRESET,
        errno.ECONNREFUSED,
        errno.ECONNABORTED,
        errno.ETIMEDOUT,
        errno.EPIPE,
        errno.EHOSTUNREACH,
        errno.ENETUNREACH,
    }
)


class WatchError(Exception):
    """Base class for every error raised by pollwatch."""


class ConfigError(WatchError, ValueError):
    """Invalid construction or runtime parameters."""


class FetchTimeoutError(WatchError, TimeoutError):
    """A single fetch attempt exceeded its timeout."""

    def __init__(self, timeout_ms: Optional[float] = None) -> None:
        if timeout_ms is None:
            super().__init__("Request timed out")
        else:
            super().__init__(f"Timeout after {timeout_ms:g}ms")
        self.timeout_ms = timeout_ms


class NetworkError(WatchError):
    """Connection reset/refused or name resolution failure."""


class HTTPError(WatchError):
    """Non-2xx response from a remote source."""

    def __init__(
        self,
        status: int,
        body: str = "",
        retry_after: Optional[float] = None,
    ) -> None:
        message = f"HTTP {status}"
        if body:
            message += f": {truncate(body, 200)}"
        super().__init__(message)
        self.status = status
        self.body = body
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUS_CODES or 500 <= self.status <= 599


class MalformedResponseError(WatchError):
    """Response payload failed shape validation."""


class RPCError(WatchError):
    """JSON-RPC error object returned by the remote node."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC {code}: {message}")
        self.code = code


def is_retryable(exc: BaseException) -> bool:
    """Return True when another attempt may succeed."""
    if isinstance(exc, HTTPError):
        return exc.retryable
    if isinstance(exc, (FetchTimeoutError, NetworkError, asyncio.TimeoutError)):
        return True
    if isinstance(exc, (MalformedResponseError, RPCError, ConfigError)):
        return False
    if isinstance(exc, (ConnectionError, socket.gaierror)):
        return True
    if isinstance(exc, OSError) and exc.errno in RETRYABLE_ERRNOS:
        return True
    return False


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "…"


__all__ = [
    "ConfigError",
    "FetchTimeoutError",
    "HTTPError",
    "MalformedResponseError",
    "NetworkError",
    "RPCError",
    "WatchError",
    "is_retryable",
]
