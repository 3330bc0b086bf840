"""Single-key fetch with per-attempt timeout and retry/backoff."""

from __future__ import annotations

import asyncio
import random
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Optional

from pollwatch.config import WatchSettings
from pollwatch.errors import FetchTimeoutError, HTTPError, is_retryable
from pollwatch.utils.logging import get_logger

logger = get_logger(__name__)

FetchProvider = Callable[[str, Optional[int]], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]


class FetchClient:
    """Run a fetch provider for one key, retrying transient failures.

    Attempt ``k`` (1-based) that fails with a retryable error is followed by a
    pause of ``min(max_backoff_ms, backoff_ms * k**2 + jitter)`` before the
    next attempt. A ``Retry-After`` hint on an :class:`HTTPError` replaces the
    computed pause and is clamped to ``max_backoff_ms``.
    """

    def __init__(
        self,
        provider: FetchProvider,
        timeout_ms: float = 10_000,
        retries: int = 2,
        backoff_ms: float = 300,
        max_backoff_ms: float = 10_000,
        jitter: bool = True,
        jitter_ms: float = 100,
        sleep: Optional[Sleep] = None,
        rng: Optional[Callable[[], float]] = None,
    ) -> None:
        self.provider = provider
        self.timeout_ms = timeout_ms
        self.retries = max(0, retries)
        self.backoff_ms = max(0.0, backoff_ms)
        self.max_backoff_ms = max(0.0, max_backoff_ms)
        self.jitter = jitter
        self.jitter_ms = max(0.0, jitter_ms)
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.random

    @classmethod
    def from_settings(
        cls, provider: FetchProvider, settings: WatchSettings, **kwargs: Any
    ) -> "FetchClient":
        return cls(
            provider,
            timeout_ms=settings.timeout_ms,
            retries=settings.retries,
            backoff_ms=settings.backoff_ms,
            max_backoff_ms=settings.max_backoff_ms,
            jitter=settings.jitter,
            jitter_ms=settings.jitter_ms,
            **kwargs,
        )

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    async def fetch_once(self, key: str, cursor: Optional[int] = None) -> Any:
        """Return the provider's raw data for ``key`` or raise the last error."""
        attempt = 0
        while True:
            attempt += 1
            start = time.perf_counter()
            try:
                return await self._attempt(key, cursor)
            except Exception as exc:
                retryable = is_retryable(exc)
                logger.warning(
                    "fetch_attempt_failed",
                    key=key,
                    attempt=attempt,
                    retryable=retryable,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )
                if not retryable or attempt >= self.max_attempts:
                    logger.info(
                        "fetch_give_up",
                        key=key,
                        attempts=attempt,
                        error=str(exc),
                    )
                    raise
                retry_after = exc.retry_after if isinstance(exc, HTTPError) else None
                delay_ms = self.compute_delay(attempt, retry_after)
                logger.debug(
                    "fetch_retry_scheduled",
                    key=key,
                    attempt=attempt,
                    delay_ms=round(delay_ms, 2),
                )
                await self._sleep(delay_ms / 1000)

    async def _attempt(self, key: str, cursor: Optional[int]) -> Any:
        try:
            return await asyncio.wait_for(
                self.provider(key, cursor), timeout=self.timeout_ms / 1000
            )
        except asyncio.TimeoutError as exc:
            if isinstance(exc, FetchTimeoutError):
                raise
            raise FetchTimeoutError(self.timeout_ms) from exc

    def compute_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Return the pause in ms after failed attempt ``attempt``."""
        if retry_after is not None:
            return min(self.max_backoff_ms, max(0.0, retry_after * 1000))
        delay = self.backoff_ms * attempt * attempt
        if self.jitter and self.jitter_ms:
            delay += self._rng() * self.jitter_ms
        return min(self.max_backoff_ms, max(0.0, delay))


def parse_retry_after(
    value: Optional[str], now: Optional[datetime] = None
) -> Optional[float]:
    """Parse a Retry-After header (delta seconds or HTTP-date) into seconds."""
    if value is None:
        return None
    stripped = value.strip()
    if not stripped:
        return None
    try:
        return max(0.0, float(stripped))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(stripped)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (when - current).total_seconds())


__all__ = ["FetchClient", "FetchProvider", "parse_retry_after"]
