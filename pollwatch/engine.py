"""Generic polling engine: scheduler, per-key fan-out and event wiring."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from pollwatch.config import MIN_POLL_INTERVAL_MS, WatchSettings, build_settings
from pollwatch.dedup import DedupStrategy, WatchState
from pollwatch.errors import ConfigError
from pollwatch.events import (
    CHANGE,
    DISCOVERY,
    ERROR,
    STARTED,
    STOPPED,
    TICK,
    ChangeEvent,
    ErrorEvent,
    EventEmitter,
    Listener,
    StartedEvent,
    StoppedEvent,
    TickEvent,
)
from pollwatch.fetch import FetchClient, FetchProvider, Sleep
from pollwatch.utils.limiter import ConcurrencyLimiter
from pollwatch.utils.logging import get_logger

logger = get_logger(__name__)


class EngineState(str, Enum):
    """Lifecycle of a polling engine."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


def validate_settings(settings: WatchSettings) -> None:
    """Raise ConfigError for settings the scheduler cannot run with."""
    if settings.poll_interval_ms < MIN_POLL_INTERVAL_MS:
        raise ConfigError(
            f"poll_interval_ms must be at least {MIN_POLL_INTERVAL_MS}ms, "
            f"got {settings.poll_interval_ms}"
        )
    if settings.concurrency < 1:
        raise ConfigError(f"concurrency must be at least 1, got {settings.concurrency}")


class PollingEngine:
    """Poll tracked keys on an interval and emit what changed.

    The provider is called once per key per tick (plus retries) through a
    shared concurrency limiter. Results go through the dedup strategy, which
    decides which change/discovery events reach listeners. A failing key
    produces an ``error`` event and never affects the other keys.
    """

    def __init__(
        self,
        provider: FetchProvider,
        strategy: DedupStrategy,
        settings: Optional[WatchSettings] = None,
        *,
        name: str = "watcher",
        scheduler: Optional[AsyncIOScheduler] = None,
        emitter: Optional[EventEmitter] = None,
        sleep: Optional[Sleep] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.settings = settings or build_settings()
        validate_settings(self.settings)
        self.name = name
        self.strategy = strategy
        self.fetch_client = FetchClient.from_settings(
            provider, self.settings, sleep=sleep
        )
        self.limiter = ConcurrencyLimiter(self.settings.concurrency)
        self.emitter = emitter or EventEmitter()
        self.state = EngineState.IDLE
        self.ticking = False
        self.ticks_run = 0
        self.ticks_skipped = 0

        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._job_id: Optional[str] = None
        self._states: Dict[str, WatchState] = {}
        self._generation = 0
        self._tick_token = 0
        self._clock = clock or _now_ms

    # -------------------- listeners --------------------

    def on(self, kind: str, listener: Listener) -> Listener:
        return self.emitter.on(kind, listener)

    def once(self, kind: str, listener: Listener) -> Listener:
        return self.emitter.once(kind, listener)

    def off(self, kind: str, listener: Listener) -> bool:
        return self.emitter.off(kind, listener)

    # -------------------- tracked keys --------------------

    @property
    def keys(self) -> List[str]:
        return list(self._states)

    def add_key(self, key: str) -> bool:
        """Start tracking ``key``; return False if it was already tracked."""
        if not isinstance(key, str) or not key.strip():
            raise ConfigError(f"Tracked keys must be non-empty strings, got {key!r}")
        if key in self._states:
            return False
        state = WatchState()
        if self.state is EngineState.RUNNING:
            self.strategy.prepare(state, self._clock())
        self._states[key] = state
        logger.debug("key_added", watcher=self.name, key=key)
        return True

    def remove_key(self, key: str) -> bool:
        removed = self._states.pop(key, None) is not None
        if removed:
            logger.debug("key_removed", watcher=self.name, key=key)
        return removed

    def set_keys(self, keys: Iterable[str]) -> None:
        """Replace the tracked set, keeping state for keys that stay."""
        wanted = list(dict.fromkeys(keys))
        for key in wanted:
            self.add_key(key)
        for key in list(self._states):
            if key not in wanted:
                self.remove_key(key)

    # -------------------- lifecycle --------------------

    def start(self, keys: Optional[Iterable[str]] = None) -> None:
        """Begin polling; must be called from a running event loop."""
        if self.state is EngineState.RUNNING:
            logger.warning("engine_already_running", watcher=self.name)
            return
        validate_settings(self.settings)
        if self.limiter.capacity != self.settings.concurrency:
            self.limiter = ConcurrencyLimiter(self.settings.concurrency)
        for key in keys or ():
            self.add_key(key)
        if not self._states:
            raise ConfigError("No keys to watch; pass keys or call add_key() first")

        now = self._clock()
        for state in self._states.values():
            self.strategy.prepare(state, now)

        scheduler = self._ensure_scheduler()
        # One job id per run; max_instances must not count a stopped run's job
        self._job_id = f"pollwatch:{self.name}:{id(self)}:{self._generation}"
        job_kwargs: Dict[str, Any] = {}
        if self.settings.immediate_first_tick:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)
        scheduler.add_job(
            self._scheduled_tick,
            "interval",
            seconds=self.settings.poll_interval_ms / 1000,
            id=self._job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **job_kwargs,
        )
        scheduler.add_listener(self._on_job_skipped, EVENT_JOB_MAX_INSTANCES)
        if not scheduler.running:
            scheduler.start()

        self.state = EngineState.RUNNING
        logger.info(
            "engine_started",
            watcher=self.name,
            keys=len(self._states),
            interval_ms=self.settings.poll_interval_ms,
        )
        self.emitter.emit(STARTED, StartedEvent(keys=tuple(self._states)))

    def stop(self) -> None:
        """Cancel the timer; results of in-flight fetches are discarded."""
        if self.state is not EngineState.RUNNING:
            return
        self._generation += 1
        if self._scheduler is not None and self._job_id is not None:
            try:
                self._scheduler.remove_job(self._job_id)
            except JobLookupError:
                pass
            self._scheduler.remove_listener(self._on_job_skipped)
        self._job_id = None
        self.ticking = False
        self.state = EngineState.STOPPED
        logger.info("engine_stopped", watcher=self.name, ticks=self.ticks_run)
        self.emitter.emit(STOPPED, StoppedEvent())

    async def aclose(self) -> None:
        """Stop polling, shut down an engine-owned scheduler, close the provider."""
        self.stop()
        if self._owns_scheduler and self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
        await self.emitter.drain()
        close = getattr(self.fetch_client.provider, "aclose", None)
        if close is not None:
            await close()

    def reset(self) -> None:
        """Forget every key's delivered values, ids and cursor."""
        if self.state is EngineState.RUNNING:
            raise ConfigError("reset() is only allowed while the engine is not running")
        self._generation += 1
        self.ticking = False
        for key in self._states:
            self._states[key] = WatchState()
        logger.info("engine_reset", watcher=self.name, keys=len(self._states))

    def is_polling(self) -> bool:
        return self.state is EngineState.RUNNING

    # -------------------- introspection --------------------

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "ticking": self.ticking,
            "keys": len(self._states),
            "concurrency": self.limiter.capacity,
            "interval_ms": self.settings.poll_interval_ms,
            "ticks_run": self.ticks_run,
            "ticks_skipped": self.ticks_skipped,
            "peak_concurrency": self.limiter.peak,
        }

    def watch_state(self, key: str) -> WatchState:
        try:
            return self._states[key]
        except KeyError:
            raise KeyError(f"{key!r} is not tracked by {self.name}") from None

    def last_value(self, key: str) -> Any:
        state = self.watch_state(key)
        return state.last_value if state.has_value else None

    def cursor(self, key: str) -> Optional[int]:
        return self.watch_state(key).cursor

    def set_cursor(self, key: str, timestamp_ms: Optional[int]) -> None:
        """Set the resume point passed to the provider as ``since``."""
        if self.state is EngineState.RUNNING:
            raise ConfigError("set_cursor() is not allowed while the engine is running")
        state = self.watch_state(key)
        state.cursor = None if timestamp_ms is None else max(0, int(timestamp_ms))
        state.baseline = None

    # -------------------- polling --------------------

    async def tick(self) -> None:
        """Run one poll cycle over every tracked key.

        Returns straight away when another tick is still in flight.
        """
        if self.ticking:
            self._record_skip()
            return
        self.ticking = True
        self._tick_token += 1
        token = self._tick_token
        generation = self._generation
        try:
            now = self._clock()
            self.ticks_run += 1
            self.emitter.emit(TICK, TickEvent(timestamp=now))
            keys = list(self._states)
            await asyncio.gather(*(self._poll_key(key, generation) for key in keys))
        finally:
            # stop() and reset() release the flag early; leave a newer tick alone
            if token == self._tick_token:
                self.ticking = False

    async def _scheduled_tick(self) -> None:
        if self.state is not EngineState.RUNNING:
            return
        await self.tick()

    async def _poll_key(self, key: str, generation: int) -> None:
        state = self._states.get(key)
        if state is None:
            return
        cursor = None
        if self.strategy.uses_cursor and self.settings.use_since_query:
            cursor = state.cursor

        try:
            async with self.limiter:
                raw = await self.fetch_client.fetch_once(key, cursor)
            if self._is_stale(key, state, generation):
                return
            events = self.strategy.apply(key, state, raw, self._clock())
        except Exception as exc:
            if self._is_stale(key, state, generation):
                return
            logger.warning(
                "poll_key_failed",
                watcher=self.name,
                key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            self.emitter.emit(ERROR, ErrorEvent(key=key, error=exc))
            return

        for event in events:
            kind = CHANGE if isinstance(event, ChangeEvent) else DISCOVERY
            self.emitter.emit(kind, event)

    def _is_stale(self, key: str, state: WatchState, generation: int) -> bool:
        if generation != self._generation:
            return True
        return self._states.get(key) is not state

    def _record_skip(self) -> None:
        self.ticks_skipped += 1
        logger.info("tick_skipped", watcher=self.name, skipped=self.ticks_skipped)

    def _on_job_skipped(self, event: JobSubmissionEvent) -> None:
        if event.job_id == self._job_id:
            self._record_skip()

    def _ensure_scheduler(self) -> AsyncIOScheduler:
        if self._scheduler is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError as exc:
                raise RuntimeError(
                    "PollingEngine.start() must be called from a running event loop"
                ) from exc
            self._scheduler = AsyncIOScheduler(event_loop=loop)
        return self._scheduler


def _now_ms() -> int:
    return int(time.time() * 1000)


__all__ = ["EngineState", "PollingEngine", "validate_settings"]
