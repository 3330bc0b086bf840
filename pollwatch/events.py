"""Event payloads and synchronous listener fan-out."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from pollwatch.utils.logging import get_logger

logger = get_logger(__name__)

CHANGE = "change"
DISCOVERY = "discovery"
ERROR = "error"
STARTED = "started"
STOPPED = "stopped"
TICK = "tick"

EVENT_KINDS = (CHANGE, DISCOVERY, ERROR, STARTED, STOPPED, TICK)

Listener = Callable[[Any], Any]


@dataclass(frozen=True)
class ChangeEvent:
    """A tracked scalar moved from ``old_value`` to ``new_value``."""

    key: str
    old_value: Any
    new_value: Any
    timestamp: int
    change_pct: Optional[float] = None


@dataclass(frozen=True)
class DiscoveryEvent:
    """A previously unseen item showed up for ``key``."""

    key: str
    item_id: str
    payload: Dict[str, Any]
    timestamp: int


@dataclass(frozen=True)
class ErrorEvent:
    key: str
    error: BaseException

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


@dataclass(frozen=True)
class TickEvent:
    timestamp: int


@dataclass(frozen=True)
class StartedEvent:
    keys: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StoppedEvent:
    pass


class EventEmitter:
    """Deliver events to registered listeners, one kind at a time.

    Listeners run synchronously in registration order. A listener that raises
    is logged and skipped; the remaining listeners still receive the event.
    Coroutine results are scheduled on the running loop.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Tuple[Listener, bool]]] = {
            kind: [] for kind in EVENT_KINDS
        }
        self._pending: set[asyncio.Task[Any]] = set()

    def on(self, kind: str, listener: Listener) -> Listener:
        self._bucket(kind).append((listener, False))
        return listener

    def once(self, kind: str, listener: Listener) -> Listener:
        self._bucket(kind).append((listener, True))
        return listener

    def off(self, kind: str, listener: Listener) -> bool:
        """Remove the first registration of ``listener``; return whether found."""
        bucket = self._bucket(kind)
        for index, (registered, _) in enumerate(bucket):
            if registered is listener:
                del bucket[index]
                return True
        return False

    def listener_count(self, kind: str) -> int:
        return len(self._bucket(kind))

    def clear(self, kind: str | None = None) -> None:
        kinds = [kind] if kind else list(EVENT_KINDS)
        for name in kinds:
            self._bucket(name).clear()

    def emit(self, kind: str, event: Any) -> int:
        """Deliver ``event`` to every listener of ``kind``; return delivery count."""
        bucket = self._bucket(kind)
        if not bucket:
            return 0
        # Snapshot so listeners may (un)register while we iterate
        snapshot = list(bucket)
        for entry in snapshot:
            if entry[1] and entry in bucket:
                bucket.remove(entry)

        delivered = 0
        for listener, _ in snapshot:
            try:
                result = listener(event)
            except Exception as exc:
                logger.error(
                    "listener_failed",
                    kind=kind,
                    listener=_listener_name(listener),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                continue
            delivered += 1
            if inspect.isawaitable(result):
                self._schedule(kind, listener, result)
        return delivered

    async def drain(self) -> None:
        """Wait for coroutine listeners scheduled by earlier emits."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, kind: str, listener: Listener, awaitable: Any) -> None:
        try:
            task = asyncio.ensure_future(awaitable)
        except RuntimeError as exc:
            logger.error(
                "listener_schedule_failed",
                kind=kind,
                listener=_listener_name(listener),
                error=str(exc),
            )
            return
        self._pending.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            self._pending.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                logger.error(
                    "listener_failed",
                    kind=kind,
                    listener=_listener_name(listener),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

        task.add_done_callback(_done)

    def _bucket(self, kind: str) -> List[Tuple[Listener, bool]]:
        try:
            return self._listeners[kind]
        except KeyError:
            raise ValueError(
                f"Unknown event kind {kind!r}; expected one of {', '.join(EVENT_KINDS)}"
            ) from None


def _listener_name(listener: Listener) -> str:
    return getattr(listener, "__qualname__", None) or repr(listener)
