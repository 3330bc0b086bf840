"""Per-key memory of what has already been delivered.

Two strategies are available:

* :class:`ValueDiff` keeps the last observed scalar and reports changes.
* :class:`IdentitySet` keeps a bounded FIFO set of item ids plus a timestamp
  cursor and reports items it has not seen before.

Strategies are stateless; everything they remember lives in the
:class:`WatchState` the engine hands them. ``apply`` validates the whole
fetch result before touching state, so a malformed response leaves the
state exactly as it was.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pollwatch.errors import ConfigError, MalformedResponseError
from pollwatch.events import ChangeEvent, DiscoveryEvent
from pollwatch.utils.logging import get_logger

logger = get_logger(__name__)

_MISSING: Any = object()

TimestampUnit = Literal["ms", "s"]
WatchEvent = Union[ChangeEvent, DiscoveryEvent]


class WatchItem(BaseModel):
    """A discrete item returned by a fetch provider."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(min_length=1)
    timestamp: float
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("timestamp")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("timestamp must be finite")
        return value

    @field_validator("payload", mode="before")
    @classmethod
    def _default_payload(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


@dataclass
class WatchState:
    """Everything remembered about one tracked key."""

    last_value: Any = _MISSING
    seen_ids: "OrderedDict[str, None]" = field(default_factory=OrderedDict)
    cursor: Optional[int] = None
    baseline: Optional[int] = None
    primed: bool = False

    @property
    def has_value(self) -> bool:
        return self.last_value is not _MISSING

    def remember(self, item_id: str, limit: int) -> None:
        self.seen_ids[item_id] = None
        while len(self.seen_ids) > limit:
            self.seen_ids.popitem(last=False)

    def advance_cursor(self, timestamp: int) -> None:
        if self.cursor is None or timestamp > self.cursor:
            self.cursor = timestamp


class DedupStrategy(ABC):
    """Decide which events a successful fetch result produces for one key."""

    #: Whether the engine should hand the key's cursor to the provider.
    uses_cursor: bool = False

    @abstractmethod
    def apply(
        self, key: str, state: WatchState, raw: Any, now: int
    ) -> List[WatchEvent]:
        """Compare ``raw`` with ``state``, update it, and return events to emit."""

    def prepare(self, state: WatchState, now: int) -> None:
        """Hook run when a key starts being polled."""


class ValueDiff(DedupStrategy):
    """Emit a change whenever the fetched scalar differs from the last one.

    The first successful fetch only seeds the stored value. With
    ``threshold_pct`` the stored value becomes a reference that moves only
    when the relative change reaches the threshold.
    """

    def __init__(self, threshold_pct: Optional[float] = None) -> None:
        if threshold_pct is not None and threshold_pct < 0:
            raise ConfigError("threshold_pct must be non-negative")
        self.threshold_pct = threshold_pct

    def apply(
        self, key: str, state: WatchState, raw: Any, now: int
    ) -> List[WatchEvent]:
        if not state.has_value:
            state.last_value = raw
            return []

        old = state.last_value
        if _same_value(old, raw):
            state.last_value = raw
            return []

        change_pct = _change_pct(old, raw)
        if self.threshold_pct is not None:
            if change_pct is None or abs(change_pct) < self.threshold_pct:
                return []

        state.last_value = raw
        return [
            ChangeEvent(
                key=key,
                old_value=old,
                new_value=raw,
                timestamp=now,
                change_pct=change_pct,
            )
        ]


class IdentitySet(DedupStrategy):
    """Emit each previously unseen item once, oldest first."""

    uses_cursor = True

    def __init__(
        self,
        max_seen_ids: int = 5_000,
        skip_backfill: bool = True,
        skip_invalid: bool = False,
        timestamp_unit: TimestampUnit = "ms",
    ) -> None:
        if max_seen_ids < 1:
            raise ConfigError("max_seen_ids must be at least 1")
        if timestamp_unit not in ("ms", "s"):
            raise ConfigError(f"Unsupported timestamp unit {timestamp_unit!r}")
        self.max_seen_ids = max_seen_ids
        self.skip_backfill = skip_backfill
        self.skip_invalid = skip_invalid
        self.timestamp_unit = timestamp_unit

    def prepare(self, state: WatchState, now: int) -> None:
        if self.skip_backfill and not state.primed and state.cursor is None:
            state.cursor = now
            state.baseline = now

    def apply(
        self, key: str, state: WatchState, raw: Any, now: int
    ) -> List[WatchEvent]:
        items = self.parse_items(key, raw)
        items.sort(key=lambda item: item.timestamp)

        events: List[WatchEvent] = []
        baseline = state.baseline if not state.primed else None
        for item in items:
            timestamp = self._to_ms(item.timestamp)
            if item.id in state.seen_ids:
                continue
            state.remember(item.id, self.max_seen_ids)
            state.advance_cursor(timestamp)
            if baseline is not None and timestamp <= baseline:
                continue
            events.append(
                DiscoveryEvent(
                    key=key,
                    item_id=item.id,
                    payload=dict(item.payload),
                    timestamp=timestamp,
                )
            )
        state.primed = True
        state.baseline = None
        return events

    def parse_items(self, key: str, raw: Any) -> List[WatchItem]:
        if not isinstance(raw, list):
            raise MalformedResponseError(
                f"Invalid response: expected array of items, got {type(raw).__name__}"
            )
        items: List[WatchItem] = []
        for index, entry in enumerate(raw):
            try:
                items.append(WatchItem.model_validate(entry))
            except ValidationError as exc:
                if not self.skip_invalid:
                    raise MalformedResponseError(
                        f"Invalid item at index {index}: {exc.errors()[0]['msg']}"
                    ) from exc
                logger.warning(
                    "invalid_item_skipped",
                    key=key,
                    index=index,
                    error=exc.errors()[0]["msg"],
                )
        return items

    def _to_ms(self, value: float) -> int:
        if self.timestamp_unit == "s":
            return int(round(value * 1000))
        return int(round(value))


def _same_value(old: Any, new: Any) -> bool:
    if old == new:
        return True
    # NaN never equals itself
    return _is_nan(old) and _is_nan(new)


def _is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def _change_pct(old: Any, new: Any) -> Optional[float]:
    if not _is_number(old) or not _is_number(new):
        return None
    if old == 0:
        return None
    return (new - old) / abs(old) * 100


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


__all__ = [
    "DedupStrategy",
    "IdentitySet",
    "ValueDiff",
    "WatchItem",
    "WatchState",
]
