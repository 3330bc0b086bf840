"""Ready-made watchers built on :class:`~pollwatch.engine.PollingEngine`.

Each preset pairs one HTTP provider with one dedup strategy:

========================  ==========================  ===============
preset                    provider                    strategy
========================  ==========================  ===============
``balance_watcher``       JsonRpcBalanceProvider      ValueDiff
``transaction_watcher``   RecentTransactionsProvider  IdentitySet (s)
``event_watcher``         EventsSinceProvider         IdentitySet
``price_watcher``         PriceProvider               ValueDiff (%)
``asset_flow_watcher``    TransfersProvider           IdentitySet
========================  ==========================  ===============
"""

from __future__ import annotations

from typing import Annotated, Any, Iterable, List, Optional, Sequence

from pydantic import StringConstraints, TypeAdapter, ValidationError

from pollwatch.config import WatchSettings, load_settings
from pollwatch.dedup import IdentitySet, ValueDiff
from pollwatch.engine import PollingEngine
from pollwatch.errors import ConfigError
from pollwatch.providers import (
    EventsSinceProvider,
    JsonRpcBalanceProvider,
    PriceProvider,
    RecentTransactionsProvider,
    TransfersProvider,
)

BASE58_PATTERN = r"^[1-9A-HJ-NP-Za-km-z]+$"

Address = Annotated[str, StringConstraints(min_length=32, pattern=BASE58_PATTERN)]

TrackedKey = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

_ADDRESSES = TypeAdapter(List[Address])
_KEYS = TypeAdapter(List[TrackedKey])


def validate_addresses(addresses: Iterable[str]) -> List[str]:
    """Return de-duplicated base58-like addresses or raise ConfigError."""
    candidates = list(addresses)
    if not candidates:
        raise ConfigError("addresses required")
    try:
        valid = _ADDRESSES.validate_python(candidates)
    except ValidationError as exc:
        first = exc.errors()[0]
        raise ConfigError(
            f"Invalid address at position {first['loc'][0]}: {first['msg']}"
        ) from exc
    return list(dict.fromkeys(valid))


def validate_keys(keys: Iterable[str], what: str = "keys") -> List[str]:
    """Return de-duplicated non-blank keys or raise ConfigError."""
    candidates = list(keys)
    if not candidates:
        raise ConfigError(f"{what} required")
    try:
        valid = _KEYS.validate_python(candidates)
    except ValidationError as exc:
        first = exc.errors()[0]
        raise ConfigError(
            f"Invalid entry in {what} at position {first['loc'][0]}: {first['msg']}"
        ) from exc
    return list(dict.fromkeys(valid))


def identity_strategy(
    settings: WatchSettings, timestamp_unit: Optional[str] = None
) -> IdentitySet:
    return IdentitySet(
        max_seen_ids=settings.max_seen_ids,
        skip_backfill=settings.skip_backfill_on_first_run,
        skip_invalid=settings.skip_invalid_items,
        timestamp_unit=timestamp_unit or settings.timestamp_unit,
    )


def balance_watcher(
    rpc_url: str,
    addresses: Iterable[str],
    settings: Optional[WatchSettings] = None,
    method: str = "getBalance",
    **engine_kwargs: Any,
) -> PollingEngine:
    settings = settings or load_settings()
    provider = JsonRpcBalanceProvider(rpc_url, method=method, headers=settings.headers)
    engine = PollingEngine(
        provider, ValueDiff(), settings, name="balance", **engine_kwargs
    )
    engine.set_keys(validate_addresses(addresses))
    return engine


def transaction_watcher(
    api_url: str,
    addresses: Iterable[str],
    settings: Optional[WatchSettings] = None,
    **engine_kwargs: Any,
) -> PollingEngine:
    """Report new transactions per address; explorer times are unix seconds."""
    settings = settings or load_settings()
    provider = RecentTransactionsProvider(api_url, headers=settings.headers)
    engine = PollingEngine(
        provider,
        identity_strategy(settings, timestamp_unit="s"),
        settings,
        name="transactions",
        **engine_kwargs,
    )
    engine.set_keys(validate_keys(addresses, "addresses"))
    return engine


def event_watcher(
    api_url: str,
    source_ids: Sequence[str] = ("default",),
    settings: Optional[WatchSettings] = None,
    path: str = "/outer/events",
    **engine_kwargs: Any,
) -> PollingEngine:
    settings = settings or load_settings()
    provider = EventsSinceProvider(api_url, path=path, headers=settings.headers)
    engine = PollingEngine(
        provider,
        identity_strategy(settings),
        settings,
        name="events",
        **engine_kwargs,
    )
    engine.set_keys(validate_keys(source_ids, "source_ids"))
    return engine


def price_watcher(
    api_url: str,
    symbols: Iterable[str],
    threshold_pct: float = 1.0,
    settings: Optional[WatchSettings] = None,
    **engine_kwargs: Any,
) -> PollingEngine:
    """Alert when a symbol moves at least ``threshold_pct`` from its reference."""
    settings = settings or load_settings()
    provider = PriceProvider(api_url, headers=settings.headers)
    engine = PollingEngine(
        provider,
        ValueDiff(threshold_pct=threshold_pct),
        settings,
        name="prices",
        **engine_kwargs,
    )
    engine.set_keys(validate_keys(symbols, "symbols"))
    return engine


def asset_flow_watcher(
    api_url: str,
    addresses: Sequence[str] = ("default",),
    settings: Optional[WatchSettings] = None,
    **engine_kwargs: Any,
) -> PollingEngine:
    """Report each new token transfer once; ``"default"`` watches every address."""
    settings = settings or load_settings()
    provider = TransfersProvider(api_url, headers=settings.headers)
    engine = PollingEngine(
        provider,
        identity_strategy(settings),
        settings,
        name="asset_flow",
        **engine_kwargs,
    )
    engine.set_keys(validate_keys(addresses, "addresses"))
    return engine


__all__ = [
    "asset_flow_watcher",
    "balance_watcher",
    "event_watcher",
    "identity_strategy",
    "price_watcher",
    "transaction_watcher",
    "validate_addresses",
    "validate_keys",
]
