"""Resilient change-detection polling for remote sources."""

from pollwatch.config import WatchSettings, build_settings, load_settings
from pollwatch.dedup import (
    DedupStrategy,
    IdentitySet,
    ValueDiff,
    WatchItem,
    WatchState,
)
from pollwatch.engine import EngineState, PollingEngine
from pollwatch.errors import (
    ConfigError,
    FetchTimeoutError,
    HTTPError,
    MalformedResponseError,
    NetworkError,
    RPCError,
    WatchError,
)
from pollwatch.events import (
    ChangeEvent,
    DiscoveryEvent,
    ErrorEvent,
    EventEmitter,
    StartedEvent,
    StoppedEvent,
    TickEvent,
)
from pollwatch.fetch import FetchClient

__version__ = "0.1.0"

__all__ = [
    "ChangeEvent",
    "ConfigError",
    "DedupStrategy",
    "DiscoveryEvent",
    "EngineState",
    "ErrorEvent",
    "EventEmitter",
    "FetchClient",
    "FetchTimeoutError",
    "HTTPError",
    "IdentitySet",
    "MalformedResponseError",
    "NetworkError",
    "PollingEngine",
    "RPCError",
    "StartedEvent",
    "StoppedEvent",
    "TickEvent",
    "ValueDiff",
    "WatchError",
    "WatchItem",
    "WatchSettings",
    "WatchState",
    "build_settings",
    "load_settings",
]
