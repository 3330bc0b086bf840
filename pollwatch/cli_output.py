"""CLI output formatting for watcher events.

Provides formatters for plain text and JSON lines.
"""

from __future__ import annotations

import json
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pollwatch.events import (
    CHANGE,
    DISCOVERY,
    ERROR,
    STARTED,
    STOPPED,
    TICK,
    ChangeEvent,
    DiscoveryEvent,
    ErrorEvent,
    StartedEvent,
)


class OutputFormat(Enum):
    """Supported output formats."""

    TEXT = "text"
    JSON = "json"


class CLIOutput:
    """Unified output handler for CLI."""

    def __init__(
        self,
        format: OutputFormat = OutputFormat.TEXT,
        verbose: bool = False,
        stream: Any = None,
    ) -> None:
        self.format = format
        self.verbose = verbose
        self.stream = stream or sys.stdout

    def event(self, kind: str, event: Any) -> None:
        """Output one watcher event."""
        if kind == TICK and not self.verbose:
            return
        if self.format == OutputFormat.JSON:
            line = json.dumps(event_to_dict(kind, event), default=str)
            print(line, file=self.stream, flush=True)
        else:
            print(format_event_plain(kind, event), file=self.stream, flush=True)

    def status(self, message: str) -> None:
        """Output a status message."""
        if self.format == OutputFormat.JSON:
            return  # Suppress status in JSON mode
        print(f"⏳ {message}", file=self.stream)

    def info(self, message: str) -> None:
        if self.format == OutputFormat.JSON:
            return
        print(f"ℹ️  {message}", file=self.stream)

    def error(self, message: str) -> None:
        """Output an error message."""
        if self.format == OutputFormat.JSON:
            print(json.dumps({"error": message}), file=sys.stderr)
            return
        print(f"❌ {message}", file=sys.stderr)


def event_to_dict(kind: str, event: Any) -> Dict[str, Any]:
    """Flatten an event dataclass into JSON-safe primitives."""
    data: Dict[str, Any] = {"event": kind}
    if isinstance(event, ErrorEvent):
        data.update(
            key=event.key,
            error=event.message,
            error_type=type(event.error).__name__,
        )
        return data
    if is_dataclass(event):
        data.update(asdict(event))
    if isinstance(data.get("keys"), tuple):
        data["keys"] = list(data["keys"])
    return data


def format_event_plain(kind: str, event: Any) -> str:
    """Format a single event for plain text output."""
    if kind == CHANGE and isinstance(event, ChangeEvent):
        line = f"🔄 {event.key}: {event.old_value} → {event.new_value}"
        if event.change_pct is not None:
            line += f" ({event.change_pct:+.2f}%)"
        return f"{line}  [{_format_timestamp(event.timestamp)}]"
    if kind == DISCOVERY and isinstance(event, DiscoveryEvent):
        when = _format_timestamp(event.timestamp)
        line = f"🆕 {event.key}: {event.item_id}  [{when}]"
        if event.payload:
            line += f"\n   {json.dumps(event.payload, default=str)}"
        return line
    if kind == ERROR and isinstance(event, ErrorEvent):
        return f"❌ {event.key}: {event.message}"
    if kind == STARTED and isinstance(event, StartedEvent):
        return f"▶️  watching {len(event.keys)} key(s): {', '.join(event.keys)}"
    if kind == STOPPED:
        return "⏹️  stopped"
    if kind == TICK:
        return f"… tick {_format_timestamp(getattr(event, 'timestamp', 0))}"
    return f"{kind}: {event}"


def _format_timestamp(timestamp_ms: int) -> str:
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC")
