#!/usr/bin/env python3
"""Data models and helper functions for mqtt_dashboard."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple


# Constants
CAPACITY = 100
WILDCARD = "#"
DEFAULT_BROKER_URL = "ws://localhost:8888"

PREF_BROKER_URL = "broker_url"
PREF_THEME = "theme"


# Helper functions
def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def clip(s: str, n: int) -> str:
    s = s or ""
    return s if len(s) <= n else s[: max(0, n - 1)] + "…"


class ConnectionStatus(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# Dataclasses
@dataclass(frozen=True)
class Message:
    topic: str
    payload: str
    sequence: int                    # arrival counter, never reused
    received_at: str = ""


@dataclass(frozen=True)
class NumericPoint:
    index: int
    value: float


@dataclass(frozen=True)
class DashboardView:
    """Read-only state handed to the presentation layer."""

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    broker_url: str = ""
    messages: Tuple[Message, ...] = ()
    topics: List[str] = field(default_factory=list)
    selected_topic: Optional[str] = None
    filtered: Tuple[Message, ...] = ()
    series: List[NumericPoint] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "broker_url": self.broker_url,
            "messages": [
                {"topic": m.topic, "payload": m.payload, "sequence": m.sequence, "received_at": m.received_at}
                for m in self.messages
            ],
            "topics": list(self.topics),
            "selected_topic": self.selected_topic,
            "series": [{"index": p.index, "value": p.value} for p in self.series],
        }
