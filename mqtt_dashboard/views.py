#!/usr/bin/env python3
"""Console rendering and notices for mqtt_dashboard."""

from __future__ import annotations

import logging
import sys
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Sequence

from .models import ConnectionStatus, DashboardView, Message, NumericPoint, clip, utc_now_iso

logger = logging.getLogger(__name__)

SPARK_CHARS = "▁▂▃▄▅▆▇█"

_STATUS_LABEL = {
    ConnectionStatus.DISCONNECTED: "DISCONNECTED",
    ConnectionStatus.CONNECTING: "CONNECTING",
    ConnectionStatus.CONNECTED: "CONNECTED",
}

_LEVEL_TO_LOG = {
    "error": logging.WARNING,
    "success": logging.INFO,
    "info": logging.INFO,
}


@dataclass(frozen=True)
class Notice:
    level: str                       # info / success / error
    text: str
    at: str = ""


class NoticeBoard:
    """Recent user-facing notices; optionally echoed to the console."""

    def __init__(self, limit: int = 50, echo: bool = False) -> None:
        self._items: Deque[Notice] = deque(maxlen=limit)
        self._lock = threading.Lock()
        self.echo = echo

    def __call__(self, level: str, text: str) -> None:
        self.post(level, text)

    def post(self, level: str, text: str) -> Notice:
        n = Notice(level=level, text=text, at=utc_now_iso())
        with self._lock:
            self._items.appendleft(n)
        logger.log(_LEVEL_TO_LOG.get(level, logging.INFO), "%s", text)
        if self.echo:
            out = sys.stderr if level == "error" else sys.stdout
            print(f"[{n.at}] {text}", file=out)
        return n

    def recent(self, n: int = 10) -> List[Notice]:
        with self._lock:
            return list(self._items)[:n]


def sparkline(points: Sequence[NumericPoint]) -> str:
    if not points:
        return ""
    values = [p.value for p in points]
    lo, hi = min(values), max(values)
    if hi == lo:
        return SPARK_CHARS[len(SPARK_CHARS) // 2] * len(values)
    scale = (len(SPARK_CHARS) - 1) / (hi - lo)
    return "".join(SPARK_CHARS[int(round((v - lo) * scale))] for v in values)


def render_status_line(view: DashboardView) -> str:
    label = _STATUS_LABEL.get(view.status, view.status.value)
    sel = view.selected_topic or "*"
    return (
        f"[{utc_now_iso()}] STATUS {label} broker={view.broker_url or '-'} "
        f"messages={len(view.messages)} topics={len(view.topics)} selected={sel}"
    )


def render_message_line(m: Message, width: int = 96) -> str:
    head = f"#{m.sequence:<5} {m.topic}: "
    return head + clip(m.payload.replace("\n", " "), max(8, width - len(head)))


def render_dashboard(view: DashboardView, width: int = 96) -> str:
    """
    Plain-text board:

      MQTT Dashboard  [CONNECTED]  ws://localhost:8888
      Topics: > sensors/temp  sensors/hum
      Messages for: sensors/temp
        #12    sensors/temp: 21.5
      Series (3): ▁▄█  min=20 max=22.5
    """
    lines: List[str] = []
    label = _STATUS_LABEL.get(view.status, view.status.value)
    lines.append(f"MQTT Dashboard  [{label}]  {view.broker_url or ''}".rstrip())
    lines.append("-" * min(width, 96))

    if not view.messages:
        lines.append("No messages received yet.")
    else:
        pills = [f"> {t}" if t == view.selected_topic else t for t in view.topics]
        lines.append(clip("Topics: " + "  ".join(pills), width))

    if view.selected_topic is not None:
        lines.append(f"Messages for: {view.selected_topic}")
        for m in view.filtered:
            lines.append("  " + render_message_line(m, width - 2))
        if view.series:
            values = [p.value for p in view.series]
            lines.append(
                f"Series ({len(view.series)}): {sparkline(view.series)}  "
                f"min={min(values):g} max={max(values):g}"
            )

    return "\n".join(lines)
