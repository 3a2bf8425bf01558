#!/usr/bin/env python3
"""Numeric series extraction for charting a topic's payloads."""

from __future__ import annotations

import math
import re
from typing import List, Optional, Sequence

from .models import Message, NumericPoint

# Plain decimal only: no NaN/Infinity tokens, no hex, no digit underscores.
_DECIMAL_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def parse_finite(text: str) -> Optional[float]:
    s = (text or "").strip()
    if not _DECIMAL_RE.fullmatch(s):
        return None
    value = float(s)
    if not math.isfinite(value):
        return None  # e.g. 1e999
    return value


def extract_series(messages: Sequence[Message]) -> List[NumericPoint]:
    """
    Turn a newest-first message view into oldest-first points.

    Unparseable payloads are skipped rather than charted as gaps. The newest
    surviving point gets the highest index (the count of survivors) and the
    oldest gets 1.
    """
    values = [v for v in (parse_finite(m.payload) for m in messages) if v is not None]
    n = len(values)
    points = [NumericPoint(index=n - pos, value=v) for pos, v in enumerate(values)]
    points.reverse()
    return points
