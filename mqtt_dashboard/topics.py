#!/usr/bin/env python3
"""Topic index: distinct topics and the selection filter."""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from .models import Message


def distinct_topics(snapshot: Sequence[Message]) -> List[str]:
    # First occurrence in the newest-first snapshot, so the most recently
    # active topic leads.
    return list(dict.fromkeys(m.topic for m in snapshot))


def filtered(snapshot: Sequence[Message], selected: Optional[str]) -> Tuple[Message, ...]:
    if selected is None:
        return tuple(snapshot)
    return tuple(m for m in snapshot if m.topic == selected)
