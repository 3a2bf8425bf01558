#!/usr/bin/env python3
"""Bounded, newest-first buffer of received messages."""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Tuple

from .models import CAPACITY, Message, utc_now_iso


class MessageLedger:
    """
    Newest-first ring of the most recent messages.

    appendleft on a bounded deque drops the tail in O(1), so the ledger never
    holds more than `capacity` entries. The lock lets request threads take a
    snapshot while the event pump appends.
    """

    def __init__(self, capacity: int = CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: Deque[Message] = deque(maxlen=capacity)
        self._next_seq = 1
        self._lock = threading.Lock()

    def append(self, topic: str, payload: str) -> Message:
        with self._lock:
            msg = Message(topic=topic, payload=payload, sequence=self._next_seq, received_at=utc_now_iso())
            self._next_seq += 1
            self._entries.appendleft(msg)
        return msg

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def snapshot(self) -> Tuple[Message, ...]:
        with self._lock:
            return tuple(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
