#!/usr/bin/env python3
"""Serialized event pump and the Dashboard facade used by the CLI and web UI."""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, Optional

from .database import PrefStore
from .ledger import MessageLedger
from .models import DashboardView
from .session import Notify, SessionController, WireFactory
from .wire import WireClient, WireEvent

logger = logging.getLogger(__name__)

_STOP = object()

MAX_PENDING = 1000


class EventPump:
    """
    Single queue, single consumer.

    Wire threads post events, other threads submit commands; everything is
    applied on the pump thread one item at a time. The queue holds at most
    ``max_pending`` items: a full queue blocks the posting wire thread until
    the pump catches up, which leaves unread data on the broker socket.
    Without a running worker (tests, one-shot scripts) submit() drains the
    queue on the caller's thread.
    """

    def __init__(self, handler: Callable[[WireEvent], Any], max_pending: int = MAX_PENDING) -> None:
        self._handler = handler
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max_pending)
        self._thread: Optional[threading.Thread] = None
        self._stop_requested = False

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def post(self, event: WireEvent) -> None:
        self._queue.put(event)

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        fut: Future = Future()
        if self.running:
            self._queue.put((fn, args, kwargs, fut))
            return fut
        # make room first, nobody else will
        self.drain()
        self._queue.put((fn, args, kwargs, fut))
        self.drain()
        return fut

    def call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        if threading.current_thread() is self._thread:
            return fn(*args, **kwargs)
        return self.submit(fn, *args, **kwargs).result()

    def drain(self) -> int:
        n = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return n
            if item is _STOP:
                if self.running:
                    # the worker has not seen it yet
                    self._queue.put(_STOP)
                    return n
                continue
            self._process(item)
            n += 1

    def _process(self, item: Any) -> None:
        if isinstance(item, WireEvent):
            try:
                self._handler(item)
            except Exception:
                logger.exception("handler failed for %s event", item.kind)
            return

        fn, args, kwargs, fut = item
        if not fut.set_running_or_notify_cancel():
            return
        try:
            fut.set_result(fn(*args, **kwargs))
        except Exception as e:
            fut.set_exception(e)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            self._process(item)

    def start(self) -> None:
        if self.running:
            return
        self._stop_requested = False
        self._thread = threading.Thread(target=self._run, daemon=True, name="event-pump")
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> bool:
        """Ask the worker to finish what is queued and exit; False if it is still running after ``timeout``."""
        t = self._thread
        if t is None:
            return True
        if not self._stop_requested:
            try:
                self._queue.put(_STOP, timeout=timeout)
            except queue.Full:
                logger.warning("event pump queue still full after %.1fs; stop not delivered", timeout)
                return False
            self._stop_requested = True
        t.join(timeout)
        if t.is_alive():
            logger.warning("event pump did not stop within %.1fs", timeout)
            return False
        self._thread = None
        return True


class Dashboard:
    """Thread-safe front for a SessionController: every call goes through the pump."""

    def __init__(
        self,
        wire_factory: WireFactory,
        prefs: Optional[PrefStore] = None,
        notify: Optional[Notify] = None,
        ledger: Optional[MessageLedger] = None,
        max_pending: int = MAX_PENDING,
    ) -> None:
        self.controller = SessionController(wire_factory, ledger=ledger, prefs=prefs, notify=notify)
        self.pump = EventPump(self.controller.handle, max_pending=max_pending)
        self.controller.sink = self.pump.post

    def start(self) -> None:
        self.pump.start()

    def stop(self) -> None:
        self.disconnect()
        self.pump.stop()

    def connect(self, broker_url: str) -> WireClient:
        return self.pump.call(self.controller.connect, broker_url)

    def disconnect(self) -> None:
        self.pump.call(self.controller.disconnect)

    def clear_messages(self) -> None:
        self.pump.call(self.controller.clear_messages)

    def select_topic(self, topic: Optional[str]) -> None:
        self.pump.call(self.controller.select_topic, topic)

    def toggle_topic(self, topic: str) -> None:
        self.pump.call(self.controller.toggle_topic, topic)

    def view(self) -> DashboardView:
        return self.pump.call(self.controller.view)
