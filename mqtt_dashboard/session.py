#!/usr/bin/env python3
"""Session controller: connection status state machine and message ingestion."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from .database import PrefStore
from .ledger import MessageLedger
from .models import (
    ConnectionStatus, DashboardView, WILDCARD, PREF_BROKER_URL,
)
from .series import extract_series
from .topics import distinct_topics, filtered
from .wire import (
    ConstructionError, EventSink, WireClient, WireEvent,
    OPENED, RETRYING, CLOSED, MESSAGE,
)

logger = logging.getLogger(__name__)

WireFactory = Callable[[str, EventSink], WireClient]
Notify = Callable[[str, str], None]


class SessionStateError(RuntimeError):
    """A command was issued in a status that does not allow it."""


def _log_notice(level: str, text: str) -> None:
    logger.info("%s: %s", level, text)


class SessionController:
    """
    Owns the connection status, the active wire client and the ledger.

    Not thread-safe on its own: commands and wire events are expected to be
    applied one at a time (see dispatch.EventPump). Events are honoured only
    when they come from the currently registered client, so a superseded
    client can never move the status of its replacement.
    """

    def __init__(
        self,
        wire_factory: WireFactory,
        sink: Optional[EventSink] = None,
        ledger: Optional[MessageLedger] = None,
        prefs: Optional[PrefStore] = None,
        notify: Optional[Notify] = None,
    ) -> None:
        self._wire_factory = wire_factory
        self.sink: EventSink = sink or self.handle
        self.ledger = ledger or MessageLedger()
        self.prefs = prefs
        self.notify: Notify = notify or _log_notice

        self.status = ConnectionStatus.DISCONNECTED
        self.broker_url = ""
        self.selected_topic: Optional[str] = None
        self._client: Optional[WireClient] = None
        self._listeners: List[Callable[["SessionController"], None]] = []

    @property
    def client(self) -> Optional[WireClient]:
        return self._client

    def add_listener(self, fn: Callable[["SessionController"], None]) -> None:
        self._listeners.append(fn)

    def _changed(self) -> None:
        for fn in list(self._listeners):
            try:
                fn(self)
            except Exception:
                logger.exception("session listener %r failed", fn)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is not self.status:
            logger.debug("status %s -> %s", self.status.value, status.value)
        self.status = status

    # ------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------
    def connect(self, broker_url: str) -> WireClient:
        if self.status is not ConnectionStatus.DISCONNECTED:
            raise SessionStateError(f"connect() while {self.status.value}; disconnect first")

        # The transport closed on its own but the client may still be retrying
        if self._client is not None:
            self._discard_client()

        try:
            client = self._wire_factory(broker_url, self.sink)
        except Exception as e:
            self._set_status(ConnectionStatus.DISCONNECTED)
            self.notify("error", f"Failed to connect: {e}")
            self._changed()
            if isinstance(e, ConstructionError):
                raise
            raise ConstructionError(str(e)) from e

        self._client = client
        self.broker_url = broker_url
        self._set_status(ConnectionStatus.CONNECTING)
        try:
            client.subscribe(WILDCARD)
            client.start()
        except Exception as e:
            self._discard_client()
            self._set_status(ConnectionStatus.DISCONNECTED)
            self.notify("error", f"Failed to connect: {e}")
            self._changed()
            if isinstance(e, ConstructionError):
                raise
            raise ConstructionError(str(e)) from e

        if self.prefs is not None:
            self.prefs.set(PREF_BROKER_URL, broker_url)
        self._changed()
        return client

    def disconnect(self) -> None:
        if self._client is None:
            return
        self._discard_client()
        self._set_status(ConnectionStatus.DISCONNECTED)
        self.ledger.clear()
        self.notify("success", "Disconnected")
        self._changed()

    def _discard_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.teardown(force=True)
        except Exception:
            logger.exception("teardown of %r failed", client)

    def clear_messages(self) -> None:
        self.ledger.clear()
        self.notify("info", "Cleared messages")
        self._changed()

    def select_topic(self, topic: Optional[str]) -> None:
        self.selected_topic = topic or None
        self._changed()

    def toggle_topic(self, topic: str) -> None:
        """Select `topic`, or clear the selection if it is already selected."""
        self.select_topic(None if self.selected_topic == topic else topic)

    # ------------------------------------------------------------
    # Wire events
    # ------------------------------------------------------------
    def handle(self, event: WireEvent) -> bool:
        if self._client is None or event.source is not self._client:
            logger.debug("dropping stale %s event from %r", event.kind, event.source)
            return False

        if event.kind == OPENED:
            self._set_status(ConnectionStatus.CONNECTED)
            self.notify("success", "Connected to broker")
        elif event.kind == RETRYING:
            self._set_status(ConnectionStatus.CONNECTING)
            self.notify("info", "Reconnecting to broker...")
        elif event.kind == CLOSED:
            self._set_status(ConnectionStatus.DISCONNECTED)
            self.notify("error", "Disconnected from broker")
        elif event.kind == MESSAGE:
            self.ledger.append(event.topic, event.payload)
        else:
            logger.warning("unknown wire event kind %r", event.kind)
            return False

        self._changed()
        return True

    # ------------------------------------------------------------
    # Derived view
    # ------------------------------------------------------------
    def view(self) -> DashboardView:
        snapshot = self.ledger.snapshot()
        selected = self.selected_topic
        shown = filtered(snapshot, selected)
        return DashboardView(
            status=self.status,
            broker_url=self.broker_url,
            messages=snapshot,
            topics=distinct_topics(snapshot),
            selected_topic=selected,
            filtered=shown,
            series=extract_series(shown) if selected is not None else [],
        )
