"""Shared fakes for mqtt_dashboard tests."""

import pytest

from mqtt_dashboard.wire import WireClient, WireEvent, parse_broker_url, OPENED, RETRYING, CLOSED, MESSAGE


class FakeWire(WireClient):
    """Records commands instead of doing I/O; tests fire events by hand."""

    def __init__(self, url, sink):
        super().__init__(parse_broker_url(url), sink)
        self.subscriptions = []
        self.started = False
        self.teardowns = []

    def subscribe(self, pattern):
        self.subscriptions.append(pattern)

    def start(self):
        self.started = True

    def teardown(self, force=True):
        self._torn_down = True
        self.teardowns.append(force)

    # helpers
    def opened(self):
        self._emit(OPENED)

    def retrying(self):
        self._emit(RETRYING)

    def closed(self):
        self._emit(CLOSED)

    def message(self, topic, payload):
        self._emit(MESSAGE, topic=topic, payload=payload)


class FakeWireFactory:
    def __init__(self):
        self.created = []

    def __call__(self, url, sink):
        w = FakeWire(url, sink)
        self.created.append(w)
        return w


@pytest.fixture
def wire_factory():
    return FakeWireFactory()
