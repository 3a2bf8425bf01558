#!/usr/bin/env python3
"""Wire clients: broker transports that turn I/O callbacks into WireEvents."""

from __future__ import annotations

import logging
import threading
import urllib.parse
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional

import paho.mqtt.client as mqtt
import stomp
from stomp.exception import ConnectFailedException

from .models import WILDCARD

logger = logging.getLogger(__name__)

OPENED = "opened"
RETRYING = "retrying"
CLOSED = "closed"
MESSAGE = "message"


class ConstructionError(ValueError):
    """The broker URL or client options were rejected before any I/O."""


@dataclass(frozen=True)
class WireEvent:
    kind: str
    source: "WireClient"
    topic: str = ""
    payload: str = ""


EventSink = Callable[[WireEvent], None]


@dataclass(frozen=True)
class BrokerEndpoint:
    url: str
    protocol: str                    # "mqtt" or "stomp"
    host: str
    port: int
    tls: bool = False
    transport: str = "tcp"           # paho transport: "tcp" or "websockets"
    path: str = ""


@dataclass
class WireOptions:
    keepalive: int = 60
    reconnect_delay: int = 1
    max_reconnect_delay: int = 30
    heartbeat_ms: int = 10000
    reconnect_attempts_max: int = 5
    stomp_wildcard: str = "/topic/>"


# scheme -> (protocol, transport, tls, default port)
_SCHEMES = {
    "mqtt": ("mqtt", "tcp", False, 1883),
    "tcp": ("mqtt", "tcp", False, 1883),
    "mqtts": ("mqtt", "tcp", True, 8883),
    "ssl": ("mqtt", "tcp", True, 8883),
    "ws": ("mqtt", "websockets", False, 80),
    "wss": ("mqtt", "websockets", True, 443),
    "stomp": ("stomp", "tcp", False, 61613),
    "stomp+ssl": ("stomp", "tcp", True, 61614),
}


def parse_broker_url(url: str) -> BrokerEndpoint:
    raw = (url or "").strip()
    if not raw:
        raise ConstructionError("empty broker URL")

    parts = urllib.parse.urlsplit(raw)
    scheme = parts.scheme.lower()
    if scheme not in _SCHEMES:
        raise ConstructionError(f"unsupported broker URL scheme {scheme!r} in {raw!r}")

    try:
        port = parts.port
    except ValueError as e:
        raise ConstructionError(f"invalid port in {raw!r}: {e}") from e

    host = parts.hostname or ""
    if not host:
        raise ConstructionError(f"missing host in {raw!r}")

    protocol, transport, tls, default_port = _SCHEMES[scheme]
    return BrokerEndpoint(
        url=raw,
        protocol=protocol,
        host=host,
        port=port or default_port,
        tls=tls,
        transport=transport,
        path=parts.path or "/",
    )


class WireClient:
    """Common plumbing: every callback ends up as a WireEvent on the sink."""

    def __init__(self, endpoint: BrokerEndpoint, sink: EventSink) -> None:
        self.endpoint = endpoint
        self._sink = sink
        self._filters: List[str] = []
        self._torn_down = False

    def _emit(self, kind: str, topic: str = "", payload: str = "") -> None:
        try:
            self._sink(WireEvent(kind=kind, source=self, topic=topic, payload=payload))
        except Exception:
            # Never let a sink failure kill the transport's I/O thread
            logger.exception("wire event sink failed for %s event", kind)

    def subscribe(self, pattern: str) -> None:
        raise NotImplementedError

    def start(self) -> None:
        raise NotImplementedError

    def teardown(self, force: bool = True) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.endpoint.url}>"


class MqttWireClient(WireClient):
    """paho-mqtt transport (TCP or websockets) with paho's own reconnect loop."""

    def __init__(self, endpoint: BrokerEndpoint, sink: EventSink, options: Optional[WireOptions] = None) -> None:
        super().__init__(endpoint, sink)
        self.options = options or WireOptions()
        client_id = f"mqtt_dashboard_{uuid.uuid4().hex[:8]}"
        try:
            self._client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=client_id,
                clean_session=True,
                protocol=mqtt.MQTTv311,
                transport=endpoint.transport,
            )
            if endpoint.transport == "websockets":
                self._client.ws_set_options(path=endpoint.path or "/")
            if endpoint.tls:
                self._client.tls_set()
            self._client.reconnect_delay_set(
                min_delay=self.options.reconnect_delay,
                max_delay=max(self.options.reconnect_delay, self.options.max_reconnect_delay),
            )
        except (ValueError, OSError) as e:
            raise ConstructionError(f"cannot create MQTT client for {endpoint.url}: {e}") from e

        self._client.on_connect = self._on_connect
        self._client.on_connect_fail = self._on_connect_fail
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    def subscribe(self, pattern: str) -> None:
        # Applied in _on_connect so every (re)connect re-subscribes
        if pattern not in self._filters:
            self._filters.append(pattern)
        if self._client.is_connected():
            self._client.subscribe(pattern)

    def start(self) -> None:
        try:
            self._client.connect_async(self.endpoint.host, self.endpoint.port, keepalive=self.options.keepalive)
        except ValueError as e:
            raise ConstructionError(f"cannot connect to {self.endpoint.url}: {e}") from e
        self._client.loop_start()

    def teardown(self, force: bool = True) -> None:
        self._torn_down = True

        def _run() -> None:
            try:
                self._client.disconnect()
                if force:
                    self._client.loop_stop()
            except Exception as e:
                logger.debug("MQTT teardown of %s: %s: %s", self.endpoint.url, type(e).__name__, e)

        threading.Thread(target=_run, daemon=True, name="mqtt-teardown").start()

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            # paho drops the socket and retries; _on_disconnect reports it
            logger.warning("MQTT connection to %s refused: %s", self.endpoint.url, reason_code)
            return
        for pattern in self._filters:
            client.subscribe(pattern)
        self._emit(OPENED)

    def _on_connect_fail(self, client, userdata) -> None:
        logger.info("MQTT connect to %s failed, retrying", self.endpoint.url)
        if not self._torn_down:
            self._emit(RETRYING)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        self._emit(CLOSED)
        if not self._torn_down:
            logger.warning("Unexpected MQTT disconnect from %s (%s), paho will reconnect", self.endpoint.url, reason_code)
            self._emit(RETRYING)

    def _on_message(self, client, userdata, msg) -> None:
        payload = msg.payload.decode("utf-8", errors="replace") if msg.payload else ""
        self._emit(MESSAGE, topic=msg.topic, payload=payload)


class StompWireClient(WireClient, stomp.ConnectionListener):
    """
    stomp.py transport. stomp.py only retries the socket, not a session that
    drops during or after the CONNECT handshake, so the retry loop lives here:

      attempt 1 ........................ connect(wait=True)
      attempt 2..N  retrying, sleep .... connect(wait=True)
      all failed ....................... closed (once)

    A session that drops after it was opened reports closed, then runs the
    same loop with retrying before every attempt.
    """

    def __init__(self, endpoint: BrokerEndpoint, sink: EventSink, options: Optional[WireOptions] = None) -> None:
        super().__init__(endpoint, sink)
        self.options = options or WireOptions()
        host_and_port = (endpoint.host, endpoint.port)
        try:
            self._conn = stomp.Connection11(
                host_and_ports=[host_and_port],
                keepalive=True,
                heartbeats=(self.options.heartbeat_ms, self.options.heartbeat_ms),
                # one socket try per attempt; _run_connect counts the attempts
                reconnect_attempts_max=1,
                vhost=endpoint.host,
            )
            if endpoint.tls:
                self._conn.set_ssl(for_hosts=[host_and_port])
        except Exception as e:
            raise ConstructionError(f"cannot create STOMP client for {endpoint.url}: {e}") from e
        self._conn.set_listener("", self)
        self._stop = threading.Event()
        self._opened = False

    def subscribe(self, pattern: str) -> None:
        dest = self.options.stomp_wildcard if pattern == WILDCARD else pattern
        if dest not in self._filters:
            self._filters.append(dest)
        if self._conn.is_connected():
            self._conn.subscribe(destination=dest, id=f"sub-{len(self._filters)}", ack="auto")

    def start(self) -> None:
        self._spawn_connect(reconnecting=False)

    def _spawn_connect(self, reconnecting: bool) -> None:
        threading.Thread(target=self._run_connect, args=(reconnecting,), daemon=True, name="stomp-connect").start()

    def _run_connect(self, reconnecting: bool = False) -> None:
        attempts = max(1, self.options.reconnect_attempts_max)
        for attempt in range(1, attempts + 1):
            if self._torn_down:
                return
            if attempt > 1 or reconnecting:
                self._emit(RETRYING)
            try:
                # Brokers such as Artemis are picky about the host header; set it explicitly.
                self._conn.connect(wait=True, headers={"host": self.endpoint.host})
                return
            except ConnectFailedException:
                logger.warning("STOMP connect to %s failed (attempt %d/%d)", self.endpoint.url, attempt, attempts)
            except Exception as e:
                logger.warning("STOMP connect to %s failed (attempt %d/%d): %s: %s",
                               self.endpoint.url, attempt, attempts, type(e).__name__, e)
            if attempt < attempts and self._stop.wait(self.options.reconnect_delay):
                return
        if not self._torn_down:
            logger.warning("STOMP giving up on %s after %d attempt(s)", self.endpoint.url, attempts)
            self._emit(CLOSED)

    def teardown(self, force: bool = True) -> None:
        self._torn_down = True
        self._stop.set()

        def _run() -> None:
            try:
                self._conn.disconnect()
            except Exception as e:
                logger.debug("STOMP teardown of %s: %s: %s", self.endpoint.url, type(e).__name__, e)

        threading.Thread(target=_run, daemon=True, name="stomp-teardown").start()

    def on_connecting(self, host_and_port) -> None:
        logger.debug("STOMP socket open to %s:%s", *host_and_port)

    def on_connected(self, frame) -> None:
        self._opened = True
        for i, dest in enumerate(self._filters, start=1):
            self._conn.subscribe(destination=dest, id=f"sub-{i}", ack="auto")
        self._emit(OPENED)

    def on_disconnected(self) -> None:
        # A drop before CONNECTED is a failed attempt; _run_connect reports those
        if not self._opened:
            return
        self._opened = False
        self._emit(CLOSED)
        if not self._torn_down:
            logger.warning("Unexpected STOMP disconnect from %s, reconnecting", self.endpoint.url)
            self._spawn_connect(reconnecting=True)

    def on_error(self, frame) -> None:
        body = getattr(frame, "body", "")
        hdrs = getattr(frame, "headers", {})
        logger.warning("STOMP ERROR from %s headers=%s body=%s", self.endpoint.url, hdrs, body)

    def on_message(self, frame) -> None:
        dest = ""
        try:
            dest = frame.headers.get("destination", "")
        except Exception:
            pass
        body = frame.body or ""
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="replace")
        self._emit(MESSAGE, topic=dest, payload=body)


def create_wire_client(url: str, sink: EventSink, options: Optional[WireOptions] = None) -> WireClient:
    endpoint = parse_broker_url(url)
    if endpoint.protocol == "stomp":
        return StompWireClient(endpoint, sink, options)
    return MqttWireClient(endpoint, sink, options)
