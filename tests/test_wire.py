#!/usr/bin/env python3
"""Unit tests for broker URL parsing and the paho / stomp.py adapters."""

import socket
import threading
import time
from unittest.mock import Mock

import pytest
from stomp.exception import ConnectFailedException

from mqtt_dashboard.wire import (
    ConstructionError, MqttWireClient, StompWireClient, WireOptions,
    create_wire_client, parse_broker_url,
    OPENED, RETRYING, CLOSED, MESSAGE,
)


@pytest.mark.parametrize("url,protocol,transport,tls,port", [
    ("ws://localhost:8888", "mqtt", "websockets", False, 8888),
    ("wss://broker.example", "mqtt", "websockets", True, 443),
    ("mqtt://broker.example", "mqtt", "tcp", False, 1883),
    ("mqtts://broker.example", "mqtt", "tcp", True, 8883),
    ("tcp://10.0.0.5:1884", "mqtt", "tcp", False, 1884),
    ("stomp://mq.example", "stomp", "tcp", False, 61613),
    ("STOMP+SSL://mq.example:61619", "stomp", "tcp", True, 61619),
])
def test_parse_broker_url(url, protocol, transport, tls, port):
    ep = parse_broker_url(url)
    assert ep.protocol == protocol
    assert ep.transport == transport
    assert ep.tls is tls
    assert ep.port == port


def test_parse_keeps_websocket_path():
    assert parse_broker_url("ws://localhost:8888/mqtt").path == "/mqtt"
    assert parse_broker_url("ws://localhost:8888").path == "/"


@pytest.mark.parametrize("url", [
    "", "   ", "localhost:1883", "http://localhost", "mqtt://", "mqtt://host:notaport", "mqtt://host:99999",
])
def test_parse_rejects_malformed(url):
    with pytest.raises(ConstructionError):
        parse_broker_url(url)


def test_construction_error_is_value_error():
    assert issubclass(ConstructionError, ValueError)


def test_factory_picks_adapter_by_scheme():
    sink = Mock()
    assert isinstance(create_wire_client("ws://localhost:8888", sink), MqttWireClient)
    assert isinstance(create_wire_client("stomp://localhost", sink), StompWireClient)


def _kinds(sink):
    return [c.args[0].kind for c in sink.call_args_list]


def test_mqtt_callbacks_become_events():
    sink = Mock()
    w = create_wire_client("mqtt://localhost", sink)
    w.subscribe("#")

    paho = Mock()
    w._on_connect(paho, None, Mock(), Mock(is_failure=False), None)
    paho.subscribe.assert_called_once_with("#")

    msg = Mock(topic="sensors/temp", payload=b"21.5")
    w._on_message(paho, None, msg)

    w._on_disconnect(paho, None, Mock(), Mock(), None)

    assert _kinds(sink) == [OPENED, MESSAGE, CLOSED, RETRYING]
    ev = sink.call_args_list[1].args[0]
    assert ev.source is w
    assert (ev.topic, ev.payload) == ("sensors/temp", "21.5")


def test_mqtt_refused_connack_emits_nothing():
    sink = Mock()
    w = create_wire_client("mqtt://localhost", sink)
    w._on_connect(Mock(), None, Mock(), Mock(is_failure=True), None)
    sink.assert_not_called()


def test_mqtt_connect_fail_is_retrying():
    sink = Mock()
    w = create_wire_client("mqtt://localhost", sink)
    w._on_connect_fail(Mock(), None)
    assert _kinds(sink) == [RETRYING]


def test_mqtt_no_retry_event_after_teardown():
    sink = Mock()
    w = create_wire_client("mqtt://localhost", sink)
    w._client = Mock()
    w.teardown(force=True)
    w._on_disconnect(Mock(), None, Mock(), Mock(), None)
    assert _kinds(sink) == [CLOSED]


def test_mqtt_binary_payload_is_decoded_leniently():
    sink = Mock()
    w = create_wire_client("mqtt://localhost", sink)
    w._on_message(Mock(), None, Mock(topic="bin", payload=b"\xff\x00ok"))
    assert sink.call_args.args[0].payload.endswith("ok")


def test_sink_failure_is_contained():
    w = create_wire_client("mqtt://localhost", Mock(side_effect=RuntimeError("queue gone")))
    w._on_connect_fail(Mock(), None)  # must not raise


def test_stomp_listener_callbacks_become_events():
    sink = Mock()
    w = create_wire_client("stomp://localhost", sink, WireOptions(stomp_wildcard="/topic/>"))
    w._conn = Mock()
    w._conn.is_connected.return_value = False
    w._spawn_connect = Mock()
    w.subscribe("#")

    w.on_connecting(("localhost", 61613))
    w.on_connected(Mock(headers={}))
    w._conn.subscribe.assert_called_once_with(destination="/topic/>", id="sub-1", ack="auto")

    w.on_message(Mock(headers={"destination": "/topic/TRAIN_MVT"}, body="{}"))
    w.on_disconnected()

    assert _kinds(sink) == [OPENED, MESSAGE, CLOSED]
    ev = sink.call_args_list[1].args[0]
    assert ev.topic == "/topic/TRAIN_MVT"
    # an established session that drops goes back through the retry loop
    w._spawn_connect.assert_called_once_with(reconnecting=True)


def test_stomp_disconnect_before_connected_is_not_reported():
    """stomp.py notifies 'disconnected' for a failed handshake too; only the retry loop reports that."""
    sink = Mock()
    w = create_wire_client("stomp://localhost", sink)
    w._spawn_connect = Mock()
    w.on_disconnected()
    assert _kinds(sink) == []
    w._spawn_connect.assert_not_called()


def test_stomp_drop_after_teardown_does_not_reconnect():
    sink = Mock()
    w = create_wire_client("stomp://localhost", sink)
    w._conn = Mock()
    w._spawn_connect = Mock()
    w.on_connected(Mock(headers={}))
    w.teardown()
    w.on_disconnected()
    assert _kinds(sink) == [OPENED, CLOSED]
    w._spawn_connect.assert_not_called()


def test_stomp_connect_failure_retries_then_reports_closed_once():
    sink = Mock()
    w = create_wire_client("stomp://localhost", sink, WireOptions(reconnect_attempts_max=3, reconnect_delay=0))
    w._conn = Mock()
    w._conn.connect.side_effect = OSError("refused")
    w._run_connect()
    assert w._conn.connect.call_count == 3
    assert _kinds(sink) == [RETRYING, RETRYING, CLOSED]


def test_stomp_connect_succeeds_on_a_later_attempt():
    sink = Mock()
    w = create_wire_client("stomp://localhost", sink, WireOptions(reconnect_attempts_max=5, reconnect_delay=0))
    w._conn = Mock()
    w._conn.connect.side_effect = [ConnectFailedException(), OSError("reset"), None]
    w._run_connect()
    assert w._conn.connect.call_count == 3
    assert _kinds(sink) == [RETRYING, RETRYING]


def test_stomp_reconnect_loop_starts_with_retrying():
    sink = Mock()
    w = create_wire_client("stomp://localhost", sink, WireOptions(reconnect_attempts_max=2, reconnect_delay=0))
    w._conn = Mock()
    w._run_connect(reconnecting=True)
    assert _kinds(sink) == [RETRYING]


def test_stomp_retry_loop_stops_after_teardown():
    sink = Mock()
    w = create_wire_client("stomp://localhost", sink, WireOptions(reconnect_attempts_max=5, reconnect_delay=30))
    w._conn = Mock()

    def fail_and_tear_down(**kwargs):
        w.teardown()
        raise OSError("refused")

    w._conn.connect.side_effect = fail_and_tear_down
    w._run_connect()  # returns at once: teardown wakes the delay
    assert w._conn.connect.call_count == 1
    assert _kinds(sink) == []


@pytest.fixture
def hangup_server():
    """A TCP server on 127.0.0.1 that accepts every connection and closes it straight away."""
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    srv.bind(("127.0.0.1", 0))
    srv.listen(8)
    accepted = []

    def serve():
        while True:
            try:
                conn, _ = srv.accept()
            except OSError:
                return
            accepted.append(conn)
            conn.close()

    t = threading.Thread(target=serve, daemon=True, name="hangup-server")
    t.start()
    yield srv.getsockname()[1], accepted
    srv.close()


def test_stomp_against_server_that_hangs_up(hangup_server):
    """Every handshake is cut off: retrying before each new attempt, then a single closed."""
    port, accepted = hangup_server
    events = []
    done = threading.Event()

    def sink(event):
        events.append(event.kind)
        if event.kind == CLOSED:
            done.set()

    w = create_wire_client(f"stomp://127.0.0.1:{port}", sink,
                           WireOptions(reconnect_attempts_max=3, reconnect_delay=0))
    w.start()
    try:
        assert done.wait(15)
        time.sleep(0.2)  # late 'disconnected' callbacks must not add events
        assert events == [RETRYING, RETRYING, CLOSED]
        assert len(accepted) == 3
    finally:
        w.teardown()
