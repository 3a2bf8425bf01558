#!/usr/bin/env python3
"""Command-line interface for mqtt_dashboard."""

from __future__ import annotations

import argparse
import functools
import logging
import sys
import threading
import time

import paho.mqtt
import stomp

from .database import PrefStore
from .dispatch import Dashboard
from .models import DEFAULT_BROKER_URL, PREF_BROKER_URL, utc_now_iso
from .session import SessionController
from .views import NoticeBoard, render_dashboard, render_message_line, render_status_line
from .web import create_app, start_web_dashboard
from .wire import ConstructionError, WireOptions, create_wire_client


def start_status_ticker(dashboard: Dashboard, interval: int = 15) -> threading.Thread:
    def loop():
        while True:
            time.sleep(interval)
            print(render_status_line(dashboard.view()))

    t = threading.Thread(target=loop, daemon=True, name="status-ticker")
    t.start()
    return t


class ConsolePrinter:
    """Session listener that prints newly arrived messages for the selected topic (or all)."""

    def __init__(self, width: int = 96, verbose: bool = False) -> None:
        self.width = width
        self.verbose = verbose
        self._last_seq = 0

    def __call__(self, controller: SessionController) -> None:
        snapshot = controller.ledger.snapshot()
        fresh = [m for m in snapshot if m.sequence > self._last_seq]
        if not fresh:
            return
        self._last_seq = fresh[0].sequence
        selected = controller.selected_topic
        for m in reversed(fresh):
            if selected is None or m.topic == selected or self.verbose:
                print(f"[{m.received_at}] RX {render_message_line(m, self.width)}")


def resolve_broker_url(args: argparse.Namespace, prefs: PrefStore) -> str:
    return args.broker or prefs.get(PREF_BROKER_URL) or DEFAULT_BROKER_URL


def connect_and_run(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    prefs = PrefStore(":memory:" if args.no_prefs else args.prefs_path)
    notices = NoticeBoard(echo=True)
    options = WireOptions(
        keepalive=args.keepalive,
        reconnect_delay=args.reconnect_delay,
        stomp_wildcard=args.stomp_wildcard,
    )
    dashboard = Dashboard(functools.partial(create_wire_client, options=options), prefs=prefs, notify=notices)
    dashboard.controller.add_listener(ConsolePrinter(width=args.width, verbose=args.verbose))
    dashboard.start()

    if args.topic:
        dashboard.select_topic(args.topic)
        print(f"[{utc_now_iso()}] Filter: topic={args.topic}")

    if args.web_port:
        app = create_app(dashboard, prefs=prefs, notices=notices)
        threading.Thread(target=start_web_dashboard, args=(app, args.web_port), daemon=True).start()
        print(f"[{utc_now_iso()}] WEB: dashboard on http://0.0.0.0:{args.web_port}")

    url = resolve_broker_url(args, prefs)
    print(f"[{utc_now_iso()}] Starting. paho-mqtt version={getattr(paho.mqtt, '__version__', '?')} "
          f"stomp.py version={getattr(stomp, '__version__', '?')}")
    print(f"[{utc_now_iso()}] Broker: {url}")
    try:
        dashboard.connect(url)
    except ConstructionError as e:
        print(f"[{utc_now_iso()}] CONNECT FAILED: {e}", file=sys.stderr)
        if not args.web_port:
            dashboard.stop()
            prefs.close()
            return 2

    if args.status_every > 0:
        start_status_ticker(dashboard, interval=args.status_every)

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print(f"\n[{utc_now_iso()}] Exiting...")
        print(render_dashboard(dashboard.view(), width=args.width))
    finally:
        dashboard.stop()
        prefs.close()
    return 0


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Watch every topic on an MQTT (or STOMP) broker.")
    p.add_argument("--broker", help=f"Broker URL, e.g. ws://host:8888, mqtt://host:1883, stomp://host:61613 "
                                    f"(default: last used, else {DEFAULT_BROKER_URL})")
    p.add_argument("--topic", help="Only print messages for this topic (and chart it on the web dashboard)")

    p.add_argument("--prefs-path", default="~/.cache/mqtt_dashboard/prefs.db",
                   help="SQLite file for saved preferences (default: ~/.cache/mqtt_dashboard/prefs.db)")
    p.add_argument("--no-prefs", action="store_true", help="Do not read or save preferences on disk")

    p.add_argument("--web-port", type=int, default=8089,
                   help="Port for the web dashboard; 0 disables it (default: 8089)")
    p.add_argument("--status-every", dest="status_every", type=int, default=15,
                   help="Print status line every N seconds; 0 disables (default 15)")

    p.add_argument("--keepalive", type=int, default=60, help="MQTT keepalive in seconds (default 60)")
    p.add_argument("--reconnect-delay", type=int, default=1,
                   help="Initial MQTT reconnect delay in seconds (default 1)")
    p.add_argument("--stomp-wildcard", default="/topic/>",
                   help="Destination used for subscribe-all on STOMP brokers (default: /topic/>)")

    p.add_argument("--width", type=int, default=96, help="Console output width (default 96)")
    p.add_argument("--verbose", action="store_true", help="Debug logging and print every received message")
    return p.parse_args(argv)
