#!/usr/bin/env python3
"""MQTT Dashboard - live monitoring of every topic on a pub/sub broker."""

__version__ = "0.1.0"

from .models import ConnectionStatus, Message, NumericPoint, DashboardView
from .ledger import MessageLedger
from .topics import distinct_topics, filtered
from .series import extract_series, parse_finite
from .database import PrefStore
from .wire import ConstructionError, WireEvent, create_wire_client
from .session import SessionController, SessionStateError
from .dispatch import Dashboard, EventPump

__all__ = [
    "ConnectionStatus", "Message", "NumericPoint", "DashboardView",
    "MessageLedger", "distinct_topics", "filtered", "extract_series", "parse_finite",
    "PrefStore", "ConstructionError", "WireEvent", "create_wire_client",
    "SessionController", "SessionStateError", "Dashboard", "EventPump",
]
