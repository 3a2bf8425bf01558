#!/usr/bin/env python3
"""Web dashboard for mqtt_dashboard."""

from __future__ import annotations

from typing import List, Optional, Sequence

from flask import Flask, jsonify, redirect, request
from markupsafe import escape

from .database import PrefStore
from .dispatch import Dashboard
from .models import ConnectionStatus, DEFAULT_BROKER_URL, Message, NumericPoint, PREF_BROKER_URL, PREF_THEME
from .session import SessionStateError
from .views import NoticeBoard
from .wire import ConstructionError

_CSS = (
    "body{font-family:system-ui,Arial;margin:20px;background:#fff;color:#111}"
    "body.dark{background:#111;color:#eee} body.dark .msg{background:#222} body.dark .pill{background:#333;color:#eee}"
    "table{border-collapse:collapse;width:100%} th,td{border-bottom:1px solid #ddd;padding:6px 8px;font-size:14px}"
    ".pill{display:inline-block;padding:2px 8px;border-radius:999px;background:#eee;margin:2px;border:0;cursor:pointer}"
    ".pill.sel{background:#446;color:#fff} .msg{padding:6px;border-radius:4px;background:#f3f3f3;margin:3px 0;cursor:pointer}"
    ".notice-error{color:#b00} .notice-success{color:#070} form{display:inline}"
)

# copies the "topic: payload" text kept in the data-copy attribute
_COPY_JS = (
    "function copyMsg(el){"
    "var text=el.getAttribute('data-copy');"
    "if(!navigator.clipboard){alert('Clipboard not available');return;}"
    "navigator.clipboard.writeText(text).then(function(){el.style.outline='2px solid #36c';"
    "setTimeout(function(){el.style.outline='';},600);},function(){alert('Failed to copy message');});}"
)


def copy_text(m: Message) -> str:
    return f"{m.topic}: {m.payload}"


def series_svg(points: Sequence[NumericPoint], width: int = 600, height: int = 160) -> str:
    if not points:
        return ""
    values = [p.value for p in points]
    lo, hi = min(values), max(values)
    span = (hi - lo) or 1.0
    first, last = points[0].index, points[-1].index
    xspan = (last - first) or 1
    pad = 6
    coords = []
    for p in points:
        x = pad + (p.index - first) * (width - 2 * pad) / xspan
        y = height - pad - (p.value - lo) * (height - 2 * pad) / span
        coords.append(f"{x:.1f},{y:.1f}")
    return (
        f"<svg width='{width}' height='{height}' viewBox='0 0 {width} {height}'>"
        f"<polyline fill='none' stroke='#36c' stroke-width='2' points='{' '.join(coords)}'/>"
        "</svg>"
    )


def create_app(dashboard: Dashboard, prefs: Optional[PrefStore] = None, notices: Optional[NoticeBoard] = None) -> Flask:
    app = Flask(__name__)
    prefs = prefs or PrefStore()
    notices = notices or NoticeBoard()

    def back():
        return redirect("/")

    @app.get("/")
    def index():
        view = dashboard.view()
        dark = prefs.get(PREF_THEME) == "dark"
        url = view.broker_url or prefs.get(PREF_BROKER_URL) or DEFAULT_BROKER_URL

        html: List[str] = ["<html><head><meta charset='utf-8'><title>MQTT Dashboard</title>"
                           f"<style>{_CSS}</style></head>"
                           f"<body class='{'dark' if dark else ''}'>"]
        html.append("<h2>MQTT Dashboard</h2>")
        html.append(f"<form method='post' action='/theme'><button class='pill'>{'Light' if dark else 'Dark'} theme</button></form>")

        html.append("<h3>Connection</h3>")
        html.append(f"<p><b>Status:</b> {escape(view.status.value)}</p>")
        if view.status is ConnectionStatus.DISCONNECTED:
            html.append("<form method='post' action='/connect'>"
                        f"<input name='url' size='40' value='{escape(url)}' placeholder='Broker URL (e.g., ws://localhost:8888)'> "
                        "<button>Connect</button></form>")
        else:
            html.append(f"<p>{escape(view.broker_url)}</p>")
            html.append("<form method='post' action='/disconnect'><button>Disconnect</button></form> "
                        "<form method='post' action='/clear'><button>Clear Messages</button></form>")

        recent = notices.recent(5)
        if recent:
            html.append("<ul>" + "".join(
                f"<li class='notice-{escape(n.level)}'>{escape(n.at)} {escape(n.text)}</li>" for n in recent
            ) + "</ul>")

        html.append("<h3>Topics</h3>")
        if not view.messages:
            html.append("<p>No messages received yet.</p>")
        pills = []
        for t in view.topics:
            cls = "pill sel" if t == view.selected_topic else "pill"
            pills.append(f"<form method='post' action='/select'><input type='hidden' name='topic' value='{escape(t)}'>"
                         f"<input type='hidden' name='toggle' value='1'><button class='{cls}'>{escape(t)}</button></form>")
        html.append("<div>" + " ".join(pills) + "</div>")

        if view.selected_topic is not None:
            html.append(f"<h3>Messages for: {escape(view.selected_topic)}</h3>")
            if view.series:
                html.append(series_svg(view.series))
            for m in view.filtered:
                html.append(f"<div class='msg' title='{escape(m.received_at)} (click to copy)' "
                            f"data-copy='{escape(copy_text(m))}' onclick='copyMsg(this)'>{escape(m.payload)}</div>")

        html.append("<p><a href='/api/state'>JSON state</a></p>")
        html.append(f"<script>{_COPY_JS}</script>")
        html.append("</body></html>")
        return "\n".join(html)

    @app.get("/api/state")
    def state():
        data = dashboard.view().to_dict()
        data["theme"] = prefs.get(PREF_THEME) or "light"
        data["notices"] = [{"level": n.level, "text": n.text, "at": n.at} for n in notices.recent(10)]
        return jsonify(data)

    @app.post("/connect")
    def connect():
        url = request.form.get("url", "").strip() or prefs.get(PREF_BROKER_URL) or DEFAULT_BROKER_URL
        try:
            dashboard.connect(url)
        except ConstructionError:
            pass  # already posted as a notice by the controller
        except SessionStateError as e:
            notices.post("error", str(e))
        return back()

    @app.post("/disconnect")
    def disconnect():
        dashboard.disconnect()
        return back()

    @app.post("/clear")
    def clear():
        dashboard.clear_messages()
        return back()

    @app.post("/select")
    def select():
        topic = request.form.get("topic", "")
        if request.form.get("toggle") and topic:
            dashboard.toggle_topic(topic)
        else:
            dashboard.select_topic(topic or None)
        return back()

    @app.post("/theme")
    def theme():
        current = prefs.get(PREF_THEME) or "light"
        prefs.set(PREF_THEME, "light" if current == "dark" else "dark")
        return back()

    return app


def start_web_dashboard(app: Flask, port: int) -> None:
    app.run(host="0.0.0.0", port=port, debug=False, use_reloader=False)
