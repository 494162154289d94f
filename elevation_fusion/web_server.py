#!/usr/bin/env python3
"""Web front end for live elevation recording.

The session controller runs on its own asyncio loop in a background
thread. Socket.IO intents from the browser are forwarded to that loop;
live state, history and notices are broadcast back to all clients.
"""

import argparse
import asyncio
import logging
import sys
import threading
from concurrent.futures import Future
from typing import Any, Callable, Coroutine, List, Optional

from flask import Flask, render_template
from flask_socketio import SocketIO, emit

from .core import Config, PersistenceFailure, SourceKind, load_config
from .export import CsvExporter
from .history import summarize
from .session import EventKind, SessionController, UiEvent
from .sources import create_sources
from .storage import SqliteSessionStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["SECRET_KEY"] = "elevation_fusion_secret"
socketio = SocketIO(app, cors_allowed_origins="*")

LIVE_POINTS = 200


class ControllerRuntime:
    """Owns the event loop thread hosting the session controller."""

    def __init__(self, config: Config):
        """Initialize runtime.

        Args:
            config: System configuration.
        """
        self._config = config
        self._loop = asyncio.new_event_loop()
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._store = SqliteSessionStore(config.storage.database_path)
        self._exporter = CsvExporter(config.export.directory)
        self.controller: Optional[SessionController] = None
        self._tasks: List[asyncio.Task] = []

    def start(self) -> None:
        """Start the loop thread and build the controller on it."""
        self._store.open()
        self._thread = threading.Thread(
            target=self._run,
            name="session-loop",
            daemon=True,
        )
        self._thread.start()
        self._ready.wait()
        self.submit(self._setup()).result()
        logger.info("Session controller running")

    def stop(self) -> None:
        """Stop recording, shut the loop down and close storage."""
        if self._thread is None:
            return
        if self.controller is not None:
            self.submit(self.controller.close()).result(timeout=10.0)
        for task in self._tasks:
            self._loop.call_soon_threadsafe(task.cancel)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5.0)
        self._thread = None
        self._store.close()
        logger.info("Session controller stopped")

    def submit(self, coro: Coroutine) -> Future:
        """Run a coroutine on the controller loop."""
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def call(self, fn: Callable[..., Any], *args) -> None:
        """Run a plain callable on the controller loop."""
        self._loop.call_soon_threadsafe(fn, *args)

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._ready.set)
        self._loop.run_forever()
        self._loop.close()

    async def _setup(self) -> None:
        controller = SessionController(
            self._config,
            create_sources(self._config),
            self._store,
            self._exporter,
        )
        self.controller = controller
        controller.history.subscribe(lambda records: socketio.emit("history", history_payload(records)))
        await controller.refresh_history()
        self._tasks = [
            asyncio.create_task(self._broadcast_state(controller)),
            asyncio.create_task(self._forward_events(controller)),
        ]

    async def _broadcast_state(self, controller: SessionController) -> None:
        """Emit live state at most ``emit_rate_hz`` times per second."""
        interval = 1.0 / self._config.web.emit_rate_hz
        version = -1
        while True:
            if controller.state.version != version:
                version = controller.state.version
                socketio.emit("live_state", controller.state.value.to_dict(LIVE_POINTS))
            await asyncio.sleep(interval)

    async def _forward_events(self, controller: SessionController) -> None:
        """Turn controller events into notices; serve export requests."""
        while True:
            event = await controller.events.get()
            if event.kind is EventKind.EXPORT_REQUESTED:
                destination = self._exporter.default_destination()
                if await controller.export_to(destination):
                    socketio.emit("export_ready", {"path": str(destination)})
                continue
            socketio.emit("notice", notice_payload(event))


def history_payload(records) -> list:
    """Listing of stored sessions for the browser."""
    return [
        {
            "id": s.id,
            "timestamp": s.timestamp,
            "sample_count": s.sample_count,
            "duration_s": s.duration_s,
        }
        for s in (summarize(r) for r in records)
    ]


def notice_payload(event: UiEvent) -> dict:
    """Notice message for the browser."""
    return {
        "level": "error" if event.kind is EventKind.ERROR else "info",
        "error": event.error,
        "message": event.message,
    }


runtime: Optional[ControllerRuntime] = None


def _controller() -> Optional[SessionController]:
    if runtime is None or runtime.controller is None:
        emit("notice", {"level": "error", "error": None, "message": "Controller not running"})
        return None
    return runtime.controller


@app.route("/")
def index():
    """Serve the main page."""
    return render_template("index.html")


@socketio.on("connect")
def handle_connect(auth=None):
    """Send the current state to a new client."""
    logger.info("WebSocket client connected")
    controller = runtime.controller if runtime is not None else None
    if controller is not None:
        emit("live_state", controller.state.value.to_dict(LIVE_POINTS))
        emit("history", history_payload(controller.history.value))


@socketio.on("disconnect")
def handle_disconnect(reason=None):
    """Handle WebSocket client disconnection."""
    logger.info("WebSocket client disconnected")


@socketio.on("toggle_recording")
def handle_toggle_recording():
    """Start or stop recording."""
    controller = _controller()
    if controller is not None:
        runtime.submit(controller.toggle())


@socketio.on("select_source")
def handle_select_source(data):
    """Choose the source for the next recording."""
    controller = _controller()
    if controller is None:
        return
    try:
        kind = SourceKind(data.get("source"))
    except ValueError:
        emit("notice", {"level": "error", "error": None, "message": f"Unknown source: {data}"})
        return
    runtime.call(controller.select_source, kind)


@socketio.on("scan")
def handle_scan(data=None):
    """Scan for wearables; results arrive with the live state."""
    controller = _controller()
    if controller is not None:
        timeout = (data or {}).get("timeout")
        runtime.submit(controller.scan(timeout))


@socketio.on("connect_device")
def handle_connect_device(data):
    """Connect a wearable by address."""
    controller = _controller()
    if controller is not None and data.get("device_id"):
        runtime.submit(controller.connect(data["device_id"]))


@socketio.on("disconnect_device")
def handle_disconnect_device():
    """Disconnect the wearable."""
    controller = _controller()
    if controller is not None:
        runtime.submit(controller.disconnect())


@socketio.on("export")
def handle_export():
    """Export the current sequence."""
    controller = _controller()
    if controller is not None:
        runtime.call(controller.request_export)


@socketio.on("load_history")
def handle_load_history(data):
    """Show a stored session."""
    controller = _controller()
    if controller is not None:
        runtime.submit(controller.load_stored(int(data["id"])))


def main() -> int:
    """Application entry point.

    Returns:
        Exit code.
    """
    global runtime

    parser = argparse.ArgumentParser(
        description="Web server for elevation recording"
    )
    parser.add_argument(
        "-c", "--config",
        type=str,
        default=None,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use mock local sensor",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host address to bind to",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on",
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except Exception as e:
        logger.warning("Could not load config: %s, using defaults", e)
        config = Config()

    if args.mock:
        config.local.link = "mock"

    host = args.host or config.web.host
    port = args.port or config.web.port

    runtime = ControllerRuntime(config)
    try:
        runtime.start()
    except PersistenceFailure as e:
        logger.error("Storage error: %s", e)
        return 1

    try:
        logger.info("=" * 60)
        logger.info("Web server starting on http://%s:%d", host, port)
        logger.info("=" * 60)

        socketio.run(app, host=host, port=port, debug=False, allow_unsafe_werkzeug=True)

    except KeyboardInterrupt:
        logger.info("Server interrupted")

    finally:
        runtime.stop()

    return 0


if __name__ == "__main__":
    sys.exit(main())
