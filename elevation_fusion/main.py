#!/usr/bin/env python3
"""Command-line entry point for elevation-angle recording.

Sub-commands:

    record   Record a session from the local sensor or a wearable,
             printing JSON live state to stdout.
    scan     List nearby wearables.
    history  List stored sessions, newest first.
    export   Write a stored session to CSV.
    plot     Save a plot of a stored session.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from .core import (
    Config,
    ExportFailure,
    PersistenceFailure,
    SourceKind,
    load_config,
)
from .export import CsvExporter
from .history import reconstruct, summarize
from .session import EventKind, SessionController
from .sources import RemoteWearableSource, create_sources
from .storage import SqliteSessionStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application.

    Args:
        verbose: If True, set DEBUG level; otherwise INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


async def _print_live_state(controller: SessionController, emit_interval: float) -> None:
    """Print one JSON line of live state per emit interval while recording."""
    while True:
        state = controller.state.value
        if state.recording:
            print(json.dumps({
                "angle_a": state.angle_a,
                "angle_b": state.angle_b,
                "samples": len(state.samples),
            }), flush=True)
        await asyncio.sleep(emit_interval)


async def _log_events(controller: SessionController) -> None:
    """Log controller notifications."""
    while True:
        event = await controller.events.get()
        if event.kind is EventKind.ERROR:
            logger.error("%s: %s", event.error, event.message)
        elif event.message:
            logger.info(event.message)


async def run_record(
    config: Config,
    source: SourceKind,
    device_id: Optional[str] = None,
    duration_s: Optional[float] = None,
    export_path: Optional[str] = None,
) -> int:
    """Record one session until interrupted or ``duration_s`` elapses.

    Args:
        config: System configuration.
        source: Source to record from.
        device_id: Wearable address. The first device found is used if
            None.
        duration_s: Recording length. Unlimited if None.
        export_path: Also export the finished session to this CSV file.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    store = SqliteSessionStore(config.storage.database_path)
    try:
        store.open()
    except PersistenceFailure as e:
        logger.error("Storage error: %s", e)
        return 1

    controller = SessionController(
        config,
        create_sources(config),
        store,
        CsvExporter(config.export.directory),
    )

    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            pass

    helpers = [
        asyncio.create_task(_log_events(controller)),
        asyncio.create_task(_print_live_state(controller, 1.0 / config.web.emit_rate_hz)),
    ]

    try:
        await controller.refresh_history()

        if source is SourceKind.REMOTE:
            if device_id is None:
                devices = await controller.scan()
                if not devices:
                    logger.error("No wearable found")
                    return 1
                device_id = devices[0].device_id
            if not await controller.connect(device_id):
                return 1

        controller.select_source(source)
        if not await controller.start():
            logger.error("Recording could not start")
            return 1

        logger.info("Recording (Ctrl-C to stop)")
        try:
            await asyncio.wait_for(stop_requested.wait(), duration_s)
        except asyncio.TimeoutError:
            pass

        session = await controller.stop()
        if session is None:
            logger.warning("No samples recorded")
        else:
            logger.info("Session %s: %d samples, %.1f s",
                        session.id, len(session.samples), session.duration_s)
            if export_path is not None and not await controller.export_to(export_path):
                return 1
        return 0

    finally:
        await controller.close()
        for task in helpers:
            task.cancel()
        await asyncio.gather(*helpers, return_exceptions=True)
        while not controller.events.empty():
            event = controller.events.get_nowait()
            if event.kind is EventKind.ERROR:
                logger.error("%s: %s", event.error, event.message)
        store.close()


async def run_scan(config: Config, timeout_s: Optional[float]) -> int:
    """Print wearables found during one scan."""
    remote = RemoteWearableSource(config)
    remote.set_error_handler(lambda e: logger.error("%s", e))

    count = 0
    async for device in remote.scan(timeout_s):
        rssi = "?" if device.rssi is None else f"{device.rssi} dBm"
        print(f"{device.device_id}  {device.name}  ({rssi})", flush=True)
        count += 1

    if count == 0:
        logger.info("No wearable found")
    return 0


def run_history(config: Config) -> int:
    """Print a summary line per stored session."""
    try:
        with SqliteSessionStore(config.storage.database_path) as store:
            records = store.list_all()
    except PersistenceFailure as e:
        logger.error("Storage error: %s", e)
        return 1

    for record in records:
        summary = summarize(record)
        print(f"{summary.id:5d}  {summary.timestamp}  "
              f"{summary.sample_count:7d} samples  {summary.duration_s:8.1f} s")
    return 0


def _load_session(config: Config, record_id: int):
    """Fetch and reconstruct a stored session, or None with an error logged."""
    try:
        with SqliteSessionStore(config.storage.database_path) as store:
            record = store.get(record_id)
    except PersistenceFailure as e:
        logger.error("Storage error: %s", e)
        return None

    if record is None:
        logger.error("Session %d not found", record_id)
        return None
    return reconstruct(record)


def run_export(config: Config, record_id: int, output: Optional[str]) -> int:
    """Export a stored session to CSV."""
    session = _load_session(config, record_id)
    if session is None:
        return 1
    if not session.samples:
        logger.warning("Session %d has no samples", record_id)
        return 0

    exporter = CsvExporter(config.export.directory)
    destination = Path(output) if output else exporter.default_destination()
    try:
        exporter.write(session.samples, destination)
    except ExportFailure as e:
        logger.error("%s", e)
        return 1

    print(destination)
    return 0


def run_plot(config: Config, record_id: int, output: Optional[str]) -> int:
    """Save a plot of a stored session."""
    from .plotting import plot_session

    session = _load_session(config, record_id)
    if session is None:
        return 1
    if not session.samples:
        logger.warning("Session %d has no samples", record_id)
        return 0

    path = Path(output) if output else Path(config.export.directory) / f"session_{record_id}.png"
    try:
        plot_session(session.samples, path, title=f"Session {record_id}")
    except OSError as e:
        logger.error("Plot failed: %s", e)
        return 1

    print(path)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        description="Elevation-angle sensor fusion recorder"
    )
    parser.add_argument(
        "-c", "--config",
        type=str,
        default=None,
        help="Path to configuration file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    record = commands.add_parser("record", help="Record a session")
    record.add_argument(
        "-s", "--source",
        choices=[kind.value for kind in SourceKind],
        default=SourceKind.LOCAL.value,
        help="Sensor source",
    )
    record.add_argument("--device", type=str, default=None, help="Wearable address")
    record.add_argument("--mock", action="store_true", help="Use mock local sensor")
    record.add_argument("-d", "--duration", type=float, default=None,
                        help="Recording length in seconds")
    record.add_argument("-e", "--export", type=str, default=None,
                        help="Export the session to this CSV file")

    scan = commands.add_parser("scan", help="List nearby wearables")
    scan.add_argument("-t", "--timeout", type=float, default=None,
                      help="Scan duration in seconds")

    commands.add_parser("history", help="List stored sessions")

    export = commands.add_parser("export", help="Export a stored session to CSV")
    export.add_argument("id", type=int, help="Session id")
    export.add_argument("-o", "--output", type=str, default=None, help="Output file")

    plot = commands.add_parser("plot", help="Plot a stored session")
    plot.add_argument("id", type=int, help="Session id")
    plot.add_argument("-o", "--output", type=str, default=None, help="Output image")

    return parser


def main(argv=None) -> int:
    """Application entry point.

    Returns:
        Exit code.
    """
    args = build_parser().parse_args(argv)

    setup_logging(verbose=args.verbose)

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        logger.error("Configuration error: %s", e)
        return 1
    except Exception as e:
        logger.error("Failed to load configuration: %s", e)
        return 1

    if args.command == "record":
        if args.mock:
            config.local.link = "mock"
        try:
            return asyncio.run(run_record(
                config,
                SourceKind(args.source),
                device_id=args.device,
                duration_s=args.duration,
                export_path=args.export,
            ))
        except KeyboardInterrupt:
            logger.info("Interrupted by user")
            return 0

    if args.command == "scan":
        return asyncio.run(run_scan(config, args.timeout))
    if args.command == "history":
        return run_history(config)
    if args.command == "export":
        return run_export(config, args.id, args.output)
    if args.command == "plot":
        return run_plot(config, args.id, args.output)

    return 1


if __name__ == "__main__":
    sys.exit(main())
