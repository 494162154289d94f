"""Session controller: recording lifecycle, live state and export.

Two states, Idle and Recording. While recording, every RawSample from
the active source goes through the FilterEstimator on a single consumer
task; the result is appended to the session buffer and published as
live state. Errors from sources and collaborators become ``UiEvent``
notifications on ``events``; none of them stop the process.
"""

import asyncio
import logging
import time
from collections.abc import Sequence as SequenceABC
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..core.config import Config
from ..core.errors import (
    ExportFailure,
    FusionError,
    PersistenceFailure,
    SourceUnavailable,
)
from ..core.observable import StateCell
from ..core.types import (
    ConnectionState,
    DeviceInfo,
    EstimatedSample,
    Session,
    SessionRecord,
    SourceKind,
)
from ..export.csv_exporter import CsvExporter, Destination
from ..fusion.estimator import FilterEstimator
from ..history.reconstructor import reconstruct, to_record
from ..monitoring.metrics import StreamMonitor
from ..sources.base import SensorSource
from ..storage.sqlite_store import SessionStore

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """One-shot notifications for the presentation layer."""
    EXPORT_REQUESTED = "export_requested"
    NOTICE = "notice"
    ERROR = "error"


@dataclass(frozen=True)
class UiEvent:
    """Notification emitted by the controller."""
    kind: EventKind
    message: str = ""
    error: Optional[str] = None  # error class name for ERROR events


class SampleView(SequenceABC):
    """Read-only view of the first ``length`` items of an append-only list."""

    def __init__(self, items: List[EstimatedSample], length: int):
        self._items = items
        self._length = length

    def __len__(self) -> int:
        return self._length

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self._items[i] for i in range(*index.indices(self._length))]
        if index < 0:
            index += self._length
        if not 0 <= index < self._length:
            raise IndexError("sample index out of range")
        return self._items[index]

    def __repr__(self) -> str:
        return f"SampleView(len={self._length})"


@dataclass(frozen=True)
class LiveState:
    """Everything the presentation layer renders."""
    recording: bool = False
    source: SourceKind = SourceKind.LOCAL
    angle_a: float = 0.0
    angle_b: float = 0.0
    samples: Sequence[EstimatedSample] = ()
    viewing_history: bool = False
    connection: ConnectionState = field(default_factory=ConnectionState)

    def to_dict(self, max_points: int = 0) -> dict:
        """Convert to dictionary for JSON serialization.

        Args:
            max_points: Only include the last N samples (0 for none).
        """
        tail = self.samples[-max_points:] if max_points > 0 else []
        return {
            "recording": self.recording,
            "source": self.source.value,
            "angle_a": self.angle_a,
            "angle_b": self.angle_b,
            "sample_count": len(self.samples),
            "viewing_history": self.viewing_history,
            "connection": self.connection.status.value,
            "device_id": self.connection.device_id,
            "devices": [
                {"id": d.device_id, "name": d.name, "rssi": d.rssi}
                for d in self.connection.devices
            ],
            "samples": [s.to_dict() for s in tail],
        }


def now_ms() -> int:
    """Wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class SessionController:
    """Orchestrates recording sessions.

    Must be used from a single event loop. The source can only be
    changed while idle.
    """

    def __init__(
        self,
        config: Config,
        sources: Mapping[SourceKind, SensorSource],
        store: SessionStore,
        exporter: CsvExporter,
        estimator: Optional[FilterEstimator] = None,
        monitor: Optional[StreamMonitor] = None,
    ):
        """Initialize controller.

        Args:
            config: System configuration.
            sources: One source per SourceKind.
            store: Persistence collaborator, already opened.
            exporter: Export collaborator.
            estimator: Angle estimator. Default filter factors if None.
            monitor: Stream monitor. Built from config if None.
        """
        missing = [kind.value for kind in SourceKind if kind not in sources]
        if missing:
            raise ValueError(f"Missing sources: {', '.join(missing)}")

        self._config = config
        self._sources: Dict[SourceKind, SensorSource] = dict(sources)
        self._store = store
        self._exporter = exporter
        self._estimator = estimator if estimator is not None else FilterEstimator()
        self._monitor = monitor if monitor is not None else StreamMonitor(config)

        self.state: StateCell[LiveState] = StateCell(LiveState())
        self.history: StateCell[Tuple[SessionRecord, ...]] = StateCell(())
        self.events: "asyncio.Queue[UiEvent]" = asyncio.Queue()

        self._buffer: List[EstimatedSample] = []
        self._current: Sequence[EstimatedSample] = self._buffer
        self._active: Optional[SensorSource] = None
        self._task: Optional[asyncio.Task] = None
        self._lifecycle = asyncio.Lock()
        self._started_at_ms = 0
        self._last_session: Optional[Session] = None

        for source in self._sources.values():
            source.set_error_handler(self._on_source_error)

        self._unsubscribe = None
        connection_state = getattr(self._sources[SourceKind.REMOTE], "connection_state", None)
        if connection_state is not None:
            self._unsubscribe = connection_state.subscribe(self._on_connection_state)
            self.state.update(connection=connection_state.value)

    # ----------------------- Queries -----------------------

    @property
    def is_recording(self) -> bool:
        """True between a successful start and the matching stop."""
        return self._active is not None

    @property
    def samples(self) -> Tuple[EstimatedSample, ...]:
        """Copy of the live session buffer."""
        return tuple(self._buffer)

    @property
    def current_samples(self) -> Tuple[EstimatedSample, ...]:
        """Sequence an export would write: live buffer or loaded history."""
        return tuple(self._current)

    @property
    def last_session(self) -> Optional[Session]:
        """Most recently finalized session."""
        return self._last_session

    # ----------------------- Source selection -----------------------

    def select_source(self, kind: SourceKind) -> bool:
        """Choose the source for the next recording.

        Ignored while recording.

        Returns:
            True if the selection was applied.
        """
        if self.is_recording:
            logger.debug("Source change to %s ignored while recording", kind.value)
            return False
        self.state.update(source=kind)
        logger.info("Source selected: %s", kind.value)
        return True

    # ----------------------- Recording -----------------------

    async def toggle(self) -> None:
        """Start when idle, stop when recording."""
        if self.is_recording:
            await self.stop()
        else:
            await self.start()

    async def start(self) -> bool:
        """Idle -> Recording.

        Returns:
            True if a new recording started. False if already recording
            or the selected source could not start.
        """
        async with self._lifecycle:
            if self.is_recording:
                return False

            kind = self.state.value.source
            source = self._sources[kind]

            if kind is SourceKind.REMOTE and not self.state.value.connection.is_connected:
                self._emit_error(SourceUnavailable("Not connected to any wearable sensor"))
                return False

            # Previous buffer stays current until the source is up.
            if not await source.start_listening():
                return False

            self._estimator.reset()
            self._monitor.reset(self._config.nominal_sample_rate_hz(kind))
            self._buffer = []
            self._current = self._buffer
            self._started_at_ms = now_ms()

            self._active = source
            self._task = asyncio.create_task(self._consume(source, self._buffer))
            self.state.update(
                recording=True,
                angle_a=0.0,
                angle_b=0.0,
                samples=(),
                viewing_history=False,
            )
            logger.info("Recording started (%s source)", kind.value)
            return True

    async def stop(self) -> Optional[Session]:
        """Recording -> Idle.

        The consumer task is cancelled before the buffer is finalized,
        so nothing is appended after this point.

        Returns:
            The finalized session, or None if nothing was recorded or
            the controller was idle.
        """
        async with self._lifecycle:
            if not self.is_recording:
                return None

            source, self._active = self._active, None
            await source.stop_listening()

            task, self._task = self._task, None
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            self._monitor.log_summary(source.stats)
            buffer = self._buffer
            self.state.update(
                recording=False,
                samples=SampleView(buffer, len(buffer)),
            )
            logger.info("Recording stopped: %d samples", len(buffer))

            if not buffer:
                return None

            session = Session(started_at_ms=self._started_at_ms, samples=tuple(buffer))
            self._last_session = await self._save(session)
            return self._last_session

    async def _consume(self, source: SensorSource, buffer: List[EstimatedSample]) -> None:
        """Single consumer: estimate, append, publish."""
        async for raw in source.samples():
            self._monitor.start_sample()
            estimated = self._estimator.process(raw)
            buffer.append(estimated)
            self._monitor.end_sample(raw.timestamp)
            self.state.update(
                angle_a=estimated.angle_a,
                angle_b=estimated.angle_b,
                samples=SampleView(buffer, len(buffer)),
            )

    # ----------------------- Persistence -----------------------

    async def _save(self, session: Session) -> Session:
        """Store a finalized session; on failure keep it in memory only."""
        record = to_record(session, saved_at_ms=now_ms())
        try:
            stored = await asyncio.to_thread(self._store.insert, record)
        except PersistenceFailure as e:
            self._emit_error(e)
            return session

        self._emit(EventKind.NOTICE, "Measurement saved to history")
        await self.refresh_history()
        return replace(session, id=stored.id)

    async def refresh_history(self) -> None:
        """Reload stored sessions, newest first, into ``history``."""
        try:
            records = await asyncio.to_thread(self._store.list_all)
        except PersistenceFailure as e:
            self._emit_error(e)
            return
        self.history.set(tuple(records))

    def load_history(self, record: SessionRecord) -> Optional[Session]:
        """Reconstruct a stored session and make it the export target.

        Ignored while recording.
        """
        if self.is_recording:
            return None

        session = reconstruct(record)
        self._current = session.samples
        last = session.samples[-1] if session.samples else None
        self.state.update(
            samples=session.samples,
            viewing_history=True,
            angle_a=last.angle_a if last else 0.0,
            angle_b=last.angle_b if last else 0.0,
        )
        logger.info("Loaded session %s (%d samples)", record.id, len(session.samples))
        return session

    async def load_stored(self, record_id: int) -> Optional[Session]:
        """Fetch a stored session by id and load it."""
        try:
            record = await asyncio.to_thread(self._store.get, record_id)
        except PersistenceFailure as e:
            self._emit_error(e)
            return None
        if record is None:
            self._emit_error(PersistenceFailure(f"Session {record_id} not found"))
            return None
        return self.load_history(record)

    # ----------------------- Export -----------------------

    def request_export(self) -> bool:
        """Ask the presentation layer for a destination.

        Rejected while recording or when there is nothing to export.

        Returns:
            True if an EXPORT_REQUESTED event was emitted.
        """
        if self.is_recording:
            logger.info("Export rejected while recording")
            return False
        if not self._current:
            return False
        self._emit(EventKind.EXPORT_REQUESTED)
        return True

    async def export_to(self, destination: Destination) -> bool:
        """Write the current sequence to ``destination``.

        Returns:
            True if the file was written.
        """
        if self.is_recording:
            logger.info("Export rejected while recording")
            return False

        samples = list(self._current)
        if not samples:
            return False

        try:
            count = await asyncio.to_thread(self._exporter.write, samples, destination)
        except ExportFailure as e:
            self._emit_error(e)
            return False

        self._emit(EventKind.NOTICE, f"Export successful ({count} samples)")
        return True

    # ----------------------- Wearable -----------------------

    async def scan(self, timeout_s: Optional[float] = None) -> List[DeviceInfo]:
        """Scan for wearables; results also land in the live state."""
        return await self._sources[SourceKind.REMOTE].discover(timeout_s)

    async def connect(self, device_id: str) -> bool:
        """Connect the wearable."""
        return await self._sources[SourceKind.REMOTE].connect(device_id)

    async def disconnect(self) -> None:
        """Disconnect the wearable."""
        await self._sources[SourceKind.REMOTE].disconnect()

    # ----------------------- Lifecycle -----------------------

    async def close(self) -> None:
        """Stop recording and release the wearable link."""
        await self.stop()
        remote = self._sources[SourceKind.REMOTE]
        if self.state.value.connection.is_connected:
            await remote.disconnect()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ----------------------- Notifications -----------------------

    def _on_source_error(self, error: FusionError) -> None:
        self._emit_error(error)

    def _on_connection_state(self, connection: ConnectionState) -> None:
        self.state.update(connection=connection)

    def _emit(self, kind: EventKind, message: str = "") -> None:
        self.events.put_nowait(UiEvent(kind=kind, message=message))

    def _emit_error(self, error: FusionError) -> None:
        logger.warning("%s: %s", type(error).__name__, error)
        self.events.put_nowait(
            UiEvent(kind=EventKind.ERROR, message=str(error), error=type(error).__name__)
        )
