"""Session module: recording lifecycle and live state."""

from .controller import (
    SessionController,
    LiveState,
    UiEvent,
    EventKind,
    SampleView,
)

__all__ = [
    "SessionController",
    "LiveState",
    "UiEvent",
    "EventKind",
    "SampleView",
]
