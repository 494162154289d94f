"""Replace-latest observable value.

A ``StateCell`` always holds one value. Writers replace it; an observer
that falls behind only ever sees the newest value, never a backlog.
All writes must happen on the event loop thread.
"""

import asyncio
import dataclasses
import logging
from typing import AsyncIterator, Callable, Generic, List, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StateCell(Generic[T]):
    """Hot, most-recent-value state holder."""

    def __init__(self, initial: T):
        self._value = initial
        self._version = 0
        self._changed = asyncio.Event()
        self._listeners: List[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        """Current value."""
        return self._value

    @property
    def version(self) -> int:
        """Number of writes so far."""
        return self._version

    def set(self, value: T) -> None:
        """Replace the value and notify observers."""
        self._value = value
        self._version += 1
        self._changed.set()
        for listener in list(self._listeners):
            listener(value)

    def update(self, **changes) -> T:
        """Replace selected fields of a dataclass value."""
        value = dataclasses.replace(self._value, **changes)
        self.set(value)
        return value

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Call ``listener`` synchronously on every write.

        Returns:
            Function removing the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def wait_for_update(self, seen_version: int) -> Tuple[int, T]:
        """Wait until the version moves past ``seen_version``.

        Returns:
            The new version and the value at that version.
        """
        while self._version == seen_version:
            self._changed.clear()
            await self._changed.wait()
        return self._version, self._value

    async def updates(self) -> AsyncIterator[T]:
        """Yield the current value, then the latest value after each change."""
        version = self._version
        yield self._value
        while True:
            version, value = await self.wait_for_update(version)
            yield value
