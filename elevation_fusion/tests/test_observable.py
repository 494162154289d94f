"""Tests for the replace-latest state cell."""

import asyncio
from dataclasses import dataclass

from elevation_fusion.core.observable import StateCell


@dataclass(frozen=True)
class Point:
    x: int = 0
    y: int = 0


class TestStateCell:
    """Tests for StateCell."""

    def test_set_and_version(self):
        """Each write should replace the value and bump the version."""
        cell = StateCell(1)
        cell.set(2)
        cell.set(3)
        assert cell.value == 3
        assert cell.version == 2

    def test_update_dataclass(self):
        """update should replace selected fields."""
        cell = StateCell(Point())
        cell.update(y=5)
        assert cell.value == Point(x=0, y=5)

    def test_subscribe(self):
        """Listeners should see every write until unsubscribed."""
        cell = StateCell(0)
        seen = []
        unsubscribe = cell.subscribe(seen.append)
        cell.set(1)
        cell.set(2)
        unsubscribe()
        cell.set(3)
        assert seen == [1, 2]

    def test_slow_observer_sees_latest(self):
        """An observer that falls behind should get only the newest value."""
        async def run():
            cell = StateCell(0)
            updates = cell.updates()
            first = await updates.__anext__()
            for i in range(1, 10):
                cell.set(i)
            latest = await updates.__anext__()
            await updates.aclose()
            return first, latest

        assert asyncio.run(run()) == (0, 9)

    def test_wait_for_update(self):
        """A waiter should wake on the next write."""
        async def run():
            cell = StateCell("idle")

            async def writer():
                await asyncio.sleep(0.01)
                cell.set("recording")

            asyncio.create_task(writer())
            return await asyncio.wait_for(cell.wait_for_update(cell.version), 1.0)

        assert asyncio.run(run()) == (1, "recording")
