"""
Unit tests for the in-memory file manager.

Tests cover:
- Commit/rebuild round trips
- Failure injection
- Compaction
- Closed state
"""

import pytest

from tabledb.mutations import create, define, update
from tabledb.snapshot import Snapshot
from tabledb.storage.base import FileManager, StorageClosedError, StorageError
from tabledb.storage.memory import InMemoryFileManager


class TestInMemoryFileManager:
    """Tests for InMemoryFileManager."""

    @pytest.fixture
    def fm(self):
        """Create a fresh file manager."""
        return InMemoryFileManager()

    def test_satisfies_protocol(self, fm):
        assert isinstance(fm, FileManager)

    @pytest.mark.asyncio
    async def test_rebuild_empty(self, fm):
        snapshot = await fm.rebuild()
        assert snapshot == Snapshot()

    @pytest.mark.asyncio
    async def test_rebuild_replays_batches_in_order(self, fm):
        await fm.commit([define("actors"), create("actors", {"cash": 1}, "r1")])
        await fm.commit([update("actors", {"id": "r1", "cash": 2})])

        snapshot = await fm.rebuild()
        assert snapshot.tables == {"actors": {"r1": {"cash": 2}}}
        assert fm.commit_count == 2

    @pytest.mark.asyncio
    async def test_batches_are_copies(self, fm):
        cm = create("actors", {"tags": ["a"]}, "r1")
        await fm.commit([define("actors"), cm])
        cm.payload["tags"].append("b")
        assert fm.batches[0][1]["payload"]["tags"] == ["a"]

    @pytest.mark.asyncio
    async def test_inject_failure_once(self, fm):
        fm.inject_failure(StorageError("disk full"))

        with pytest.raises(StorageError, match="disk full"):
            await fm.commit([define("actors")])
        assert fm.commit_count == 0

        # Only the next call fails
        await fm.commit([define("actors")])
        assert fm.commit_count == 1

    @pytest.mark.asyncio
    async def test_inject_default_failure(self, fm):
        fm.inject_failure()
        with pytest.raises(StorageError, match="Injected"):
            await fm.rebuild()

    @pytest.mark.asyncio
    async def test_compact(self, fm):
        await fm.commit([define("actors"), create("actors", {"cash": 1}, "r1")])
        snapshot = await fm.rebuild()

        await fm.compact(snapshot)

        assert fm.commit_count == 0
        assert await fm.rebuild() == snapshot

    @pytest.mark.asyncio
    async def test_initial_state(self):
        initial = Snapshot(tables={"actors": {"r1": {"cash": 3}}})
        fm = InMemoryFileManager(initial)
        assert await fm.rebuild() == initial

    @pytest.mark.asyncio
    async def test_closed(self, fm):
        await fm.close()
        with pytest.raises(StorageClosedError):
            await fm.commit([define("actors")])
