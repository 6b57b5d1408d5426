"""
In-memory file manager for testing.

This module provides a storage backend that keeps committed batches in
memory, for:
- Unit tests of the commit protocol
- Failure injection (simulate a storage error on the next call)

Invariants:
    - All data is lost when the object is discarded
    - Provides the same atomicity contract as the on-disk backend
    - Stored batches are copies; later changes to the caller's objects
      do not leak into storage
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional, Sequence

from ..mutations import CommitMaterial
from ..snapshot import Snapshot
from .base import StorageClosedError, StorageError

logger = logging.getLogger(__name__)


class InMemoryFileManager:
    """In-memory implementation of FileManager for testing.

    Example:
        >>> fm = InMemoryFileManager()
        >>> db = await open_database("mem", file_manager=fm)
        >>> fm.inject_failure(StorageError("disk full"))
        >>> await db.commit(db.define("actors"))  # raises PersistFailure
    """

    def __init__(self, initial: Optional[Snapshot] = None) -> None:
        """Initialize in-memory storage.

        Args:
            initial: Optional state to start from (as if compacted)
        """
        self._base: Dict[str, Any] = initial.to_dict() if initial else Snapshot().to_dict()
        self._batches: List[List[Dict[str, Any]]] = []
        self._pending_failure: Optional[Exception] = None
        self._closed = False
        self._lock = asyncio.Lock()

    async def rebuild(self) -> Snapshot:
        """Replay base state plus every committed batch."""
        self._check_open()
        self._raise_injected()
        async with self._lock:
            snapshot = Snapshot.from_dict(self._base)
            for batch in self._batches:
                for op in batch:
                    snapshot.apply(CommitMaterial.from_dict(op))
            return snapshot

    async def commit(self, batch: Sequence[CommitMaterial]) -> None:
        """Store a copy of the batch."""
        self._check_open()
        self._raise_injected()
        async with self._lock:
            self._batches.append([copy.deepcopy(cm.to_dict()) for cm in batch])
        logger.debug("Batch stored in memory", extra={"ops": len(batch)})

    async def compact(self, snapshot: Snapshot) -> None:
        self._check_open()
        self._raise_injected()
        async with self._lock:
            self._base = snapshot.to_dict()
            self._batches.clear()

    async def close(self) -> None:
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise StorageClosedError("In-memory file manager is closed")

    def _raise_injected(self) -> None:
        if self._pending_failure is not None:
            failure, self._pending_failure = self._pending_failure, None
            raise failure

    # Testing helpers

    def inject_failure(self, exception: Optional[Exception] = None) -> None:
        """Make the next rebuild/commit/compact raise ``exception``."""
        self._pending_failure = exception or StorageError("Injected storage failure")

    @property
    def batches(self) -> List[List[Dict[str, Any]]]:
        """Committed batches in serialized form (testing helper)."""
        return self._batches

    @property
    def commit_count(self) -> int:
        return len(self._batches)
