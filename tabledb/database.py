"""
Database facade for tabledb.

This module composes the id allocator, mutation builders, committer and read
views into the public surface of one opened store:
- read / id: copy-on-read access to tables and records
- define / create / update / destroy: build mutations
- commit: apply a batch of mutations atomically

Example:
    >>> from tabledb import open_database, num
    >>> async with await open_database("/var/lib/tabledb/trading") as db:
    ...     await db.commit(db.define("actors", {"cash": num}))
    ...     affected = await db.commit(
    ...         db.create("actors", {"cash": 5000}),
    ...         db.create("actors", {"cash": 5000}),
    ...     )

Invariants:
    - One snapshot, one file manager and one commit lock per Database
    - No two records in any tables share an id
    - Ids handed out by create() stay reserved until committed

How to change safely:
    - New public operations that mutate state must go through the Committer
    - Keep builders free of I/O
"""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping

from . import mutations
from .apply.committer import Committer
from .apply.views import IdLookup, lookup_by_id, read_table
from .config import StoreConfig
from .errors import OpenFailure, TableDbError, TableNotFound
from .ids import IdAllocator
from .mutations import CommitMaterial
from .schema.types import FieldDef, TableDef
from .snapshot import Record, Snapshot, Table
from .storage.base import FileManager, StorageError, create_file_manager

logger = logging.getLogger(__name__)


class Database:
    """An opened store bound to one snapshot and one file manager.

    Use open_database() rather than constructing this directly.

    Thread safety:
        Single event loop. Commits are serialized; reads see either the
        state before or after a commit, never in between.
    """

    def __init__(
        self,
        path: str,
        snapshot: Snapshot,
        file_manager: FileManager,
        config: StoreConfig,
    ) -> None:
        self.path = path
        self.config = config
        self._snapshot = snapshot
        self._file_manager = file_manager
        self._reserved: set[str] = set()
        self._allocator = IdAllocator(
            token_length=config.ids.token_length,
            max_attempts=config.ids.max_attempts,
        )
        self._committer = Committer(
            snapshot,
            file_manager,
            validate_records=config.validation.validate_records,
            reserved=self._reserved,
        )
        self._commits_since_compact = 0

    # Reads

    def read(self, table: str) -> Table:
        """Copy of all records in ``table``, keyed by id.

        Raises:
            TableNotFound: If the table is not defined
        """
        return read_table(self._snapshot, table)

    def id(self, record_id: str) -> IdLookup | None:
        """Look up a record by id across all tables."""
        return lookup_by_id(self._snapshot, record_id)

    def tables(self) -> list[str]:
        """Names of all defined tables, in definition order."""
        return list(self._snapshot.tables)

    def schema(self, table: str) -> TableDef | None:
        """Field tags ``table`` was defined with, None if defined without.

        Raises:
            TableNotFound: If the table is not defined
        """
        if table not in self._snapshot.tables:
            raise TableNotFound(table)
        return self._snapshot.schemas.get(table)

    # Builders

    @staticmethod
    def define(table: str, fields: Mapping[str, FieldDef] | None = None) -> CommitMaterial:
        """Build a mutation defining (or redefining, emptied) ``table``."""
        return mutations.define(table, fields)

    def create(self, table: str, fields: Mapping[str, Any]) -> CommitMaterial:
        """Build a mutation creating a record with a freshly allocated id.

        The id is unique across every table and every id handed out by an
        earlier create() that has not been committed yet.

        Raises:
            InvalidMutation: If ``fields`` carries an id
            IdSpaceExhausted: If no unused id could be drawn
        """
        record_id = self._allocator.next_id(self._snapshot, self._reserved)
        cm = mutations.create(table, fields, record_id)
        self._reserved.add(record_id)
        return cm

    @staticmethod
    def update(table: str, fields: Mapping[str, Any]) -> CommitMaterial:
        """Build a partial update; ``fields`` must include ``id``."""
        return mutations.update(table, fields)

    @staticmethod
    def destroy(table: str, fields: Mapping[str, Any]) -> CommitMaterial:
        """Build a record removal; ``fields`` must include ``id``."""
        return mutations.destroy(table, fields)

    # Writes

    async def commit(self, *batch: CommitMaterial) -> dict[str, Record]:
        """Apply mutations atomically, in order.

        Returns:
            Record id -> final fields for every created or updated record

        Raises:
            TableNotFound, RecordNotFound, DuplicateRecordId, ValidationError:
                The batch is inconsistent; nothing was written
            PersistFailure: Storage failed; nothing is visible in memory
        """
        affected = await self._committer.commit(batch)
        if batch:
            self._commits_since_compact += 1
            await self._maybe_compact()
        return affected

    async def compact(self) -> None:
        """Replace stored history with the current snapshot."""
        async with self._committer.lock:
            await self._file_manager.compact(self._snapshot)
            self._commits_since_compact = 0

    async def _maybe_compact(self) -> None:
        every = self.config.storage.compact_every_commits
        if not every or self._commits_since_compact < every:
            return
        try:
            await self.compact()
        except StorageError as e:
            # The commit itself is durable; the log just stays longer
            logger.error(
                f"Automatic compaction failed: {e}",
                extra={"path": self.path},
                exc_info=True,
            )

    async def close(self) -> None:
        await self._file_manager.close()
        logger.debug("Database closed", extra={"path": self.path})

    async def __aenter__(self) -> Database:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def stats(self) -> dict[str, Any]:
        """Get store statistics."""
        return {
            "path": self.path,
            "tables": len(self._snapshot.tables),
            "records": self._snapshot.record_count(),
            "commits_since_compact": self._commits_since_compact,
            **self._committer.stats,
        }


async def open_database(
    path: str | os.PathLike[str] | None = None,
    config: StoreConfig | None = None,
    file_manager: FileManager | None = None,
) -> Database:
    """Open a store, rebuilding its snapshot from storage.

    Args:
        path: Store directory (defaults to config.storage.data_dir)
        config: Store configuration (defaults apply when omitted)
        file_manager: Persistence gateway (on-disk JSONL when omitted)

    Returns:
        Database bound to the rebuilt snapshot

    Raises:
        OpenFailure: If the snapshot could not be rebuilt
    """
    config = config or StoreConfig()
    store_path = os.fspath(path) if path is not None else config.storage.data_dir
    fm = file_manager or create_file_manager(config.storage, store_path)

    try:
        snapshot = await fm.rebuild()
    except (StorageError, TableDbError) as e:
        logger.error(f"Failed to open store: {e}", extra={"path": store_path})
        raise OpenFailure(f"Failed to open store at {store_path}: {e}", path=store_path) from e

    logger.info(
        "Store opened",
        extra={
            "path": store_path,
            "tables": len(snapshot.tables),
            "records": snapshot.record_count(),
        },
    )
    return Database(store_path, snapshot, fm, config)
