"""
Batch committer for tabledb.

The Committer takes an ordered batch of CommitMaterial and:
1. Checks the whole batch against the current snapshot (preflight)
2. Persists the batch through the file manager
3. Folds every mutation into the in-memory snapshot, in batch order
4. Returns the final fields of every created or updated record

Invariants:
    - Nothing is persisted if preflight fails
    - Memory is untouched if persistence fails
    - The fold is sequential and has no suspension points, so readers never
      observe a partially applied batch
    - Only one commit runs at a time per store

How to change safely:
    - Any new mutation kind needs matching preflight and fold handling;
      preflight must predict exactly what Snapshot.apply() accepts
    - Test failure injection at the storage layer for every new path
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Iterable, Optional

from ..errors import (
    DuplicateRecordId,
    InvalidMutation,
    PersistFailure,
    RecordNotFound,
    TableDbError,
    TableNotFound,
    ValidationError,
)
from ..mutations import CommitMaterial, Mutation
from ..schema.types import TableDef
from ..snapshot import Record, Snapshot
from ..storage.base import FileManager, StorageError

logger = logging.getLogger(__name__)

_SCALARS = (str, int, float, bool, type(None))


def _storable(value: Any) -> bool:
    """True if ``value`` reads back from JSON unchanged."""
    if isinstance(value, _SCALARS):
        return True
    if isinstance(value, list):
        return all(_storable(v) for v in value)
    if isinstance(value, dict):
        return all(isinstance(k, str) and _storable(v) for k, v in value.items())
    return False


def _check_storable(table: str, fields: dict[str, Any]) -> None:
    errors = [
        f"Field '{name}' holds a {type(value).__name__} value that cannot be stored as JSON"
        for name, value in fields.items()
        if not isinstance(name, str) or not _storable(value)
    ]
    if errors:
        raise ValidationError("; ".join(errors), table=table, errors=errors)


class _BatchView:
    """Table and id sets as they will look part-way through a batch.

    Only tables touched by the batch are copied out of the snapshot.
    """

    def __init__(self, snapshot: Snapshot) -> None:
        self.snapshot = snapshot
        self.tables: dict[str, set[str]] = {}
        self.schemas: dict[str, Optional[TableDef]] = {}

    def ids(self, table: str) -> Optional[set[str]]:
        if table not in self.tables:
            records = self.snapshot.tables.get(table)
            if records is None:
                return None
            self.tables[table] = set(records)
        return self.tables[table]

    def owner(self, record_id: str) -> Optional[str]:
        for name, ids in self.tables.items():
            if record_id in ids:
                return name
        for name, records in self.snapshot.tables.items():
            if name not in self.tables and record_id in records:
                return name
        return None

    def schema(self, table: str) -> Optional[TableDef]:
        if table in self.schemas:
            return self.schemas[table]
        return self.snapshot.schemas.get(table)

    def define(self, table: str, schema: Optional[TableDef]) -> None:
        self.tables[table] = set()
        self.schemas[table] = schema


class Committer:
    """Applies batches of mutations to storage and then to memory.

    Attributes:
        snapshot: The store's in-memory snapshot (mutated in place)
        file_manager: Persistence gateway
        validate_records: Check fields of tables defined with tags
        reserved: Ids allocated to built-but-uncommitted creates

    Thread safety:
        Single event loop. Commits are serialized by ``lock``.

    Example:
        >>> committer = Committer(snapshot, file_manager)
        >>> affected = await committer.commit([define("actors")])
    """

    def __init__(
        self,
        snapshot: Snapshot,
        file_manager: FileManager,
        validate_records: bool = True,
        reserved: Optional[set[str]] = None,
    ) -> None:
        self.snapshot = snapshot
        self.file_manager = file_manager
        self.validate_records = validate_records
        self.reserved = reserved if reserved is not None else set()
        self.lock = asyncio.Lock()

        self._commit_count = 0
        self._failure_count = 0

    async def commit(self, batch: Iterable[CommitMaterial]) -> dict[str, Record]:
        """Commit a batch atomically.

        Args:
            batch: Ordered mutations

        Returns:
            Record id -> final fields for every create/update in the batch

        Raises:
            TableNotFound: A mutation targets an undefined table
            RecordNotFound: An update/destroy targets an absent id
            DuplicateRecordId: A create reuses an existing id
            ValidationError: Fields violate the table's tags
            PersistFailure: Storage failed; memory is unchanged
        """
        batch = list(batch)
        for cm in batch:
            if not isinstance(cm, CommitMaterial):
                raise InvalidMutation(f"Expected CommitMaterial, got {type(cm).__name__}")
        if not batch:
            return {}

        async with self.lock:
            try:
                self._preflight(batch)
            except TableDbError:
                # A rejected batch can never be committed as built
                self._release(batch)
                raise

            try:
                await self.file_manager.commit(batch)
            except StorageError as e:
                self._failure_count += 1
                logger.error(
                    f"Failed to persist batch: {e}",
                    extra={"ops": len(batch)},
                    exc_info=True,
                )
                raise PersistFailure(f"Failed to persist batch: {e}", batch_size=len(batch)) from e

            affected = self._fold(batch)
            self._commit_count += 1

        logger.debug(
            "Committed batch",
            extra={"ops": len(batch), "affected": len(affected)},
        )
        return affected

    def _preflight(self, batch: list[CommitMaterial]) -> None:
        view = _BatchView(self.snapshot)

        for cm in batch:
            if cm.mutation == Mutation.DEFINE:
                view.define(cm.table, cm.schema)
                continue

            ids = view.ids(cm.table)
            if ids is None:
                raise TableNotFound(cm.table)

            record_id, fields = cm.split_payload()

            if cm.mutation == Mutation.CREATE:
                existing = view.owner(record_id)
                if existing is not None:
                    raise DuplicateRecordId(record_id, existing)
                _check_storable(cm.table, fields)
                self._validate(view, cm.table, fields, partial=False)
                ids.add(record_id)

            elif cm.mutation == Mutation.UPDATE:
                if record_id not in ids:
                    raise RecordNotFound(cm.table, record_id)
                _check_storable(cm.table, fields)
                self._validate(view, cm.table, fields, partial=True)

            elif cm.mutation == Mutation.DESTROY:
                if record_id not in ids:
                    raise RecordNotFound(cm.table, record_id)
                ids.discard(record_id)

    def _validate(
        self,
        view: _BatchView,
        table: str,
        fields: dict[str, Any],
        partial: bool,
    ) -> None:
        schema = view.schema(table)
        if not self.validate_records or schema is None:
            return

        errors = schema.validate_fields(fields, partial=partial)
        for field_name, target in schema.references().items():
            value = fields.get(field_name)
            if not isinstance(value, str):
                continue
            target_ids = view.ids(target)
            if target_ids is None:
                errors.append(f"Field '{field_name}' references undefined table '{target}'")
            elif value not in target_ids:
                errors.append(f"Field '{field_name}' references missing record '{value}' in '{target}'")

        if errors:
            raise ValidationError("; ".join(errors), table=table, errors=errors)

    def _fold(self, batch: list[CommitMaterial]) -> dict[str, Record]:
        affected: dict[str, Record] = {}

        for cm in batch:
            change = self.snapshot.apply(cm)
            if change is None:
                continue

            record_id, fields = change
            if fields is not None:
                # Later writes to the same id override earlier ones
                affected[record_id] = copy.deepcopy(fields)

        self._release(batch)
        return affected

    def _release(self, batch: list[CommitMaterial]) -> None:
        for cm in batch:
            if cm.mutation == Mutation.CREATE:
                self.reserved.discard(cm.record_id)

    @property
    def stats(self) -> dict[str, Any]:
        """Get committer statistics."""
        return {
            "commit_count": self._commit_count,
            "failure_count": self._failure_count,
            "reserved_ids": len(self.reserved),
        }
