"""
In-memory snapshot of a tabledb store.

The snapshot is the full projection of all tables and records. It is rebuilt
once from storage when a store is opened and afterwards mutated only by
folding committed mutations into it.

Invariants:
    - A table exists only after a define mutation
    - No record id appears in more than one table
    - Folding a mutation never suspends; it completes before returning
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Iterator

from .errors import InvalidMutation, RecordNotFound, TableNotFound
from .mutations import CommitMaterial, Mutation
from .schema.types import TableDef

Record = dict[str, Any]
Table = dict[str, Record]


@dataclass
class Snapshot:
    """All tables and records of one store.

    Attributes:
        tables: Table name -> record id -> fields
        schemas: Table name -> definition, for tables defined with field tags
    """

    tables: dict[str, Table] = field(default_factory=dict)
    schemas: dict[str, TableDef] = field(default_factory=dict)

    def find(self, record_id: str) -> str | None:
        """Name of the first table holding ``record_id``, None if absent."""
        for name, records in self.tables.items():
            if record_id in records:
                return name
        return None

    def contains_id(self, record_id: str) -> bool:
        return self.find(record_id) is not None

    def record_ids(self) -> Iterator[str]:
        for records in self.tables.values():
            yield from records

    def record_count(self) -> int:
        return sum(len(records) for records in self.tables.values())

    def apply(self, cm: CommitMaterial) -> tuple[str, Record | None] | None:
        """Fold one mutation into the snapshot.

        Returns:
            None for define, (id, fields) for create/update, (id, None) for
            destroy

        Raises:
            TableNotFound: If the target table is not defined
            RecordNotFound: If an update/destroy target id is absent
        """
        if cm.mutation == Mutation.DEFINE:
            self.tables[cm.table] = {}
            if cm.schema is not None:
                self.schemas[cm.table] = cm.schema
            else:
                self.schemas.pop(cm.table, None)
            return None

        records = self.tables.get(cm.table)
        if records is None:
            raise TableNotFound(cm.table)

        record_id, fields = cm.split_payload()

        if cm.mutation == Mutation.CREATE:
            records[record_id] = fields
            return record_id, fields

        if record_id not in records:
            raise RecordNotFound(cm.table, record_id)

        if cm.mutation == Mutation.UPDATE:
            updated = {**records[record_id], **fields}
            records[record_id] = updated
            return record_id, updated

        if cm.mutation == Mutation.DESTROY:
            del records[record_id]
            return record_id, None

        raise InvalidMutation(f"Unknown mutation: {cm.mutation}", table=cm.table)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "tables": copy.deepcopy(self.tables),
            "schemas": {name: s.to_dict() for name, s in self.schemas.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        return cls(
            tables=copy.deepcopy(data.get("tables", {})),
            schemas={
                name: TableDef.from_dict(s) for name, s in data.get("schemas", {}).items()
            },
        )
