"""
Read-only views over a tabledb snapshot.

Every value handed out is a deep copy: callers may mutate it freely, and
later commits never change a value that was already returned.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass

from ..errors import TableNotFound
from ..snapshot import Record, Snapshot, Table


@dataclass(frozen=True)
class IdLookup:
    """Result of a cross-table id lookup.

    Attributes:
        table: Name of the table holding the record
        record: Copy of the record's fields
    """

    table: str
    record: Record


def read_table(snapshot: Snapshot, table: str) -> Table:
    """Copy of every record in ``table``.

    Raises:
        TableNotFound: If the table is not defined
    """
    records = snapshot.tables.get(table)
    if records is None:
        raise TableNotFound(table)
    return copy.deepcopy(records)


def lookup_by_id(snapshot: Snapshot, record_id: str) -> IdLookup | None:
    """Find a record by id in any table.

    Tables are scanned in definition order; ids are unique across tables, so
    at most one can match.
    """
    table = snapshot.find(record_id)
    if table is None:
        return None
    return IdLookup(table=table, record=copy.deepcopy(snapshot.tables[table][record_id]))
