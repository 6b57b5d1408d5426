"""
tabledb - Embedded, file-persisted record store.

Callers define named tables, then commit batches of mutations
(define/create/update/destroy) that are written durably and mirrored into
an in-memory snapshot used for reads.

Architecture:
    ┌─────────────┐   CommitMaterial   ┌─────────────┐   batch   ┌──────────────┐
    │  Database   │───────────────────▶│  Committer  │──────────▶│ FileManager  │
    │  (facade)   │                    │ (preflight, │           │ (JSONL log + │
    └──────┬──────┘                    │  fold)      │           │  snapshot)   │
           │ read / id                 └──────┬──────┘           └──────────────┘
           ▼                                  ▼
    ┌─────────────┐                    ┌─────────────┐
    │ Read views  │◀───────────────────│  Snapshot   │
    │  (copies)   │                    │ (in memory) │
    └─────────────┘                    └─────────────┘

Invariants:
    - Storage is the source of truth; the snapshot is rebuilt from it on open
    - Record ids are unique across all tables
    - A batch is applied entirely or not at all
    - Values returned by reads never change after being returned

How to change safely:
    - Keep the persisted log format backward compatible
    - Every new mutation kind needs preflight, fold and replay support
"""

from ._version import __version__
from .apply.views import IdLookup
from .config import StoreConfig
from .database import Database, open_database
from .errors import (
    DuplicateRecordId,
    IdSpaceExhausted,
    InvalidMutation,
    OpenFailure,
    PersistFailure,
    RecordNotFound,
    TableDbError,
    TableNotFound,
    ValidationError,
)
from .mutations import CommitMaterial, Mutation
from .schema import FieldDef, FieldKind, TableDef, enum, int_, iso, num, ref, required, str_

__all__ = [
    "__version__",
    # Store
    "Database",
    "open_database",
    "StoreConfig",
    "IdLookup",
    # Mutations
    "CommitMaterial",
    "Mutation",
    # Schema tags
    "FieldDef",
    "FieldKind",
    "TableDef",
    "num",
    "int_",
    "str_",
    "iso",
    "enum",
    "ref",
    "required",
    # Errors
    "TableDbError",
    "OpenFailure",
    "PersistFailure",
    "TableNotFound",
    "RecordNotFound",
    "DuplicateRecordId",
    "IdSpaceExhausted",
    "InvalidMutation",
    "ValidationError",
]
