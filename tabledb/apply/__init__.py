"""
Apply module for tabledb - committing batches and reading them back.

This module handles:
- Preflight checks of a batch against the snapshot
- Persisting the batch and folding it into memory
- Copy-on-read views of tables and records

Invariants:
    - A batch is applied entirely or not at all
    - Reads return copies, never live references into the snapshot
"""

from .committer import Committer
from .views import IdLookup, lookup_by_id, read_table

__all__ = [
    "Committer",
    "IdLookup",
    "lookup_by_id",
    "read_table",
]
