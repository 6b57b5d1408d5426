"""
Persistence gateway for tabledb.

This module provides a pluggable storage interface supporting:
- Append-only JSON Lines log with compaction (production)
- In-memory (for testing)

Storage is the source of truth. The in-memory snapshot is a derived view
rebuilt from storage when a store is opened.

Invariants:
    - commit() returns only after durable storage is confirmed
    - Failed commits must not result in partial writes
    - rebuild() replays batches in commit order

How to change safely:
    - New backends must implement the FileManager protocol
    - Test crash recovery (torn writes, interrupted compaction)
"""

from .base import (
    FileManager,
    StorageClosedError,
    StorageCorruptError,
    StorageError,
    create_file_manager,
)
from .jsonl import JsonlFileManager
from .memory import InMemoryFileManager

__all__ = [
    # Protocol and errors
    "FileManager",
    "StorageError",
    "StorageClosedError",
    "StorageCorruptError",
    # Factory
    "create_file_manager",
    # Implementations
    "JsonlFileManager",
    "InMemoryFileManager",
]
