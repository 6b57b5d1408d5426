"""
Base protocol and types for the persistence gateway.

This module defines the FileManager protocol that all storage backends must
implement, along with the storage error hierarchy.

Invariants:
    - commit() returns only after the whole batch is durably stored
    - A failed commit() leaves no part of the batch visible to rebuild()
    - rebuild() reproduces the state produced by every acknowledged batch,
      in order

How to change safely:
    - Protocol changes require updating all implementations
    - Persisted formats are versioned; readers must accept older versions
"""

from __future__ import annotations

from abc import abstractmethod
from typing import (
    TYPE_CHECKING,
    Protocol,
    Sequence,
    runtime_checkable,
)
import logging

if TYPE_CHECKING:
    from ..config import StorageConfig
    from ..mutations import CommitMaterial
    from ..snapshot import Snapshot

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageClosedError(StorageError):
    """Operation attempted on a closed file manager."""
    pass


class StorageCorruptError(StorageError):
    """Persisted data cannot be read back into a consistent snapshot."""
    pass


@runtime_checkable
class FileManager(Protocol):
    """Protocol for persistence backends.

    Durability contract:
        - commit() returns only after data is durably stored
        - One commit() call is one atomic unit on storage

    Ordering contract:
        - rebuild() replays batches in the order they were committed
        - Mutations within a batch are replayed in batch order

    Example:
        >>> fm = JsonlFileManager("/var/lib/tabledb/trading")
        >>> snapshot = await fm.rebuild()
        >>> await fm.commit([define("actors")])
    """

    @abstractmethod
    async def rebuild(self) -> Snapshot:
        """Reconstruct the full snapshot from storage.

        Raises:
            StorageCorruptError: If stored data is inconsistent
            StorageError: For other read failures
        """
        ...

    @abstractmethod
    async def commit(self, batch: Sequence[CommitMaterial]) -> None:
        """Durably apply an ordered batch.

        Raises:
            StorageClosedError: If the file manager was closed
            StorageError: For write failures
        """
        ...

    @abstractmethod
    async def compact(self, snapshot: Snapshot) -> None:
        """Replace stored history with ``snapshot``.

        Afterwards rebuild() must return a snapshot equal to ``snapshot``.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release file handles."""
        ...


def create_file_manager(config: StorageConfig, data_dir: str | None = None) -> FileManager:
    """Factory function to create the on-disk file manager from configuration.

    Args:
        config: Storage configuration
        data_dir: Store directory, overriding config.data_dir

    Returns:
        JsonlFileManager bound to the directory
    """
    from .jsonl import JsonlFileManager

    return JsonlFileManager(data_dir or config.data_dir, config)
