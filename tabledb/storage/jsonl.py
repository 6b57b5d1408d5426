"""
Append-only JSON Lines file manager for tabledb.

Storage layout (one directory per store):
    <data_dir>/commits.jsonl       one line per committed batch
    <data_dir>/snapshot.json.gz    optional compacted state

Log line format:
    {"seq": 12, "ts_ms": 1730000000000, "ops": [<CommitMaterial.to_dict()>, ...]}

Snapshot format:
    {"version": 1, "seq": 11, "checksum": "<sha256>", "tables": {...}, "schemas": {...}}

Invariants:
    - A batch is written as a single line; a line is only acknowledged once
      its trailing newline is on disk
    - A final line without a newline is a torn write and is discarded
    - Log lines with seq <= snapshot seq were already folded into the snapshot
    - The snapshot is replaced atomically (temp file + os.replace)
    - No commit is appended after a failed write that could not be rolled
      back, until compaction truncates the log

How to change safely:
    - Bump FORMAT_VERSION for incompatible snapshot changes and keep reading
      older versions
    - Test rebuild against stores written by previous releases
"""

from __future__ import annotations

import asyncio
import gzip
import hashlib
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Sequence, TypeVar

from ..config import StorageConfig
from ..errors import TableDbError
from ..mutations import CommitMaterial
from ..snapshot import Snapshot
from .base import StorageClosedError, StorageCorruptError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _canonical_json(data: Any) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _checksum(state: dict[str, Any]) -> str:
    return hashlib.sha256(_canonical_json(state)).hexdigest()


class JsonlFileManager:
    """File-backed persistence gateway.

    Every commit appends one JSON line to the log; rebuild replays the
    snapshot plus the log. Blocking file I/O runs in the default executor so
    the event loop is not stalled by fsync.

    Thread safety:
        Uses an asyncio lock around writes. One process per store directory.

    Example:
        >>> fm = JsonlFileManager("/var/lib/tabledb/trading")
        >>> snapshot = await fm.rebuild()
        >>> await fm.commit([define("actors")])
    """

    FORMAT_VERSION = 1

    def __init__(self, data_dir: str | os.PathLike[str], config: StorageConfig | None = None) -> None:
        """Initialize the file manager.

        Args:
            data_dir: Directory for this store's files
            config: Storage configuration (file names, fsync)
        """
        self.data_dir = Path(data_dir)
        self.config = config or StorageConfig(data_dir=str(data_dir))
        self.log_path = self.data_dir / self.config.log_filename
        self.snapshot_path = self.data_dir / self.config.snapshot_filename
        self._seq = 0
        self._closed = False
        self._broken = False
        self._lock = asyncio.Lock()

    @property
    def seq(self) -> int:
        """Sequence number of the last committed batch."""
        return self._seq

    async def rebuild(self) -> Snapshot:
        """Reconstruct the snapshot from the snapshot file and the log."""
        self._check_open()
        async with self._lock:
            return await self._run(self._rebuild_sync)

    async def commit(self, batch: Sequence[CommitMaterial]) -> None:
        """Append a batch to the log and make it durable."""
        self._check_open()
        async with self._lock:
            if self._broken:
                raise StorageError(
                    f"Commit log {self.log_path} holds a write that could not be "
                    "rolled back; compact or reopen the store"
                )
            entry = {
                "seq": self._seq + 1,
                "ts_ms": int(time.time() * 1000),
                "ops": [cm.to_dict() for cm in batch],
            }
            try:
                line = json.dumps(entry, separators=(",", ":")) + "\n"
            except (TypeError, ValueError) as e:
                raise StorageError(f"Batch is not JSON-serializable: {e}") from e

            await self._run(self._append_sync, line)
            self._seq += 1

        logger.debug(
            "Batch appended to commit log",
            extra={"seq": self._seq, "ops": len(batch), "path": str(self.log_path)},
        )

    async def compact(self, snapshot: Snapshot) -> None:
        """Write ``snapshot`` as the new base state and truncate the log."""
        self._check_open()
        async with self._lock:
            await self._run(self._compact_sync, snapshot)
            # The partial write is gone with the truncated log
            self._broken = False

        logger.info(
            "Store compacted",
            extra={"seq": self._seq, "records": snapshot.record_count()},
        )

    async def close(self) -> None:
        self._closed = True
        logger.debug("JsonlFileManager closed", extra={"path": str(self.data_dir)})

    def _check_open(self) -> None:
        if self._closed:
            raise StorageClosedError(f"File manager for {self.data_dir} is closed")

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.get_event_loop().run_in_executor(None, fn, *args)

    # Blocking helpers, run in the executor

    def _rebuild_sync(self) -> Snapshot:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create data directory {self.data_dir}: {e}") from e

        snapshot, seq = self._load_snapshot()
        if self.log_path.exists():
            seq = self._replay_log(snapshot, seq)
        self._seq = seq

        logger.info(
            "Store rebuilt",
            extra={
                "path": str(self.data_dir),
                "seq": seq,
                "tables": len(snapshot.tables),
                "records": snapshot.record_count(),
            },
        )
        return snapshot

    def _load_snapshot(self) -> tuple[Snapshot, int]:
        if not self.snapshot_path.exists():
            return Snapshot(), 0

        try:
            with gzip.open(self.snapshot_path, "rb") as f:
                doc = json.loads(f.read().decode("utf-8"))
        except (OSError, EOFError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageCorruptError(f"Unreadable snapshot {self.snapshot_path}: {e}") from e

        version = doc.get("version")
        if version != self.FORMAT_VERSION:
            raise StorageCorruptError(f"Unsupported snapshot version: {version}")

        state = {"tables": doc.get("tables", {}), "schemas": doc.get("schemas", {})}
        if _checksum(state) != doc.get("checksum"):
            raise StorageCorruptError(f"Snapshot checksum mismatch: {self.snapshot_path}")

        return Snapshot.from_dict(state), int(doc.get("seq", 0))

    def _replay_log(self, snapshot: Snapshot, base_seq: int) -> int:
        try:
            data = self.log_path.read_bytes()
        except OSError as e:
            raise StorageError(f"Cannot read commit log {self.log_path}: {e}") from e

        seq = base_seq
        offset = 0
        lines = data.split(b"\n")
        for lineno, raw in enumerate(lines, start=1):
            if lineno == len(lines):
                # Bytes after the last newline belong to an unacknowledged write
                if raw:
                    self._truncate_torn_tail(offset, len(raw))
                break

            try:
                entry = json.loads(raw.decode("utf-8"))
                entry_seq = int(entry["seq"])
                ops = entry["ops"]
            except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                raise StorageCorruptError(f"Invalid log entry at line {lineno}: {e}") from e

            offset += len(raw) + 1
            if entry_seq <= seq:
                # Already contained in the snapshot
                continue

            try:
                for op in ops:
                    snapshot.apply(CommitMaterial.from_dict(op))
            except TableDbError as e:
                raise StorageCorruptError(
                    f"Log entry {entry_seq} at line {lineno} cannot be replayed: {e}"
                ) from e
            seq = entry_seq

        return seq

    def _truncate_torn_tail(self, offset: int, size: int) -> None:
        logger.warning(
            "Discarding torn write at end of commit log",
            extra={"path": str(self.log_path), "offset": offset, "bytes": size},
        )
        try:
            os.truncate(self.log_path, offset)
        except OSError as e:
            raise StorageError(f"Cannot truncate torn commit log tail: {e}") from e

    def _append_sync(self, line: str) -> None:
        size_before = self.log_path.stat().st_size if self.log_path.exists() else 0
        try:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                if self.config.fsync:
                    os.fsync(f.fileno())
        except OSError as e:
            self._rollback_append(size_before)
            raise StorageError(f"Failed to write commit log {self.log_path}: {e}") from e

    def _rollback_append(self, size: int) -> None:
        try:
            os.truncate(self.log_path, size)
        except OSError as e:
            self._broken = True
            logger.error(
                "Could not roll back partial commit log write",
                extra={"path": str(self.log_path), "size": size, "error": str(e)},
            )

    def _compact_sync(self, snapshot: Snapshot) -> None:
        state = snapshot.to_dict()
        doc = {
            "version": self.FORMAT_VERSION,
            "seq": self._seq,
            "checksum": _checksum(state),
            **state,
        }
        tmp_path = self.snapshot_path.with_name(self.snapshot_path.name + ".tmp")
        try:
            with gzip.open(tmp_path, "wb") as f:
                f.write(_canonical_json(doc))
            with open(tmp_path, "rb") as f:
                os.fsync(f.fileno())
            os.replace(tmp_path, self.snapshot_path)
            # Entries up to seq are now in the snapshot
            with open(self.log_path, "w", encoding="utf-8") as f:
                f.flush()
                if self.config.fsync:
                    os.fsync(f.fileno())
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to compact store {self.data_dir}: {e}") from e
