"""
Configuration management for tabledb.

Configuration comes from environment variables with defaults suitable for
local use. This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Configuration objects are immutable once loaded

How to change safely:
    - Add new settings with defaults that keep existing stores readable
    - Never change file name defaults without a migration path; existing
      stores are located by them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """On-disk storage configuration.

    Attributes:
        data_dir: Directory holding the store files
        log_filename: Append-only commit log file name
        snapshot_filename: Compacted snapshot file name
        fsync: Whether commits are fsync'ed before being acknowledged
        compact_every_commits: Compact after this many commits (0 = never)
    """

    data_dir: str = "./data"
    log_filename: str = "commits.jsonl"
    snapshot_filename: str = "snapshot.json.gz"
    fsync: bool = True
    compact_every_commits: int = 0

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("TABLEDB_DATA_DIR", "./data"),
            log_filename=os.getenv("TABLEDB_LOG_FILENAME", "commits.jsonl"),
            snapshot_filename=os.getenv("TABLEDB_SNAPSHOT_FILENAME", "snapshot.json.gz"),
            fsync=_env_bool("TABLEDB_FSYNC", "true"),
            compact_every_commits=int(os.getenv("TABLEDB_COMPACT_EVERY", "0")),
        )


@dataclass(frozen=True)
class IdConfig:
    """Record id allocation configuration.

    Attributes:
        token_length: Length of generated base36 ids
        max_attempts: Collisions tolerated before giving up
    """

    token_length: int = 10
    max_attempts: int = 32

    @classmethod
    def from_env(cls) -> IdConfig:
        """Load configuration from environment variables."""
        return cls(
            token_length=int(os.getenv("TABLEDB_ID_LENGTH", "10")),
            max_attempts=int(os.getenv("TABLEDB_ID_MAX_ATTEMPTS", "32")),
        )


@dataclass(frozen=True)
class ValidationConfig:
    """Record validation configuration.

    Attributes:
        validate_records: Check create/update fields of tables defined with tags
    """

    validate_records: bool = True

    @classmethod
    def from_env(cls) -> ValidationConfig:
        """Load configuration from environment variables."""
        return cls(validate_records=_env_bool("TABLEDB_VALIDATE", "true"))


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class StoreConfig:
    """Complete store configuration.

    Attributes:
        storage: On-disk storage configuration
        ids: Id allocation configuration
        validation: Record validation configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    ids: IdConfig = field(default_factory=IdConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            ids=IdConfig.from_env(),
            validation=ValidationConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.data_dir:
            raise ValueError("TABLEDB_DATA_DIR must not be empty")
        if self.storage.log_filename == self.storage.snapshot_filename:
            raise ValueError("Log and snapshot file names must differ")
        if self.storage.compact_every_commits < 0:
            raise ValueError("TABLEDB_COMPACT_EVERY must be >= 0")
        if self.ids.token_length < 4:
            raise ValueError("TABLEDB_ID_LENGTH must be at least 4")
        if self.ids.max_attempts < 1:
            raise ValueError("TABLEDB_ID_MAX_ATTEMPTS must be at least 1")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first open."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Store configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "fsync": self.storage.fsync,
                "compact_every_commits": self.storage.compact_every_commits,
                "id_length": self.ids.token_length,
                "validate_records": self.validation.validate_records,
                "log_level": self.observability.log_level,
            },
        )
