"""
Error types for tabledb.

This module defines all exception types raised by the store:
- TableDbError: Base exception
- OpenFailure: Snapshot could not be rebuilt from storage
- PersistFailure: Storage rejected or failed to write a batch
- TableNotFound / RecordNotFound: Mutation or read targets missing data
- DuplicateRecordId: A create would reuse an existing id
- IdSpaceExhausted: Id allocation ran out of attempts
- InvalidMutation: Malformed mutation input
- ValidationError: Record fields violate a table schema

Invariants:
    - All errors inherit from TableDbError
    - Errors include context for debugging
    - A batch that fails raises exactly one error for the whole batch
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class TableDbError(Exception):
    """Base exception for all tabledb errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TABLEDB_ERROR"
        self.details = details or {}


class OpenFailure(TableDbError):
    """Rebuilding the in-memory snapshot from storage failed.

    No database handle is produced when this is raised.
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, code="OPEN_FAILURE", details={"path": path})
        self.path = path


class PersistFailure(TableDbError):
    """Storage rejected or failed to durably apply a batch.

    The in-memory snapshot is guaranteed unchanged when this is raised.
    """

    def __init__(self, message: str, batch_size: int = 0) -> None:
        super().__init__(message, code="PERSIST_FAILURE", details={"batch_size": batch_size})
        self.batch_size = batch_size


class TableNotFound(TableDbError):
    """Table has not been defined."""

    def __init__(self, table: str) -> None:
        super().__init__(
            f"Table not found: '{table}'",
            code="TABLE_NOT_FOUND",
            details={"table": table},
        )
        self.table = table


class RecordNotFound(TableDbError):
    """Record id is absent from its table."""

    def __init__(self, table: str, record_id: str) -> None:
        super().__init__(
            f"Record '{record_id}' not found in table '{table}'",
            code="RECORD_NOT_FOUND",
            details={"table": table, "id": record_id},
        )
        self.table = table
        self.record_id = record_id


class DuplicateRecordId(TableDbError):
    """A create would reuse an id that already exists in some table."""

    def __init__(self, record_id: str, existing_table: Optional[str] = None) -> None:
        super().__init__(
            f"Record id '{record_id}' already exists"
            + (f" in table '{existing_table}'" if existing_table else ""),
            code="DUPLICATE_RECORD_ID",
            details={"id": record_id, "table": existing_table},
        )
        self.record_id = record_id
        self.existing_table = existing_table


class IdSpaceExhausted(TableDbError):
    """No unused id was found within the configured number of attempts."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"Could not allocate a unique id after {attempts} attempts",
            code="ID_SPACE_EXHAUSTED",
            details={"attempts": attempts},
        )
        self.attempts = attempts


class InvalidMutation(TableDbError, ValueError):
    """Mutation input is malformed.

    Raised when:
    - update/destroy fields have no 'id'
    - create fields already carry an 'id'
    - a serialized mutation has an unknown kind or missing keys
    """

    def __init__(self, message: str, table: Optional[str] = None) -> None:
        super().__init__(message, code="INVALID_MUTATION", details={"table": table})
        self.table = table


class ValidationError(TableDbError):
    """Record fields violate the table schema.

    Raised when:
    - Required field is missing on create
    - Field value has wrong type for its tag
    - Enum value is not allowed
    - Reference points at a record that does not exist
    """

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"table": table, "errors": errors or []},
        )
        self.table = table
        self.errors = errors or []
