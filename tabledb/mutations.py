"""
Mutation intents for tabledb.

A CommitMaterial describes one pending change to the store. Builders in this
module are pure: they only construct intent values, which are applied later
by Database.commit().

Example:
    {"table": "actors", "mutation": "create", "payload": {"id": "k3v9...", "cash": 5000}}

Invariants:
    - define carries no payload (optionally a table definition)
    - create payload holds the full field set plus the allocated id
    - update payload holds the id plus the changed fields only
    - destroy payload holds the id
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from .errors import InvalidMutation
from .schema.types import FieldDef, TableDef


class Mutation(Enum):
    """Kinds of change a CommitMaterial can describe."""

    DEFINE = "define"
    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"


@dataclass(frozen=True)
class CommitMaterial:
    """A single pending mutation intent.

    Attributes:
        table: Target table name
        mutation: Kind of change
        payload: Record fields (None for define)
        schema: Table definition (define only, optional)
    """

    table: str
    mutation: Mutation
    payload: dict[str, Any] | None = None
    schema: TableDef | None = None

    @property
    def record_id(self) -> str | None:
        """Id of the targeted record, None for define."""
        if self.payload is None:
            return None
        return self.payload.get("id")

    def split_payload(self) -> tuple[str, dict[str, Any]]:
        """Split payload into the record id and the remaining fields."""
        if not self.payload or "id" not in self.payload:
            raise InvalidMutation(
                f"{self.mutation.value} on '{self.table}' has no record id",
                table=self.table,
            )
        fields = copy.deepcopy(self.payload)
        record_id = fields.pop("id")
        return record_id, fields

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: dict[str, Any] = {"table": self.table, "mutation": self.mutation.value}
        if self.payload is not None:
            result["payload"] = self.payload
        if self.schema is not None:
            result["schema"] = self.schema.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CommitMaterial:
        """Create from dictionary.

        Raises:
            InvalidMutation: If keys are missing or the kind is unknown
        """
        missing = [k for k in ("table", "mutation") if k not in data]
        if missing:
            raise InvalidMutation(f"Missing required keys: {missing}")
        try:
            mutation = Mutation(data["mutation"])
        except ValueError:
            raise InvalidMutation(
                f"Unknown mutation '{data['mutation']}'", table=data["table"]
            ) from None

        schema = data.get("schema")
        return cls(
            table=data["table"],
            mutation=mutation,
            payload=data.get("payload"),
            schema=TableDef.from_dict(schema) if schema else None,
        )


def define(table: str, fields: Mapping[str, FieldDef] | None = None) -> CommitMaterial:
    """Build a define mutation, optionally with field tags.

    Committing it creates an empty table, replacing any table of the same name.
    """
    schema = TableDef.from_tags(table, fields) if fields else None
    return CommitMaterial(table=table, mutation=Mutation.DEFINE, schema=schema)


def create(table: str, fields: Mapping[str, Any], record_id: str) -> CommitMaterial:
    """Build a create mutation for a record with an already allocated id."""
    if "id" in fields:
        raise InvalidMutation(
            f"create on '{table}' must not carry an 'id'; ids are allocated by the store",
            table=table,
        )
    return CommitMaterial(
        table=table,
        mutation=Mutation.CREATE,
        payload={"id": record_id, **fields},
    )


def update(table: str, fields: Mapping[str, Any]) -> CommitMaterial:
    """Build an update mutation; ``fields`` is the id plus a partial patch."""
    _require_id(table, fields, "update")
    return CommitMaterial(table=table, mutation=Mutation.UPDATE, payload=dict(fields))


def destroy(table: str, fields: Mapping[str, Any]) -> CommitMaterial:
    """Build a destroy mutation; ``fields`` must include the id."""
    _require_id(table, fields, "destroy")
    return CommitMaterial(table=table, mutation=Mutation.DESTROY, payload=dict(fields))


def _require_id(table: str, fields: Mapping[str, Any], kind: str) -> None:
    if "id" not in fields:
        raise InvalidMutation(f"{kind} on '{table}' requires an 'id' field", table=table)
