"""
Field tags and table definitions for tabledb.

This module defines the declarative schema markers a table can be defined
with:
- num: Any number (int or float)
- int_: Integer
- str_: String
- iso: ISO-8601 timestamp string
- enum(*values): One of a fixed set of strings
- ref(table): Id of a record that exists in another table

A record value is stored as a plain Python value; the tag on its field
definition says which variant of the union it belongs to.

Invariants:
    - A table without a definition accepts any fields
    - enum_values is non-empty for ENUM fields
    - ref_table is set for REFERENCE fields
    - Definitions serialize to plain JSON (to_dict/from_dict round-trip)

Example:
    >>> from tabledb.schema import TableDef, num, ref, enum, iso
    >>> transactions = TableDef.from_tags("transactions", {
    ...     "actorId": ref("actors"),
    ...     "timestamp": iso,
    ...     "action": enum("buy", "sell"),
    ...     "price": num,
    ... })
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from dataclasses import field as dataclass_field
from datetime import datetime
from difflib import get_close_matches
from enum import Enum
from typing import Any, Mapping


class FieldKind(Enum):
    """Supported field tags."""

    NUMBER = "num"
    INTEGER = "int"
    STRING = "str"
    ENUM = "enum"
    REFERENCE = "ref"
    TIMESTAMP = "iso"

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert string representation to FieldKind.

        Raises:
            ValueError: If value is not a valid field kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")


@dataclass(frozen=True)
class FieldDef:
    """Tag describing the values a single field may hold.

    Attributes:
        kind: The value variant of the field
        enum_values: Allowed values if kind is ENUM
        ref_table: Target table if kind is REFERENCE
        required: Whether the field must be present on create
    """

    kind: FieldKind
    enum_values: tuple[str, ...] | None = None
    ref_table: str | None = None
    required: bool = False

    def __post_init__(self) -> None:
        if self.kind == FieldKind.ENUM and not self.enum_values:
            raise ValueError("enum_values required for ENUM field")
        if self.kind == FieldKind.REFERENCE and not self.ref_table:
            raise ValueError("ref_table required for REFERENCE field")

    def validate_value(self, name: str, value: Any) -> str | None:
        """Validate a value against this tag.

        Returns an error message if invalid, None if valid. Reference
        targets are not checked here because that needs the snapshot.
        """
        if value is None:
            if self.required:
                return f"Field '{name}' is required"
            return None

        if self.kind == FieldKind.NUMBER:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return f"Field '{name}' must be a number, got {type(value).__name__}"
        elif self.kind == FieldKind.INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                return f"Field '{name}' must be an integer, got {type(value).__name__}"
        elif self.kind == FieldKind.STRING:
            if not isinstance(value, str):
                return f"Field '{name}' must be a string, got {type(value).__name__}"
        elif self.kind == FieldKind.ENUM:
            if value not in (self.enum_values or ()):
                return f"Field '{name}' must be one of {self.enum_values}, got {value!r}"
        elif self.kind == FieldKind.TIMESTAMP:
            if not isinstance(value, str):
                return f"Field '{name}' must be an ISO timestamp string, got {type(value).__name__}"
            try:
                datetime.fromisoformat(value)
            except ValueError:
                return f"Field '{name}' is not a valid ISO timestamp: {value!r}"
        elif self.kind == FieldKind.REFERENCE:
            if not isinstance(value, str):
                return f"Field '{name}' must be a record id, got {type(value).__name__}"
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"kind": self.kind.value}
        if self.enum_values:
            result["enum_values"] = list(self.enum_values)
        if self.ref_table:
            result["ref_table"] = self.ref_table
        if self.required:
            result["required"] = True
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FieldDef:
        """Create from dictionary representation."""
        return cls(
            kind=FieldKind.from_str(data["kind"]),
            enum_values=tuple(data["enum_values"]) if data.get("enum_values") else None,
            ref_table=data.get("ref_table"),
            required=data.get("required", False),
        )


@dataclass(frozen=True)
class TableDef:
    """Field definitions for one table.

    Attributes:
        name: Table name
        fields: Mapping of field name to its tag
    """

    name: str
    fields: dict[str, FieldDef] = dataclass_field(default_factory=dict)

    @classmethod
    def from_tags(cls, name: str, tags: Mapping[str, FieldDef]) -> TableDef:
        """Build a definition from a mapping of field name to tag."""
        for field_name, tag in tags.items():
            if not isinstance(tag, FieldDef):
                raise ValueError(
                    f"Field '{field_name}' of table '{name}' must be a field tag, "
                    f"got {type(tag).__name__}"
                )
        return cls(name=name, fields=dict(tags))

    def validate_fields(self, values: Mapping[str, Any], partial: bool = False) -> list[str]:
        """Validate record fields against this definition.

        Args:
            values: Field values (without the record id)
            partial: True for update patches, where missing fields are fine

        Returns:
            List of error messages, empty if valid
        """
        errors: list[str] = []

        known = list(self.fields)
        for field_name in values:
            if field_name not in self.fields:
                suggestions = get_close_matches(field_name, known, n=3)
                if suggestions:
                    errors.append(f"Unknown field '{field_name}'. Did you mean: {suggestions}?")
                else:
                    errors.append(f"Unknown field '{field_name}'")

        for field_name, field_def in self.fields.items():
            if partial and field_name not in values:
                continue
            error = field_def.validate_value(field_name, values.get(field_name))
            if error:
                errors.append(error)

        return errors

    def references(self) -> dict[str, str]:
        """Map of reference field name to the table it points at."""
        return {
            name: f.ref_table
            for name, f in self.fields.items()
            if f.kind == FieldKind.REFERENCE and f.ref_table
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "fields": {name: f.to_dict() for name, f in sorted(self.fields.items())},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TableDef:
        return cls(
            name=data["name"],
            fields={name: FieldDef.from_dict(f) for name, f in data.get("fields", {}).items()},
        )


num = FieldDef(FieldKind.NUMBER)
int_ = FieldDef(FieldKind.INTEGER)
str_ = FieldDef(FieldKind.STRING)
iso = FieldDef(FieldKind.TIMESTAMP)


def enum(*values: str) -> FieldDef:
    """Tag for a field holding one of ``values``.

    Example:
        >>> action = enum("buy", "sell")
    """
    return FieldDef(FieldKind.ENUM, enum_values=tuple(values))


def ref(table: str) -> FieldDef:
    """Tag for a field holding the id of a record in ``table``."""
    return FieldDef(FieldKind.REFERENCE, ref_table=table)


def required(tag: FieldDef) -> FieldDef:
    """Copy of ``tag`` that must be present on create."""
    return replace(tag, required=True)
