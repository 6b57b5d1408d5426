"""
Schema module for tabledb.

This module provides the declarative field tags tables can be defined with
and the validation of record fields against them.

Invariants:
    - Tags are declarative; the core store treats records as opaque
      mappings unless the table was defined with tags
    - Definitions travel with the define mutation and are persisted with it

How to change safely:
    - Add new tags as new FieldKind members; never rename existing values,
      they are persisted
"""

from .types import (
    FieldDef,
    FieldKind,
    TableDef,
    enum,
    int_,
    iso,
    num,
    ref,
    required,
    str_,
)

__all__ = [
    "FieldDef",
    "FieldKind",
    "TableDef",
    # Tags
    "num",
    "int_",
    "str_",
    "iso",
    "enum",
    "ref",
    "required",
]
