from __future__ import annotations
from enum import Enum
from typing import Dict, Union


class FieldKind(Enum):
    """Closed set of primitive value categories a column may hold."""

    INTEGER = "integer"
    FLOAT = "float"
    DOUBLE = "double"
    STRING = "string"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    ARRAY = "array"
    OBJECT = "object"

    @property
    def sql_type(self) -> str:
        """Column type exposed to the host engine."""
        return _SQL_TYPES[self]


# Arrays and objects reach the host as their JSON text.
_SQL_TYPES: Dict[FieldKind, str] = {
    FieldKind.INTEGER: "BIGINT",
    FieldKind.FLOAT: "FLOAT",
    FieldKind.DOUBLE: "DOUBLE",
    FieldKind.STRING: "VARCHAR",
    FieldKind.BOOLEAN: "BOOLEAN",
    FieldKind.DATETIME: "TIMESTAMP",
    FieldKind.ARRAY: "VARCHAR",
    FieldKind.OBJECT: "VARCHAR",
}


class NotFound:
    """Explicit lookup miss returned by resolve_kind()."""

    __slots__ = ("type_string",)

    def __init__(self, type_string: object) -> None:
        self.type_string = type_string

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"NotFound({self.type_string!r})"


# Declaration type names → kind. "object" is what a referenced entity
# schema declares, "ref" is the legacy spelling of the same thing.
_KIND_BY_TYPE_NAME: Dict[str, FieldKind] = {
    "integer": FieldKind.INTEGER,
    "number": FieldKind.FLOAT,
    "double": FieldKind.DOUBLE,
    "string": FieldKind.STRING,
    "boolean": FieldKind.BOOLEAN,
    "date": FieldKind.DATETIME,
    "array": FieldKind.ARRAY,
    "ref": FieldKind.OBJECT,
    "object": FieldKind.OBJECT,
}


def resolve_kind(type_string: object) -> Union[FieldKind, NotFound]:
    """Look up the FieldKind for a raw declaration type name."""
    if isinstance(type_string, str) and type_string in _KIND_BY_TYPE_NAME:
        return _KIND_BY_TYPE_NAME[type_string]
    return NotFound(type_string)
