from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import List, Tuple

from apisql.catalog.models import ApiCatalog, Entity, PropertyDecl
from apisql.errors import SchemaResolutionError
from apisql.schema.field_kind import FieldKind, NotFound, resolve_kind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnSchema:
    """
    Column layout of one entity.

    order is the lexicographically sorted property-name list and is the
    only column index ↔ name mapping; kinds[i] belongs to order[i].
    """

    order: Tuple[str, ...]
    kinds: Tuple[FieldKind, ...]

    def index_of(self, column: str) -> int:
        """Exact name first, then a case-insensitive fallback; -1 if absent."""
        if column in self.order:
            return self.order.index(column)
        lowered = [name.lower() for name in self.order]
        if lowered.count(column.lower()) == 1:
            return lowered.index(column.lower())
        return -1

    def pairs(self) -> List[Tuple[str, FieldKind]]:
        return list(zip(self.order, self.kinds))


def build_column_schema(entity: Entity, catalog: ApiCatalog) -> ColumnSchema:
    """
    Raises:
        SchemaResolutionError: unknown type, unresolved reference or a
        reference to another reference.
    """
    order = tuple(sorted(entity.properties))
    kinds = tuple(
        resolve_property_kind(name, entity.properties[name], catalog)
        for name in order
    )
    logger.debug("Column schema for %s: %s", entity.name, list(order))
    return ColumnSchema(order=order, kinds=kinds)


def resolve_property_kind(
    column: str, prop: PropertyDecl, catalog: ApiCatalog
) -> FieldKind:
    type_string = prop.type
    if type_string is None:
        type_string = _referenced_type(column, prop, catalog)

    kind = resolve_kind(type_string)
    if isinstance(kind, NotFound):
        raise SchemaResolutionError(
            f"Found unknown type `{type_string}` for column `{column}`"
        )
    return kind


def _referenced_type(column: str, prop: PropertyDecl, catalog: ApiCatalog) -> str:
    """Follow exactly one level of reference indirection."""
    ref = prop.ref
    if ref is None or not ref.startswith(catalog.ref_prefix):
        raise SchemaResolutionError(
            f"Column `{column}` has neither a type nor a recognised reference"
            f" (got {ref!r})"
        )
    target = catalog.entity(ref[len(catalog.ref_prefix):])
    if target is None:
        raise SchemaResolutionError(
            f"Unresolved reference `{ref}` for column `{column}`"
        )
    if target.type is None:
        if target.ref is not None:
            raise SchemaResolutionError(
                f"Reference `{ref}` for column `{column}` points at another reference"
            )
        if target.properties:
            return "object"
        raise SchemaResolutionError(
            f"Referenced entity `{target.name}` for column `{column}` has no type"
        )
    return target.type
