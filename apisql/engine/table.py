from __future__ import annotations
import logging
import threading
from typing import Any, List, Optional, Tuple

import sqlglot.expressions as exp
from opentelemetry import trace

from apisql.catalog.models import ApiCatalog, Entity
from apisql.engine.enumerator import RowEnumerator
from apisql.errors import SchemaResolutionError, UnsupportedOperationError
from apisql.planner.constraints import resolve_constraint
from apisql.planner.request_builder import build_target
from apisql.schema.columns import ColumnSchema, build_column_schema
from apisql.schema.field_kind import FieldKind

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("apisql.engine")


class ApiTable:
    """
    One entity of a declarative document exposed as a filterable table.

    The only state kept between calls is the immutable catalog and the
    memoised column schema; everything a scan resolves travels with the
    returned enumerator, so concurrent scans need no locking.
    """

    def __init__(self, catalog: ApiCatalog, entity_name: str, cache: Any) -> None:
        entity = catalog.entity(entity_name)
        if entity is None:
            raise SchemaResolutionError(f"Unknown entity: {entity_name}")
        self.catalog = catalog
        self.entity: Entity = entity
        self._cache = cache
        self._columns: Optional[ColumnSchema] = None

    @property
    def name(self) -> str:
        return self.entity.name

    @property
    def columns(self) -> ColumnSchema:
        # Idempotent if two threads race here: same immutable inputs.
        if self._columns is None:
            with tracer.start_as_current_span(
                "table.columns", attributes={"table.entity": self.name}
            ):
                self._columns = build_column_schema(self.entity, self.catalog)
        return self._columns

    def row_type(self) -> List[Tuple[str, FieldKind]]:
        return self.columns.pairs()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def scan(
        self,
        predicate: Optional[exp.Expression],
        cancel_event: Optional[threading.Event] = None,
    ) -> RowEnumerator:
        """
        Resolve the pushed-down predicate to one endpoint and return a lazy
        row stream for it. Nothing is fetched until the first row is read.

        Raises:
            QueryShapeError, ConstraintMappingError, ConfigurationError,
            SchemaResolutionError.
        """
        with tracer.start_as_current_span(
            "table.scan",
            attributes={
                "table.entity": self.name,
                "table.predicate": predicate.sql() if predicate is not None else "",
            },
        ) as span:
            columns = self.columns
            resolved = resolve_constraint(predicate, self.name, columns, self.catalog)
            target = build_target(self.catalog, resolved)
            span.set_attribute("table.endpoint", resolved.endpoint.path)
            span.set_attribute("table.target", target)

        return RowEnumerator(
            target=target,
            resolved=resolved,
            columns=columns,
            cache=self._cache,
            cancel_event=cancel_event,
        )

    # ------------------------------------------------------------------
    # Writes (never supported)
    # ------------------------------------------------------------------

    def insert(self, *args: Any, **kwargs: Any) -> None:
        raise UnsupportedOperationError(f"INSERT is not supported on {self.name}")

    def update(self, *args: Any, **kwargs: Any) -> None:
        raise UnsupportedOperationError(f"UPDATE is not supported on {self.name}")

    def delete(self, *args: Any, **kwargs: Any) -> None:
        raise UnsupportedOperationError(f"DELETE is not supported on {self.name}")
