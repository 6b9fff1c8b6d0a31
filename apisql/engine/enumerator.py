from __future__ import annotations
import json
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from opentelemetry import trace

from apisql.catalog.models import ResponseShape
from apisql.errors import DecodeError, FetchError, UnsupportedOperationError
from apisql.planner.models import ResolvedQuery
from apisql.schema.columns import ColumnSchema
from apisql.schema.field_kind import FieldKind

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("apisql.engine")

Row = Tuple[Any, ...]


class EnumeratorState(str, Enum):
    CREATED = "created"
    FETCHING = "fetching"
    STREAMING = "streaming"
    EXHAUSTED = "exhausted"


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    # containers have no scalar text
    return ""


def _as_int(value: Any) -> int:
    """Lenient integer coercion; unconvertible values become 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            try:
                return int(float(value))
            except ValueError:
                return 0
    return 0


def _as_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


_CONVERTERS: Dict[FieldKind, Callable[[Any], Any]] = {
    FieldKind.STRING: _as_text,
    FieldKind.INTEGER: _as_int,
    FieldKind.OBJECT: _as_json,
    FieldKind.ARRAY: _as_json,
}


def convert_row(node: Any, columns: ColumnSchema) -> Row:
    """
    One typed row from one document node. A column with no value under the
    node (or an explicit JSON null) is None.

    Raises:
        DecodeError: a column's kind has no converter.
    """
    if not isinstance(node, dict):
        raise DecodeError(
            f"Expected an object per row, got {type(node).__name__}"
        )
    values: List[Any] = []
    for name, kind in zip(columns.order, columns.kinds):
        converter = _CONVERTERS.get(kind)
        if converter is None:
            raise DecodeError(
                f"Decoding field kind {kind.name} (column `{name}`) is not implemented"
            )
        value = node.get(name)
        values.append(None if value is None else converter(value))
    return tuple(values)


class RowEnumerator:
    """
    Single-pass, non-restartable row stream over one fetched document.

    Created → Fetching (first move_next fetches and parses the whole
    document) → Streaming → Exhausted. The fetch happens at most once.
    Array responses yield one row per element in document order; single
    object responses yield exactly one row.

    cancel_event is accepted from the host but not polled while decoding.
    """

    def __init__(
        self,
        target: str,
        resolved: ResolvedQuery,
        columns: ColumnSchema,
        cache: Any,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.target = target
        self.resolved = resolved
        self.columns = columns
        self.cancel_event = cancel_event
        self._cache = cache
        self._state = EnumeratorState.CREATED
        self._root: Any = None
        self._cursor = 0
        self._current: Optional[Row] = None

    @property
    def state(self) -> EnumeratorState:
        return self._state

    @property
    def current(self) -> Optional[Row]:
        return self._current

    # ------------------------------------------------------------------
    # Enumerator protocol
    # ------------------------------------------------------------------

    def move_next(self) -> bool:
        if self._state is EnumeratorState.EXHAUSTED:
            self._current = None
            return False
        if self._state is EnumeratorState.CREATED:
            self._fetch()

        if self.resolved.endpoint.response_shape is ResponseShape.ARRAY:
            if self._cursor >= len(self._root):
                return self._exhaust()
            node = self._root[self._cursor]
            self._cursor += 1
            self._current = convert_row(node, self.columns)
            return True

        if self._cursor == 0:
            self._cursor = 1
            self._current = convert_row(self._root, self.columns)
            return True
        return self._exhaust()

    def reset(self) -> None:
        raise UnsupportedOperationError("Row streams cannot be rewound.")

    def close(self) -> None:
        """Release the parsed document; later move_next calls yield nothing."""
        self._root = None
        self._exhaust()

    # ------------------------------------------------------------------
    # Iterator protocol
    # ------------------------------------------------------------------

    def __iter__(self) -> "RowEnumerator":
        return self

    def __next__(self) -> Row:
        if not self.move_next():
            raise StopIteration
        return self._current

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _exhaust(self) -> bool:
        self._state = EnumeratorState.EXHAUSTED
        self._current = None
        return False

    def _fetch(self) -> None:
        self._state = EnumeratorState.FETCHING
        with tracer.start_as_current_span(
            "enumerator.fetch",
            attributes={
                "enumerator.target": self.target,
                "enumerator.shape": self.resolved.endpoint.response_shape.value,
            },
        ) as span:
            try:
                content = self._cache.fetch(self.target)
                root = json.loads(content)
            except FetchError:
                self._exhaust()
                raise
            except ValueError as exc:
                self._exhaust()
                raise FetchError(
                    f"Response from {self.target} is not valid JSON: {exc}",
                    self.target,
                ) from exc

            if self.resolved.endpoint.response_shape is ResponseShape.ARRAY \
                    and not isinstance(root, list):
                self._exhaust()
                raise DecodeError(
                    f"Expected an array response from {self.target}, "
                    f"got {type(root).__name__}"
                )
            span.set_attribute(
                "enumerator.elements", len(root) if isinstance(root, list) else 1
            )

        self._root = root
        self._state = EnumeratorState.STREAMING
        logger.debug("Fetched %s", self.target)
