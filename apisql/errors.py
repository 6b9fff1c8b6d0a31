from __future__ import annotations
from typing import Optional


class ApiSqlError(RuntimeError):
    """
    Base class for every query-level failure surfaced to the host.

    None of these are recovered locally. The engine converts them into an
    error payload and the gateway into an HTTP status via status_code.
    """

    status_code = 500


class SchemaResolutionError(ApiSqlError):
    """Unknown primitive type, unresolved reference, or reference chain."""

    status_code = 422


class ConfigurationError(ApiSqlError):
    """Document declares zero or several servers."""

    status_code = 500


class QueryShapeError(ApiSqlError):
    """Predicate is not a single equality or a conjunction of equalities."""

    status_code = 400


class ConstraintMappingError(ApiSqlError):
    status_code = 400

    def __init__(self, count: int) -> None:
        self.count = count
        if count == 0:
            message = "No filter maps to an API path."
        else:
            message = (
                f"Need exactly one filter that maps to a path, have {count}."
            )
        super().__init__(message)


class DecodeError(ApiSqlError):
    status_code = 502


class FetchError(ApiSqlError):
    status_code = 502

    def __init__(self, message: str, locator: Optional[str] = None) -> None:
        super().__init__(message)
        self.locator = locator


class UnsupportedOperationError(ApiSqlError):
    status_code = 405


class UnknownTableError(ApiSqlError):
    status_code = 404
