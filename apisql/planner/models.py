from __future__ import annotations
from dataclasses import dataclass

from apisql.catalog.models import Endpoint


@dataclass(frozen=True)
class ResolvedQuery:
    """
    Result of constraint resolution for one scan.

    Lives only as long as the scan that produced it and is threaded through
    target building and decoding, never stored on the table.
    """

    endpoint: Endpoint
    column_index: int
    column_name: str
    literal_value: str

    @property
    def parameter_name(self) -> str:
        # matcher only accepts endpoints with exactly one parameter
        return self.endpoint.parameters[0].name
