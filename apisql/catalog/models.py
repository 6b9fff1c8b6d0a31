from __future__ import annotations
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PropertyDecl(BaseModel):
    """
    One property of an entity: either a direct primitive type name or a
    reference to another entity (never both in a well-formed document).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Optional[str] = None
    ref: Optional[str] = Field(default=None, alias="$ref")
    format: Optional[str] = None


class Entity(BaseModel):
    """A named record type from the document's entity map."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    type: Optional[str] = None
    ref: Optional[str] = Field(default=None, alias="$ref")
    # Document order is kept here; column order is derived by sorting.
    properties: Dict[str, PropertyDecl] = Field(default_factory=dict)


class ResponseShape(str, Enum):
    ARRAY = "array"      # array of entity
    SINGLE = "single"    # a single entity object


class Parameter(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    location: str = Field(default="query", alias="in")


class Endpoint(BaseModel):
    """
    A declared remote operation.

    has_read is False when the path item has no GET operation.
    parameters is None when the GET operation declares no parameter list.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    has_read: bool = True
    parameters: Optional[List[Parameter]] = None
    response_shape: ResponseShape = ResponseShape.SINGLE


class ApiCatalog(BaseModel):
    """
    Parsed, immutable view of a declarative interface document.

    endpoints preserves document order so first-match-wins lookups are
    reproducible across runs.
    """

    model_config = ConfigDict(frozen=True)

    title: str = ""
    ref_prefix: str = "#/components/schemas/"
    servers: List[str] = Field(default_factory=list)
    entities: Dict[str, Entity] = Field(default_factory=dict)
    endpoints: List[Endpoint] = Field(default_factory=list)

    def entity(self, name: str) -> Optional[Entity]:
        return self.entities.get(name)
