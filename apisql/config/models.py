from __future__ import annotations
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class CacheConfig(BaseModel):
    """Where fetched documents and responses are kept."""

    backend: Literal["file", "memory", "redis"] = "file"
    directory: Optional[str] = None      # file backend; temp dir when unset
    redis_url: str = "redis://localhost:6379/0"
    ttl_ms: int = 0                      # redis backend; 0 = no expiry
    timeout_s: Optional[float] = None    # per-download total timeout


class SchemaSource(BaseModel):
    """One declarative document mounted as a schema named `name`."""

    name: str
    spec: str    # local path or http(s) URL of the OpenAPI / Swagger document


class ModelConfig(BaseModel):
    """
    Complete, validated model file.

    Example:
        schemas:
          - name: PetStore
            spec: https://petstore.swagger.io/v2/swagger.json
        cache:
          backend: memory
    """

    schemas: List[SchemaSource] = Field(default_factory=list)
    cache: CacheConfig = Field(default_factory=CacheConfig)
