from __future__ import annotations
import json
import logging
from typing import Any, Dict, List, Optional

import yaml
from opentelemetry import trace
from pydantic import ValidationError

from apisql.catalog.models import (
    ApiCatalog,
    Endpoint,
    Entity,
    Parameter,
    PropertyDecl,
    ResponseShape,
)
from apisql.errors import SchemaResolutionError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("apisql.catalog")

OPENAPI3_REF_PREFIX = "#/components/schemas/"
SWAGGER2_REF_PREFIX = "#/definitions/"


def load_catalog(locator: str, cache: Any) -> ApiCatalog:
    """
    Fetch a declarative document through the fetch cache and parse it.

    Local paths are read directly by the cache; remote documents are
    downloaded once and served from the cache afterwards.
    """
    with tracer.start_as_current_span(
        "catalog.load", attributes={"catalog.locator": locator}
    ):
        content = cache.fetch(locator)
        catalog = parse_document(content, locator)
        logger.info(
            "Loaded document %s: %d entities, %d endpoints",
            locator, len(catalog.entities), len(catalog.endpoints),
        )
        return catalog


def parse_document(content: bytes, locator: str = "") -> ApiCatalog:
    """
    Parse OpenAPI 3 or Swagger 2 document bytes into an ApiCatalog.

    Raises:
        SchemaResolutionError: unparseable document or no entity map.
    """
    try:
        if locator.lower().endswith(".json"):
            doc = json.loads(content)
        else:
            doc = yaml.safe_load(content)
    except (ValueError, yaml.YAMLError) as exc:
        raise SchemaResolutionError(
            f"Could not parse document {locator or '<bytes>'}: {exc}"
        ) from exc

    if not isinstance(doc, dict):
        raise SchemaResolutionError(
            f"Document {locator or '<bytes>'} is not a mapping"
        )

    swagger2 = "swagger" in doc
    if swagger2:
        schemas = doc.get("definitions")
        shared_params = doc.get("parameters") or {}
        servers = _swagger2_servers(doc)
        ref_prefix = SWAGGER2_REF_PREFIX
    else:
        components = doc.get("components") or {}
        schemas = components.get("schemas")
        shared_params = components.get("parameters") or {}
        servers = [s["url"] for s in doc.get("servers") or [] if "url" in s]
        ref_prefix = OPENAPI3_REF_PREFIX

    if not isinstance(schemas, dict):
        raise SchemaResolutionError(
            f"Document {locator or '<bytes>'} declares no entity schemas"
        )

    try:
        return ApiCatalog(
            title=str((doc.get("info") or {}).get("title", "")),
            ref_prefix=ref_prefix,
            servers=servers,
            entities=_build_entities(schemas),
            endpoints=_build_endpoints(doc.get("paths") or {}, shared_params, swagger2),
        )
    except ValidationError as exc:
        raise SchemaResolutionError(
            f"Malformed document {locator or '<bytes>'}: {exc}"
        ) from exc


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _swagger2_servers(doc: Dict[str, Any]) -> List[str]:
    """
    Swagger 2 has a single host. Without schemes the document is in
    local-file mode and the base is host + basePath with no scheme prefix.
    """
    host = doc.get("host") or ""
    base_path = doc.get("basePath") or ""
    if not host and not base_path:
        return []
    schemes = doc.get("schemes")
    prefix = f"{schemes[0]}://" if schemes else ""
    return [f"{prefix}{host}{base_path}"]


def _build_entities(schemas: Dict[str, Any]) -> Dict[str, Entity]:
    entities: Dict[str, Entity] = {}
    for name, body in schemas.items():
        body = body or {}
        properties = {
            prop_name: PropertyDecl.model_validate(prop_body or {})
            for prop_name, prop_body in (body.get("properties") or {}).items()
        }
        entities[name] = Entity(
            name=name,
            type=body.get("type"),
            ref=body.get("$ref"),
            properties=properties,
        )
    return entities


def _build_endpoints(
    paths: Dict[str, Any],
    shared_params: Dict[str, Any],
    swagger2: bool,
) -> List[Endpoint]:
    endpoints: List[Endpoint] = []
    for path, item in paths.items():
        get = (item or {}).get("get")
        if not isinstance(get, dict):
            endpoints.append(Endpoint(path=path, has_read=False))
            continue

        raw_params = get.get("parameters")
        parameters: Optional[List[Parameter]] = None
        if raw_params is not None:
            parameters = [
                Parameter.model_validate(_deref_parameter(p, shared_params))
                for p in raw_params
            ]

        endpoints.append(Endpoint(
            path=path,
            has_read=True,
            parameters=parameters,
            response_shape=_response_shape(get, swagger2),
        ))
    return endpoints


def _deref_parameter(param: Dict[str, Any], shared: Dict[str, Any]) -> Dict[str, Any]:
    ref = param.get("$ref")
    if ref is None:
        return param
    target = shared.get(ref.rsplit("/", 1)[-1])
    if target is None:
        raise SchemaResolutionError(f"Unresolved parameter reference: {ref}")
    return target


def _response_shape(get: Dict[str, Any], swagger2: bool) -> ResponseShape:
    """Shape of the 200 response; YAML may key it as int or str."""
    responses = get.get("responses") or {}
    ok = responses.get("200") or responses.get(200) or {}
    if swagger2:
        schema = ok.get("schema") or {}
    else:
        content = ok.get("content") or {}
        media = content.get("application/json") or next(iter(content.values()), {})
        schema = (media or {}).get("schema") or {}
    if schema.get("type") == "array":
        return ResponseShape.ARRAY
    return ResponseShape.SINGLE
