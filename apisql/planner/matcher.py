from __future__ import annotations
import logging
from typing import Optional, Sequence

from apisql.catalog.models import ApiCatalog, Endpoint

logger = logging.getLogger(__name__)


def parameter_alias(parameter_name: str, entity_name: str) -> str:
    """
    Strip a leading entity name from a parameter name.

    'petId' on entity 'Pet' becomes 'id'. Returns "" when the parameter
    does not start with the entity name or nothing is left after it.
    """
    if not parameter_name.lower().startswith(entity_name.lower()):
        return ""
    rest = parameter_name[len(entity_name):]
    if not rest:
        return ""
    return rest[0].lower() + rest[1:]


def match_path(
    catalog: ApiCatalog,
    entity_name: str,
    order: Sequence[str],
    column_index: int,
) -> Optional[Endpoint]:
    """
    First endpoint, in document order, whose single GET parameter maps to
    order[column_index]. Endpoints without a read operation or with any
    parameter count other than one are never matched.
    """
    column_name = order[column_index]
    for endpoint in catalog.endpoints:
        if not endpoint.has_read:
            continue
        if endpoint.parameters is None or len(endpoint.parameters) != 1:
            continue
        parameter_name = endpoint.parameters[0].name
        alias = parameter_alias(parameter_name, entity_name)
        if parameter_name == column_name or alias == column_name:
            logger.debug(
                "Column %s.%s maps to %s via parameter %s",
                entity_name, column_name, endpoint.path, parameter_name,
            )
            return endpoint
    return None
