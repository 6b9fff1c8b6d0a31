from __future__ import annotations
import logging

from apisql.catalog.models import ApiCatalog
from apisql.errors import ConfigurationError
from apisql.planner.models import ResolvedQuery

logger = logging.getLogger(__name__)


def base_url(catalog: ApiCatalog) -> str:
    """
    Raises:
        ConfigurationError: the document declares zero or several servers.
    """
    if len(catalog.servers) != 1:
        raise ConfigurationError(
            f"Document must declare exactly one server, found {len(catalog.servers)}"
        )
    return catalog.servers[0]


def build_target(catalog: ApiCatalog, resolved: ResolvedQuery) -> str:
    """
    Concrete fetch target for a resolved query.

    A '{' in base + path means the parameter is a path placeholder and
    '{<param>}' is replaced by the literal as-is. Otherwise the column is
    appended as a query parameter.
    """
    target = base_url(catalog) + resolved.endpoint.path
    if "{" in target:
        target = target.replace(
            f"{{{resolved.parameter_name}}}", resolved.literal_value
        )
    else:
        target += f"?{resolved.column_name}={resolved.literal_value}"
    logger.debug("Fetch target: %s", target)
    return target
