from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from apisql.catalog.loader import load_catalog
from apisql.catalog.models import ApiCatalog
from apisql.engine.table import ApiTable

logger = logging.getLogger(__name__)


class ApiSchema:
    """All entities of one document, one ApiTable each."""

    def __init__(self, catalog: ApiCatalog, cache: Any) -> None:
        self.catalog = catalog
        self._cache = cache
        self._table_map: Optional[Dict[str, ApiTable]] = None

    @classmethod
    def from_locator(cls, locator: str, cache: Any) -> "ApiSchema":
        return cls(load_catalog(locator, cache), cache)

    @property
    def table_map(self) -> Dict[str, ApiTable]:
        if self._table_map is None:
            self._table_map = {
                name: ApiTable(self.catalog, name, self._cache)
                for name in self.catalog.entities
            }
        return self._table_map

    def table(self, name: str) -> Optional[ApiTable]:
        return self.table_map.get(name)
