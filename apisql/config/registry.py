from __future__ import annotations
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import redis
import yaml
from pydantic import ValidationError

from apisql.cache.fetch_cache import FileFetchCache, HttpDownloader, MemoryFetchCache
from apisql.cache.redis_cache import RedisFetchCache
from apisql.config.models import CacheConfig, ModelConfig
from apisql.engine.schema import ApiSchema

logger = logging.getLogger(__name__)


def build_cache(cfg: CacheConfig) -> Any:
    downloader = HttpDownloader(timeout_s=cfg.timeout_s)
    if cfg.backend == "memory":
        return MemoryFetchCache(downloader=downloader)
    if cfg.backend == "redis":
        redis_url = os.environ.get("REDIS_URL", cfg.redis_url)
        client = redis.Redis.from_url(redis_url, decode_responses=False)
        return RedisFetchCache(client, ttl_ms=cfg.ttl_ms, downloader=downloader)
    return FileFetchCache(directory=cfg.directory, downloader=downloader)


class SchemaRegistry:
    """
    Loads a YAML model file and serves one ApiSchema per declared source.

    load_all() builds every schema before swapping them in, so a failing
    reload leaves the previous schemas in place.
    """

    def __init__(self, model_path: str, cache: Optional[Any] = None) -> None:
        self._model_path = Path(model_path)
        self._cache_override = cache
        self._schemas: Dict[str, ApiSchema] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load_all(self) -> None:
        """
        Raises:
            FileNotFoundError: if the model file does not exist.
            ValidationError / yaml.YAMLError: malformed model file.
            SchemaResolutionError: a referenced document cannot be parsed.
        """
        if not self._model_path.exists():
            raise FileNotFoundError(f"Model file not found: {self._model_path}")

        try:
            raw = yaml.safe_load(self._model_path.read_text()) or {}
            model = ModelConfig.model_validate(raw)
        except (ValidationError, yaml.YAMLError) as exc:
            logger.error("Failed to load model %s: %s", self._model_path, exc)
            raise

        cache = self._cache_override or build_cache(model.cache)
        new_schemas: Dict[str, ApiSchema] = {}
        for source in model.schemas:
            spec = source.spec
            if "://" not in spec and not Path(spec).is_absolute():
                # relative document paths are relative to the model file
                spec = str(self._model_path.parent / spec)
            new_schemas[source.name] = ApiSchema.from_locator(spec, cache)
            logger.info("Loaded schema %s from %s", source.name, spec)

        with self._lock:
            self._schemas = new_schemas

        logger.info("SchemaRegistry loaded %d schema(s).", len(new_schemas))

    def reload(self) -> None:
        logger.info("Reloading model from %s", self._model_path)
        self.load_all()

    def get(self, name: str) -> Optional[ApiSchema]:
        with self._lock:
            return self._schemas.get(name)

    def schemas(self) -> Dict[str, ApiSchema]:
        with self._lock:
            return dict(self._schemas)

    def all_schema_names(self) -> list[str]:
        with self._lock:
            return sorted(self._schemas.keys())

    def count(self) -> int:
        with self._lock:
            return len(self._schemas)
