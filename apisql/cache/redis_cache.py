from __future__ import annotations
import hashlib
import logging
import time
from typing import Callable, Optional

import msgpack
import redis

from apisql.cache.fetch_cache import FetchCache

logger = logging.getLogger(__name__)


class RedisFetchCache(FetchCache):
    """
    Shared fetch cache backed by Redis, for several processes serving the
    same documents.

    Key schema:
        apisql:fetch:{md5(locator)}

    Value: MessagePack-serialized dict:
        {"locator": str, "content": bytes, "fetched_at": float}

    ttl_ms == 0 keeps entries until evicted by Redis.
    """

    KEY_PREFIX = "apisql:fetch"

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl_ms: int = 0,
        downloader: Optional[Callable[[str], bytes]] = None,
    ) -> None:
        super().__init__(downloader)
        self._redis = redis_client
        self._ttl_ms = ttl_ms

    def _build_key(self, locator: str) -> str:
        digest = hashlib.md5(locator.encode()).hexdigest()
        return f"{self.KEY_PREFIX}:{digest}"

    def _lookup(self, locator: str) -> Optional[bytes]:
        key = self._build_key(locator)
        raw = self._redis.get(key)
        if raw is None:
            return None
        try:
            entry = msgpack.unpackb(raw, raw=False)
        except (msgpack.UnpackException, ValueError) as exc:
            logger.warning("Cache deserialization failed for %s: %s", key, exc)
            return None
        if entry.get("locator") != locator:
            # md5 collision; treat as a miss and overwrite
            return None
        return entry["content"]

    def _store(self, locator: str, content: bytes) -> None:
        key = self._build_key(locator)
        payload = {
            "locator": locator,
            "content": content,
            "fetched_at": time.time(),
        }
        packed = msgpack.packb(payload, use_bin_type=True)
        if self._ttl_ms:
            self._redis.set(key, packed, px=self._ttl_ms)
        else:
            self._redis.set(key, packed)
        logger.debug("Cache PUT %s (%d bytes)", key, len(content))

    def ping(self) -> bool:
        """Health check: True if Redis is reachable."""
        try:
            return bool(self._redis.ping())
        except redis.RedisError:
            return False
