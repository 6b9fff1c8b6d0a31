from __future__ import annotations
import asyncio
import hashlib
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Optional
from urllib.parse import quote

import aiohttp
from opentelemetry import trace

from apisql.errors import FetchError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("apisql.cache")

_REMOTE_SCHEME = re.compile(r"^(https?|wss?):", re.IGNORECASE)


def is_remote(locator: str) -> bool:
    """http(s):// and ws(s):// locators are remote; anything else is a path."""
    return _REMOTE_SCHEME.match(locator) is not None


class HttpDownloader:
    """
    Blocking GET over aiohttp. Callers run it from a thread with no
    running event loop (the gateway dispatches scans to a worker thread).

    No retries: a failed download is terminal for the scan.
    """

    def __init__(self, timeout_s: Optional[float] = None) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    def __call__(self, url: str) -> bytes:
        return asyncio.run(self._get(url))

    async def _get(self, url: str) -> bytes:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(url) as resp:
                    resp.raise_for_status()
                    return await resp.read()
        except aiohttp.ClientResponseError as exc:
            raise FetchError(f"HTTP {exc.status} fetching {url}", url) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FetchError(f"Could not fetch {url}: {exc}", url) from exc


class FetchCache(ABC):
    """
    fetch(locator) -> bytes, downloading each remote locator at most once.

    Subclasses decide where downloaded content lives. Local paths are never
    cached; they are read on every call.
    """

    def __init__(self, downloader: Optional[Callable[[str], bytes]] = None) -> None:
        self._download = downloader or HttpDownloader()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def fetch(self, locator: str) -> bytes:
        if not is_remote(locator):
            return self._read_local(locator)

        with tracer.start_as_current_span(
            "cache.fetch", attributes={"cache.locator": locator}
        ) as span:
            content = self._lookup(locator)
            if content is None:
                # concurrent misses on one locator wait for a single download
                with self._locator_lock(locator):
                    content = self._lookup(locator)
                    if content is None:
                        content = self._download_and_store(locator)
                        span.set_attribute("cache.hit", False)
                        span.set_attribute("cache.bytes", len(content))
                        return content
            span.set_attribute("cache.hit", True)
            logger.debug("Cache HIT %s", locator)
            return content

    def _download_and_store(self, locator: str) -> bytes:
        logger.info("Cache MISS %s, downloading", locator)
        content = self._download(locator)
        self._store(locator, content)
        return content

    def _locator_lock(self, locator: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(locator, threading.Lock())

    @staticmethod
    def _read_local(locator: str) -> bytes:
        try:
            return Path(locator).read_bytes()
        except OSError as exc:
            raise FetchError(f"Could not read {locator}: {exc}", locator) from exc

    @abstractmethod
    def _lookup(self, locator: str) -> Optional[bytes]:
        ...

    @abstractmethod
    def _store(self, locator: str, content: bytes) -> None:
        ...


class FileFetchCache(FetchCache):
    """
    Filesystem cache: one file per locator, named by the URL-encoded
    locator inside a (temporary by default) directory. Encoded names longer
    than MAX_NAME_LENGTH are truncated and suffixed with the locator's md5.
    """

    MAX_NAME_LENGTH = 200

    def __init__(
        self,
        directory: Optional[str] = None,
        downloader: Optional[Callable[[str], bytes]] = None,
    ) -> None:
        super().__init__(downloader)
        self.directory = Path(directory or tempfile.mkdtemp(prefix="apisql-"))
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, locator: str) -> Path:
        name = quote(locator, safe="")
        if len(name) > self.MAX_NAME_LENGTH:
            digest = hashlib.md5(locator.encode()).hexdigest()
            name = f"{name[:self.MAX_NAME_LENGTH - len(digest) - 1]}-{digest}"
        return self.directory / name

    def _lookup(self, locator: str) -> Optional[bytes]:
        path = self.path_for(locator)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise FetchError(f"Could not read cached {locator}: {exc}", locator) from exc

    def _store(self, locator: str, content: bytes) -> None:
        path = self.path_for(locator)
        # readers only ever see a complete file
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".part-")
            try:
                with os.fdopen(fd, "wb") as tmp:
                    tmp.write(content)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise FetchError(f"Could not cache {locator}: {exc}", locator) from exc


class MemoryFetchCache(FetchCache):
    """Process-local cache keyed by locator. Thread-safe."""

    def __init__(self, downloader: Optional[Callable[[str], bytes]] = None) -> None:
        super().__init__(downloader)
        self._entries: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def _lookup(self, locator: str) -> Optional[bytes]:
        with self._lock:
            return self._entries.get(locator)

    def _store(self, locator: str, content: bytes) -> None:
        with self._lock:
            self._entries[locator] = content

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
