"""Shared pytest fixtures: fixture documents and canned API responses."""
import json
from pathlib import Path
from typing import Dict, List

import pytest
import yaml

from apisql.cache.fetch_cache import MemoryFetchCache
from apisql.engine.query_engine import QueryEngine
from apisql.engine.schema import ApiSchema
from apisql.errors import FetchError

FIXTURES = Path(__file__).parent / "fixtures"


class FixtureDownloader:
    """Serves responses.yaml as if it were the remote API; records every call."""

    def __init__(self, responses: Dict[str, object]) -> None:
        self._responses = responses
        self.calls: List[str] = []

    def __call__(self, url: str) -> bytes:
        self.calls.append(url)
        if url not in self._responses:
            raise FetchError(f"HTTP 404 fetching {url}", url)
        return json.dumps(self._responses[url]).encode()


@pytest.fixture
def responses() -> Dict[str, object]:
    return yaml.safe_load((FIXTURES / "responses.yaml").read_text())


@pytest.fixture
def downloader(responses) -> FixtureDownloader:
    return FixtureDownloader(responses)


@pytest.fixture
def cache(downloader) -> MemoryFetchCache:
    return MemoryFetchCache(downloader=downloader)


@pytest.fixture
def rainbow(cache) -> ApiSchema:
    return ApiSchema.from_locator(str(FIXTURES / "rainbow.yaml"), cache)


@pytest.fixture
def petstore(cache) -> ApiSchema:
    return ApiSchema.from_locator(str(FIXTURES / "petstore.yaml"), cache)


@pytest.fixture
def engine(rainbow, petstore) -> QueryEngine:
    return QueryEngine({"Test": rainbow, "PetStore": petstore})
