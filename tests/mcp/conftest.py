from __future__ import annotations

import pytest

from toolmux.mcp import MetadataCache, reset_metadata_cache

from fakes import FakeFactory


@pytest.fixture(autouse=True)
def _fresh_global_cache():
    reset_metadata_cache()
    yield
    reset_metadata_cache()


@pytest.fixture
def cache() -> MetadataCache:
    return MetadataCache()


@pytest.fixture
def fake_factory() -> type[FakeFactory]:
    return FakeFactory
