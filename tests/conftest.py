"""Pytest configuration and shared fixtures."""

import asyncio

import pytest
import pytest_asyncio

from areacms.db.metadata_store import MetadataStore
from support import FakeBlobStore, make_image, make_pipeline, seed_languages


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'areacms.db'}"


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest_asyncio.fixture
async def metadata_store(database_url):
    """Initialized store with en/fr for PROJECT_ID and en for OTHER_PROJECT_ID."""
    store = MetadataStore(database_url)
    await store.init()
    await seed_languages(store)
    yield store
    await store.close()


@pytest.fixture
def sync_metadata_store(database_url):
    """Same as ``metadata_store`` for synchronous tests driving a TestClient."""
    store = MetadataStore(database_url)

    async def _setup():
        await store.init()
        await seed_languages(store)

    asyncio.run(_setup())
    yield store
    asyncio.run(store.close())


@pytest.fixture
def pipeline(blob_store, metadata_store):
    return make_pipeline(blob_store, metadata_store)


@pytest.fixture
def png_bytes():
    """2000x1500 PNG."""
    return make_image(2000, 1500, "PNG")
