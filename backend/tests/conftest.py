from __future__ import annotations
import httpx
import pytest

from portal.deps import get_asset_store, get_catalog, get_profiles, get_submission_log
from portal.main import app
from portal.services.assets import AssetStore

from fakes import FakeCatalog, FakeProfiles, FakeSubmissionLog, InMemoryBackend


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def store(backend) -> AssetStore:
    return AssetStore(backend, concurrency=4, timeout=2.0)


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def submission_log() -> FakeSubmissionLog:
    return FakeSubmissionLog()


@pytest.fixture
def profiles() -> FakeProfiles:
    return FakeProfiles()


@pytest.fixture
def api(store, catalog, submission_log, profiles):
    app.dependency_overrides[get_asset_store] = lambda: store
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_submission_log] = lambda: submission_log
    app.dependency_overrides[get_profiles] = lambda: profiles
    yield httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    app.dependency_overrides.clear()
