# tests/conftest.py

import os
from pathlib import Path
from typing import Annotated, Optional

import pytest
from fastapi import Header, HTTPException
from fastapi.testclient import TestClient

from chunked_upload.api import get_current_user_id
from chunked_upload.core import Settings, build_engine
from chunked_upload.main import create_app
from chunked_upload.services import (
    ChunkUploadCoordinator,
    InMemoryUploadSessionRegistry,
    MergeEngine,
    PartStore,
    SqlUploadSessionRegistry,
)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every directory and database into tmp_path."""
    s = Settings()
    s.TEMP_UPLOAD_DIR = str(tmp_path / "chunks")
    s.PUBLIC_UPLOAD_DIR = str(tmp_path / "public")
    s.PUBLIC_URL_PREFIX = "/uploads/files"
    s.REGISTRY_BACKEND = "memory"
    s.DATABASE_URL = f"sqlite:///{tmp_path / 'registry.db'}"
    s.MAX_CHUNK_SIZE = 8 * 1024 * 1024
    s.SESSION_TTL_SECONDS = 3600
    s.REAPER_ENABLED = False
    s.SESSION_SECRET = "test-secret"
    return s


@pytest.fixture()
def part_store(settings: Settings) -> PartStore:
    return PartStore(settings.TEMP_UPLOAD_DIR)


@pytest.fixture(params=["memory", "sql"])
def registry(request, part_store: PartStore, settings: Settings):
    """Each registry test runs against both backends."""
    if request.param == "memory":
        yield InMemoryUploadSessionRegistry(part_store)
        return
    engine = build_engine(settings.DATABASE_URL)
    yield SqlUploadSessionRegistry(part_store, engine)
    engine.dispose()


@pytest.fixture()
def coordinator(registry, part_store: PartStore, settings: Settings) -> ChunkUploadCoordinator:
    return ChunkUploadCoordinator(registry, part_store, settings.MAX_CHUNK_SIZE)


@pytest.fixture()
def merge_engine(registry, part_store: PartStore, settings: Settings) -> MergeEngine:
    return MergeEngine(registry, part_store, settings.PUBLIC_UPLOAD_DIR, settings.PUBLIC_URL_PREFIX)


def user_from_header(x_user_id: Annotated[Optional[str], Header()] = None) -> str:
    """Test stand-in for the cookie session: the caller names itself."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required to upload files")
    return x_user_id


@pytest.fixture()
def app(settings: Settings):
    application = create_app(settings)
    application.dependency_overrides[get_current_user_id] = user_from_header
    return application


@pytest.fixture()
def client_for(app):
    """Factory for TestClients acting as a given user."""

    def make(user_id: Optional[str]) -> TestClient:
        client = TestClient(app)
        if user_id is not None:
            client.headers.update({"X-User-Id": user_id})
        return client

    return make


@pytest.fixture()
def alice(client_for) -> TestClient:
    return client_for("alice")


@pytest.fixture()
def bob(client_for) -> TestClient:
    return client_for("bob")


@pytest.fixture()
def source_file(tmp_path: Path):
    """Factory writing a random file of the given size."""

    def make(size: int, name: str = "a.bin") -> Path:
        path = tmp_path / "src" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(os.urandom(size))
        return path

    return make
