import pytest
from fastapi.testclient import TestClient
from main import app
from app.core.config import settings
from app.core.security import create_access_token
from app.services.chunk_store import ChunkStore
from fakes import FakeClock


@pytest.fixture(autouse=True)
def storage_dirs(tmp_path, monkeypatch):
    """Point chunk and media storage at a fresh directory for every test."""
    temp_dir = tmp_path / "temp"
    media_dir = tmp_path / "media"
    temp_dir.mkdir()
    media_dir.mkdir()
    monkeypatch.setattr(settings, "TEMP_DIR", temp_dir)
    monkeypatch.setattr(settings, "MEDIA_DIR", media_dir)
    return temp_dir, media_dir

@pytest.fixture
def test_client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)

@pytest.fixture
def admin_token():
    """Create an admin JWT token."""
    return create_access_token(data={"sub": settings.ADMIN_USERNAME})

@pytest.fixture
def chunk_store():
    return ChunkStore(settings.TEMP_DIR)


@pytest.fixture
def clock():
    return FakeClock()
