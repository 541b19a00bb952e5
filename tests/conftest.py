"""Shared pytest fixtures for all tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest

from vault.blob_store import LocalBlobStore
from vault.database import init_database
from vault.services.content_service import ContentService
from vault.types import StagedUpload


class FakeClock:
    """Controllable clock handed to services in place of utc_now."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def test_db(tmp_path, monkeypatch) -> Generator[Path, None, None]:
    """
    Create a temporary test database for each test.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setattr("vault.database.DATABASE_PATH", str(db_path))
    monkeypatch.setattr("vault.config.DATABASE_PATH", str(db_path))
    init_database()
    yield db_path


@pytest.fixture
def staging_dir(tmp_path, monkeypatch) -> Path:
    """
    Point upload staging at a temporary directory.
    """
    path = tmp_path / "staging"
    path.mkdir()
    monkeypatch.setattr("vault.config.STAGING_DIR", str(path))
    return path


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def service(test_db, blob_store, clock) -> ContentService:
    return ContentService(blob_store, clock=clock, file_view_consumes_quota=False)


@pytest.fixture
def make_upload(staging_dir):
    """
    Factory staging a file the way the upload route does.

    Returns:
        Callable(name, data) -> StagedUpload
    """
    counter = {"n": 0}

    def _make(name: str = "report.pdf", data: bytes = b"quarterly numbers") -> StagedUpload:
        counter["n"] += 1
        path = staging_dir / f"staged-{counter['n']}.upload"
        path.write_bytes(data)
        return StagedUpload(path=path, original_name=name, size=len(data))

    return _make
