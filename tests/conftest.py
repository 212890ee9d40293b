"""
Pytest configuration and fixtures for PhotoBook Export tests.

The browser is never launched here: export tests use ``FakeRenderer``, which
returns real one-page PDFs built with pypdf, and the Playwright adapter is
tested against fake browser objects in ``test_renderer.py``.
"""

import os
import shutil
import tempfile

import pytest
from fastapi.testclient import TestClient
# Set test environment variables before importing the app
_DATA_DIR = tempfile.mkdtemp(prefix="photobook_test_data_")
os.environ["EXPORT_DB_PATH"] = os.path.join(_DATA_DIR, "photobook.db")
os.environ["EXPORT_OUTPUT_DIR"] = os.path.join(_DATA_DIR, "pdf_exports")
os.environ["EXPORT_STORAGE_BACKEND"] = "local"
os.environ["EXPORT_SETTLE_INTERVAL_MS"] = "0"

from photobook_export.database import AlbumDatabase, TaskDatabase  # noqa: E402
from photobook_export.export_manager import ExportManager  # noqa: E402
from photobook_export.main import app, get_export_manager  # noqa: E402
from photobook_export.models import Album, BackgroundStyle, Page  # noqa: E402
from photobook_export.storage import LocalArtifactStore  # noqa: E402

from fakes import OTHER_OWNER, OWNER, FakeRenderer, make_pdf, page_content  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Cleanup the directories created for the module-level app."""
    yield _DATA_DIR
    shutil.rmtree(_DATA_DIR, ignore_errors=True)


@pytest.fixture
def pdf_factory():
    return make_pdf


@pytest.fixture
def content_factory():
    return page_content


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "photobook.db"


@pytest.fixture
def tasks(db_path):
    return TaskDatabase(db_path)


@pytest.fixture
def albums(db_path):
    return AlbumDatabase(db_path)


@pytest.fixture
def artifacts(tmp_path):
    return LocalArtifactStore(tmp_path / "pdf_exports")


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def make_album(albums):
    """Save an album owned by ``OWNER`` with the given page contents."""

    def _make(album_id="album-1", contents=(), owner=OWNER, title="Summer Trip", background=None,
              use_page_backgrounds=False, page_backgrounds=None):
        page_backgrounds = page_backgrounds or {}
        album = Album(
            id=album_id,
            owner_id=owner,
            title=title,
            background=background or BackgroundStyle(type="solid", color="#FFFFFF"),
            use_page_backgrounds=use_page_backgrounds,
            pages=[
                Page(id=f"{album_id}-p{index}", content=content, background=page_backgrounds.get(index), position=index)
                for index, content in enumerate(contents, start=1)
            ],
        )
        albums.save_album(album)
        return album

    return _make


@pytest.fixture
def make_manager(tasks, albums, artifacts):
    managers = []

    def _make(renderer=None, **kwargs):
        manager = ExportManager(tasks, albums, artifacts, renderer or FakeRenderer(), **kwargs)
        managers.append(manager)
        return manager

    yield _make
    for manager in managers:
        manager.shutdown(wait=True)


@pytest.fixture
def manager(make_manager, fake_renderer):
    return make_manager(fake_renderer)


@pytest.fixture
def client(manager):
    """Create a test client whose export manager uses the fake renderer."""
    app.dependency_overrides[get_export_manager] = lambda: manager
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def owner_headers():
    return {"X-User-Id": OWNER}


@pytest.fixture
def other_headers():
    return {"X-User-Id": OTHER_OWNER}
