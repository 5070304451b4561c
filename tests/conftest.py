"""
Pytest configuration and fixtures for Scrapbook Press Backend tests.
"""

import io
import os
import shutil
import tempfile

import pytest
from fastapi.testclient import TestClient
from reportlab.pdfgen import canvas

# Set test environment variables before importing the app
_ROOT = tempfile.mkdtemp(prefix="scrapbook_test_")
os.environ["SCRAPBOOK_STORAGE_BACKEND"] = "local"
os.environ["SCRAPBOOK_ARTIFACT_DIR"] = os.path.join(_ROOT, "artifacts")
os.environ["SCRAPBOOK_DB_PATH"] = os.path.join(_ROOT, "jobs.db")
os.environ["SCRAPBOOK_SIGNING_SECRET"] = "test-signing-secret"
os.environ["SCRAPBOOK_PUBLIC_BASE_URL"] = "http://testserver"

from scrapbook_press_backend.artifact_store import ArtifactStore  # noqa: E402
from scrapbook_press_backend.database import JobDatabase  # noqa: E402
from scrapbook_press_backend.job_manager import JobManager  # noqa: E402
from scrapbook_press_backend.main import app, get_job_manager  # noqa: E402
from scrapbook_press_backend.pages import DatabasePageProvider, LayoutItem, PageVersion  # noqa: E402
from scrapbook_press_backend.renderer import PageRenderer  # noqa: E402
from scrapbook_press_backend.storage import LocalObjectStorage  # noqa: E402

COLLECTION_ID = "fam-smith"


def make_pdf(pages: int = 1, width_pt: float = 594.0, height_pt: float = 594.0) -> bytes:
    """Build a small valid PDF with the given page count and size."""
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=(width_pt, height_pt))
    for index in range(pages):
        c.drawString(72, 72, f"page {index + 1}")
        c.showPage()
    c.save()
    return buffer.getvalue()


class FakeRasterizer:
    """
    Stand-in for the render service.

    Args:
        failures: page_id -> number of calls that fail before success;
            a negative count fails forever
    """

    def __init__(self, failures=None):
        self.failures = dict(failures or {})
        self.calls = []

    def rasterize(self, collection_id, page_id, layout):
        self.calls.append(page_id)
        remaining = self.failures.get(page_id, 0)
        if remaining != 0:
            self.failures[page_id] = remaining - 1 if remaining > 0 else remaining
            raise RuntimeError(f"render timeout for {page_id}")
        return make_pdf(1)

    def calls_for(self, page_id):
        return self.calls.count(page_id)


class QueueDispatcher:
    """Collects dispatched steps so tests can run them one at a time."""

    def __init__(self):
        self.pending = []

    def __call__(self, fn, *args):
        self.pending.append((fn, args))

    def run_next(self):
        fn, args = self.pending.pop(0)
        fn(*args)

    def run_all(self):
        while self.pending:
            self.run_next()


def run_inline(fn, *args):
    fn(*args)


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Cleanup the app's directories after all tests."""
    yield _ROOT
    shutil.rmtree(_ROOT, ignore_errors=True)


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(tmp_path / "artifacts", "http://testserver", "test-signing-secret")


@pytest.fixture
def store(storage):
    return ArtifactStore(storage)


@pytest.fixture
def database(tmp_path):
    return JobDatabase(tmp_path / "jobs.db")


@pytest.fixture
def page_provider(database):
    return DatabasePageProvider(database)


@pytest.fixture
def rasterizer():
    return FakeRasterizer()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def renderer(store, rasterizer, sleeps):
    return PageRenderer(store, rasterizer, sleep=sleeps.append)


@pytest.fixture
def manager(database, store, renderer, page_provider):
    """JobManager that runs every pipeline step inline."""
    return JobManager(
        database=database,
        store=store,
        renderer=renderer,
        page_provider=page_provider,
        dispatcher=run_inline,
    )


@pytest.fixture
def add_pages(page_provider):
    """Create locked pages p1..pN with order N..1 (p1 first in the book)."""

    def _add(count, collection_id=COLLECTION_ID, marker="v1", items=None):
        pages = []
        for index in range(1, count + 1):
            page = PageVersion(
                page_id=f"p{index}",
                collection_id=collection_id,
                updated_marker=marker,
                title=f"Page {index}",
                order=count - index + 1,
                locked=True,
                items=[LayoutItem(**item) for item in (items or {}).get(f"p{index}", [])],
            )
            page_provider.upsert_page(page)
            pages.append(page)
        return pages

    return _add


@pytest.fixture
def client(manager):
    """Create a test client whose endpoints use the test JobManager."""
    app.dependency_overrides[get_job_manager] = lambda: manager
    yield TestClient(app)
    app.dependency_overrides.clear()
