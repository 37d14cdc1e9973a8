import sys
from pathlib import Path

import pytest


def _ensure_src_path():
    """Add project src/ to sys.path for imports when running tests without install."""
    here = Path(__file__).resolve()
    for parent in [here.parent, *here.parents]:
        src = parent / "src"
        if src.exists() and (parent / "pyproject.toml").exists():
            sys.path.insert(0, str(src))
            break


_ensure_src_path()

import httpx  # noqa: E402

from markupsync.backend.adapters.api import ApiError, MarkupApiClient  # noqa: E402
from markupsync.backend.main import STORE, app  # noqa: E402


class FakeResource:
    """Stand-in for one API resource; ``fail_times`` makes the next N creates fail."""

    def __init__(self, records=None, fail_times=0, list_error=None):
        self.records = list(records or [])
        self.fail_times = fail_times
        self.list_error = list_error
        self.create_calls = 0

    async def create(self, rec):
        self.create_calls += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ApiError(503, "HTTP_ERROR", "backend unavailable")
        saved = rec.model_copy(update={"id": f"rec-{len(self.records) + 1}"})
        self.records.append(saved)
        return saved

    async def list_by_study(self, study_uid, visible_only=False):
        if self.list_error is not None:
            raise self.list_error
        return [r for r in self.records if r.study_instance_uid == study_uid]


class FakeApi:
    def __init__(self, measurements=None, annotations=None):
        self.measurements = measurements or FakeResource()
        self.annotations = annotations or FakeResource()


@pytest.fixture(autouse=True)
def clean_store():
    STORE.clear()
    yield
    STORE.clear()


@pytest.fixture
def make_api():
    """Factory for a client wired to the in-process reference backend."""
    def _make():
        return MarkupApiClient(base_url="http://testserver", transport=httpx.ASGITransport(app=app))
    return _make


@pytest.fixture
def fake_api():
    return FakeApi


@pytest.fixture
def fake_resource():
    return FakeResource
