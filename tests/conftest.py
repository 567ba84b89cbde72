from pathlib import Path

import pytest

from jobs.disk_storage import ensure_dirs, new_incoming_path
from jobs.models import Job
from jobs.store import JobParams, JobStore

from tests.fakes import image_bytes


@pytest.fixture(autouse=True)
def media_root(settings, tmp_path):
    settings.MEDIA_ROOT = str(tmp_path / "media")
    settings.BASE_URL = "http://testserver"
    ensure_dirs()
    return Path(settings.MEDIA_ROOT)


@pytest.fixture
def store():
    return JobStore(lock_timeout=300)


@pytest.fixture
def staged_png(media_root):
    """Factory: write a PNG into incoming/ and return its path."""

    def make(size=(400, 300)):
        path = new_incoming_path(".png")
        Path(path).write_bytes(image_bytes("PNG", size=size))
        return path

    return make


@pytest.fixture
def upload_job(store, staged_png):
    """Factory: queued upload job backed by a real staged PNG."""

    def make(**params):
        return store.create(Job.SOURCE_UPLOAD, JobParams(**params), input_path=staged_png())

    return make
