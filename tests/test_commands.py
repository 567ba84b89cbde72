from io import StringIO
from pathlib import Path

import pytest
from django.core.management import call_command

from jobs.models import Job

from tests.fakes import age

pytestmark = pytest.mark.django_db


def test_worker_command_drains_queue(upload_job):
    jobs = [upload_job(width=50) for _ in range(2)]
    out = StringIO()

    call_command("worker", "--max-seconds", "30", stdout=out)

    assert "Worker finished. Processed: 2" in out.getvalue()
    for job in jobs:
        job.refresh_from_db()
        assert job.status == Job.STATUS_DONE
        assert Path(job.output_path).exists()


def test_worker_command_with_empty_queue():
    out = StringIO()

    call_command("worker", stdout=out)

    assert "Processed: 0" in out.getvalue()


def test_cleanup_old_purges_expired_jobs(upload_job):
    old = upload_job()
    fresh = upload_job()
    age(old, 7200)
    out = StringIO()

    call_command("cleanup_old", "--seconds", "3600", stdout=out)

    assert "Deleted 1 jobs older than 3600 seconds" in out.getvalue()
    assert not Job.objects.filter(id=old.id).exists()
    assert not Path(old.input_path).exists()
    assert Job.objects.filter(id=fresh.id).exists()


def test_cleanup_old_defaults_to_retention_setting(upload_job, settings):
    settings.JOB_RETENTION_SECONDS = 60
    job = upload_job()
    age(job, 120)
    out = StringIO()

    call_command("cleanup_old", stdout=out)
    call_command("cleanup_old", stdout=out)

    assert "Deleted 1 jobs older than 60 seconds" in out.getvalue()
    assert "Deleted 0 jobs older than 60 seconds" in out.getvalue()
