import json
import uuid
from pathlib import Path

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from jobs.models import Job
from jobs.processor import JobProcessor
from jobs.worker import process_job_now

from tests.fakes import FakeConverter, FakeFetcher, image_bytes

pytestmark = pytest.mark.django_db

PUBLIC_URL = "https://93.184.216.34/photos/cat.png"


def _png_upload(name="cat.png", size=(400, 300)):
    return SimpleUploadedFile(name, image_bytes("PNG", size=size), content_type="image/png")


def _post_json(client, path, payload):
    return client.post(path, data=json.dumps(payload), content_type="application/json")


def _finish(store, job_id):
    process_job_now(store, JobProcessor(store, converter=FakeConverter(), fetcher=FakeFetcher()), job_id)


# Create -------------------------------------------------------------------


def test_upload_creates_queued_job(client, media_root):
    resp = client.post(
        "/api/v1/jobs",
        {"file": _png_upload(), "quality": "70", "width": "200", "fit": "COVER", "filename": "my cat.png"},
        HTTP_X_API_KEY="k-1",
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["ok"] is True
    assert body["status"] == "queued"
    assert body["poll_url"] == f"http://testserver/api/v1/jobs/{body['job_id']}"
    assert body["result_url"] is None

    job = Job.objects.get(id=body["job_id"])
    assert job.source_type == Job.SOURCE_UPLOAD
    assert (job.quality, job.width, job.height, job.fit) == (70, 200, None, Job.FIT_COVER)
    assert job.strip_metadata is True
    assert job.filename == "my_cat.png"
    assert job.input_mime == "image/png"
    assert job.api_key_hash is not None
    assert Path(job.input_path).parent == media_root / "incoming"
    assert Path(job.input_path).exists()


def test_upload_lenient_params(client):
    resp = client.post(
        "/api/v1/jobs",
        {"file": _png_upload(), "quality": "500", "fit": "stretch", "strip_metadata": "maybe"},
    )

    assert resp.status_code == 201
    job = Job.objects.get(id=resp.json()["job_id"])
    assert job.quality == 100
    assert job.fit == Job.FIT_CONTAIN
    assert job.strip_metadata is True


def test_upload_keeps_metadata_when_asked(client):
    resp = client.post("/api/v1/jobs", {"file": _png_upload(), "strip_metadata": "false"})

    assert Job.objects.get(id=resp.json()["job_id"]).strip_metadata is False


def test_upload_without_file(client):
    resp = client.post("/api/v1/jobs", {"quality": "80"})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "MISSING_FILE"


def test_upload_rejects_non_image(client):
    fake = SimpleUploadedFile("x.png", b"<html>not an image</html>", content_type="image/png")

    resp = client.post("/api/v1/jobs", {"file": fake})

    assert resp.status_code == 415
    assert resp.json()["error"]["code"] == "INVALID_MIME"
    assert Job.objects.count() == 0


def test_upload_too_large(client, settings):
    settings.MAX_UPLOAD_BYTES = 100

    resp = client.post("/api/v1/jobs", {"file": _png_upload()})

    assert resp.status_code == 413
    assert resp.json()["error"]["code"] == "FILE_TOO_LARGE"
    assert Job.objects.count() == 0


def test_upload_invalid_width(client):
    resp = client.post("/api/v1/jobs", {"file": _png_upload(), "width": "0"})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_INPUT"
    assert "width" in resp.json()["error"]["details"]["fields"]


def test_url_job_is_queued(client):
    resp = _post_json(client, "/api/v1/jobs", {"source_url": PUBLIC_URL, "quality": 60})

    assert resp.status_code == 201
    job = Job.objects.get(id=resp.json()["job_id"])
    assert job.source_type == Job.SOURCE_URL
    assert job.source_url == PUBLIC_URL
    assert job.input_path is None
    assert job.quality == 60


@pytest.mark.parametrize(
    "url",
    [
        "http://127.0.0.1/admin.png",
        "http://localhost:8000/x.png",
        "http://169.254.169.254/latest/meta-data/",
        "http://10.1.2.3/x.png",
    ],
)
def test_internal_url_is_refused_without_creating_a_job(client, url):
    resp = _post_json(client, "/api/v1/jobs", {"source_url": url})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_URL"
    assert Job.objects.count() == 0


@pytest.mark.parametrize("payload", [{}, {"source_url": "not a url"}, {"source_url": "ftp://93.184.216.34/a.png"}])
def test_url_job_needs_valid_source_url(client, payload):
    resp = _post_json(client, "/api/v1/jobs", payload)

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_INPUT"
    assert Job.objects.count() == 0


def test_process_on_create(client, settings):
    settings.WEBP_PROCESS_ON_CREATE = True

    resp = client.post("/api/v1/jobs", {"file": _png_upload(), "width": "100"})

    body = resp.json()
    assert resp.status_code == 201
    assert body["status"] == "done"
    assert body["result_url"].startswith(f"http://testserver/api/v1/jobs/{body['job_id']}/download?exp=")


def test_only_post_is_allowed(client):
    assert client.get("/api/v1/jobs").status_code == 405


# Status / download ----------------------------------------------------------


def test_status_of_unknown_job(client):
    resp = client.get(f"/api/v1/jobs/{uuid.uuid4()}")

    assert resp.status_code == 404
    assert resp.json() == {"ok": False, "error": {"code": "JOB_NOT_FOUND", "message": "Job not found"}}


def test_status_of_queued_job(client):
    job_id = client.post("/api/v1/jobs", {"file": _png_upload()}).json()["job_id"]

    body = client.get(f"/api/v1/jobs/{job_id}").json()

    assert body["ok"] is True
    assert body["status"] == "queued"
    assert body["progress"] == 0
    assert body["result_url"] is None
    assert "output_path" not in body


def test_done_job_can_be_downloaded(client, store):
    job_id = client.post("/api/v1/jobs", {"file": _png_upload(), "filename": "cat.png"}).json()["job_id"]
    _finish(store, job_id)

    body = client.get(f"/api/v1/jobs/{job_id}").json()
    assert body["status"] == "done"
    assert body["progress"] == 100
    assert body["meta"]["output_size"] > 0

    resp = client.get(body["result_url"].replace("http://testserver", ""))
    assert resp.status_code == 200
    assert resp["Content-Type"] == "image/webp"
    assert 'filename="cat.png.webp"' in resp["Content-Disposition"]
    assert b"".join(resp.streaming_content).startswith(b"RIFF")


def test_download_rejects_bad_signature(client, store):
    job_id = client.post("/api/v1/jobs", {"file": _png_upload()}).json()["job_id"]
    _finish(store, job_id)
    url = client.get(f"/api/v1/jobs/{job_id}").json()["result_url"]
    exp = url.split("exp=")[1].split("&")[0]

    resp = client.get(f"/api/v1/jobs/{job_id}/download", {"exp": exp, "sig": "0" * 64})
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "INVALID_SIGNATURE"

    resp = client.get(f"/api/v1/jobs/{job_id}/download", {"exp": "soon", "sig": "x"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_EXP"


def test_download_before_done(client):
    job_id = client.post("/api/v1/jobs", {"file": _png_upload()}).json()["job_id"]

    resp = client.get(f"/api/v1/jobs/{job_id}/download", {"exp": "1", "sig": "x"})

    assert resp.status_code == 404
    assert resp.json()["error"] == {
        "code": "FILE_NOT_READY",
        "message": "File not ready yet",
        "details": {"job_status": "queued"},
    }


def test_download_of_purged_file(client, store):
    job_id = client.post("/api/v1/jobs", {"file": _png_upload()}).json()["job_id"]
    _finish(store, job_id)
    url = client.get(f"/api/v1/jobs/{job_id}").json()["result_url"]
    Path(Job.objects.get(id=job_id).output_path).unlink()

    resp = client.get(url.replace("http://testserver", ""))

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "FILE_NOT_FOUND"


# Synchronous conversion -----------------------------------------------------


def test_convert_now_returns_webp_body_when_accepted(client, media_root):
    resp = client.post(
        "/api/v1/convert",
        {"file": _png_upload(), "width": "100", "filename": "cat.png"},
        HTTP_ACCEPT="image/avif,image/webp,*/*",
    )

    assert resp.status_code == 200
    assert resp["Content-Type"] == "image/webp"
    assert resp.content[:4] == b"RIFF" and resp.content[8:12] == b"WEBP"
    assert 'filename="cat.png.webp"' in resp["Content-Disposition"]
    assert int(resp["X-Conversion-Time-Ms"]) >= 0
    assert list((media_root / "incoming").iterdir()) == []
    assert list((media_root / "output").iterdir()) == []
    assert Job.objects.count() == 0


def test_convert_now_returns_signed_url_otherwise(client, media_root):
    resp = client.post("/api/v1/convert", {"file": _png_upload(), "width": "100"}, HTTP_ACCEPT="application/json")

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["output_size"] > 0
    assert body["result_url"].startswith("http://testserver/api/v1/results/")
    assert list((media_root / "incoming").iterdir()) == []
    kept = list((media_root / "output").iterdir())
    assert len(kept) == 1 and kept[0].stat().st_size == body["output_size"]
    assert Job.objects.count() == 0

    download = client.get(body["result_url"].replace("http://testserver", ""))
    assert download.status_code == 200
    assert download["Content-Type"] == "image/webp"
    assert b"".join(download.streaming_content).startswith(b"RIFF")


def test_sync_result_download_checks_signature(client):
    body = client.post("/api/v1/convert", {"file": _png_upload()}).json()
    path, query = body["result_url"].replace("http://testserver", "").split("?")
    exp = query.split("exp=")[1].split("&")[0]

    resp = client.get(path, {"exp": exp, "sig": "0" * 64})
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "INVALID_SIGNATURE"

    resp = client.get(f"/api/v1/results/{uuid.uuid4()}", {"exp": exp, "sig": "0" * 64})
    assert resp.status_code == 403


def test_convert_now_refuses_internal_url(client):
    resp = _post_json(client, "/api/v1/convert", {"source_url": "http://127.0.0.1/x.png"})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_URL"


def test_convert_now_reports_conversion_failure(client, media_root):
    broken = SimpleUploadedFile("x.png", b"\x89PNG\r\n\x1a\n" + b"\x00" * 64, content_type="image/png")

    resp = client.post("/api/v1/convert", {"file": broken})

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "CONVERSION_FAILED"
    assert list((media_root / "incoming").iterdir()) == []
    assert list((media_root / "output").iterdir()) == []


# Health ---------------------------------------------------------------------


@pytest.mark.parametrize("path", ["/healthz", "/api/v1/health"])
def test_health(client, path):
    body = client.get(path).json()

    assert body["status"] == "ok"
    assert body["version"] == "1.0.0"
    assert body["capabilities"]["webp"] is True
