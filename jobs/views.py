import json
import logging
import os
import time
import uuid

from django.conf import settings
from django.http import FileResponse, HttpResponse, JsonResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from webp_api import __version__

from .converter import ImageConverter
from .disk_storage import (
    ensure_dirs,
    new_incoming_path,
    output_path,
    remove_file,
    sign_download,
    verify_download,
)
from .fetch import default_fetcher
from .models import Job
from .processor import JobProcessor
from .security import (
    api_key_from_request,
    client_ip,
    ext_for_mime,
    is_safe_url,
    is_valid_image_mime,
    output_filename,
    sniff_file_mime,
    sniff_mime,
)
from .serializers import JobParamsSerializer, UrlJobSerializer
from .store import JobStore
from .worker import process_job_now

logger = logging.getLogger(__name__)


def _error(code: str, message: str, status: int, **details) -> JsonResponse:
    err = {"code": code, "message": message}
    if details:
        err["details"] = details
    return JsonResponse({"ok": False, "error": err}, status=status)


def _store() -> JobStore:
    return JobStore(lock_timeout=settings.JOB_LOCK_TIMEOUT)


def _base_url(request) -> str:
    return (settings.BASE_URL or request.build_absolute_uri("/")).rstrip("/")


def _is_multipart(request) -> bool:
    return (request.content_type or "").startswith("multipart/form-data")


def _json_body(request):
    try:
        return json.loads(request.body.decode("utf-8") or "{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}


def _stage_upload(f):
    """Save an uploaded image under incoming/. Returns (path, mime, size) or an error response."""
    if f.size and int(f.size) > settings.MAX_UPLOAD_BYTES:
        return _error("FILE_TOO_LARGE", f"File exceeds maximum size of {settings.MAX_UPLOAD_BYTES} bytes", 413)

    head = f.read(32)
    f.seek(0)
    mime = sniff_mime(head)
    if not is_valid_image_mime(mime):
        return _error("INVALID_MIME", "File must be an image (jpg, png, gif, webp, avif)", 415)

    dst = new_incoming_path(ext_for_mime(mime))
    with open(dst, "wb") as out:
        for chunk in f.chunks():
            out.write(chunk)
    return dst, mime, int(f.size or 0)


def _result_url(request, job: Job) -> str | None:
    if job.status != Job.STATUS_DONE or not job.output_path:
        return None
    exp = int(time.time()) + settings.SIGNED_URL_EXPIRES
    sig = sign_download(str(job.id), job.output_path, exp)
    return f"{_base_url(request)}/api/v1/jobs/{job.id}/download?exp={exp}&sig={sig}"


def healthz(request):
    return JsonResponse(
        {
            "status": "ok",
            "timestamp": timezone.now().isoformat(),
            "version": __version__,
            "capabilities": ImageConverter.capabilities(),
        }
    )


@csrf_exempt
@require_http_methods(["POST"])
def create_job(request):
    """Queue a conversion from an uploaded file (multipart) or a remote URL (JSON)."""
    ensure_dirs()
    store = _store()
    provenance = {"client_ip": client_ip(request), "api_key": api_key_from_request(request)}

    if _is_multipart(request):
        f = request.FILES.get("file")
        if not f:
            return _error("MISSING_FILE", "No file uploaded or upload error", 400)

        ser = JobParamsSerializer(data=request.POST)
        if not ser.is_valid():
            return _error("INVALID_INPUT", "Invalid conversion parameters", 400, fields=ser.errors)

        staged = _stage_upload(f)
        if isinstance(staged, HttpResponse):
            return staged
        path, mime, size = staged

        job = store.create(
            Job.SOURCE_UPLOAD,
            ser.to_params(),
            input_path=path,
            input_mime=mime,
            input_size=size,
            **provenance,
        )
    else:
        ser = UrlJobSerializer(data=_json_body(request))
        if not ser.is_valid():
            if "source_url" in ser.errors:
                return _error("INVALID_INPUT", "Missing or malformed source_url in JSON payload", 400)
            return _error("INVALID_INPUT", "Invalid conversion parameters", 400, fields=ser.errors)

        url = ser.validated_data["source_url"]
        if not is_safe_url(url):
            return _error("INVALID_URL", "Invalid or unsafe URL", 400)

        job = store.create(Job.SOURCE_URL, ser.to_params(), source_url=url, **provenance)

    if settings.WEBP_PROCESS_ON_CREATE:
        process_job_now(store, JobProcessor(store), job.id)
        job.refresh_from_db()

    return JsonResponse(
        {
            "ok": True,
            "job_id": str(job.id),
            "status": job.status,
            "poll_url": f"{_base_url(request)}/api/v1/jobs/{job.id}",
            "result_url": _result_url(request, job),
        },
        status=201,
    )


@require_http_methods(["GET"])
def job_status(request, job_id):
    job = _store().get(job_id)
    if not job:
        return _error("JOB_NOT_FOUND", "Job not found", 404)

    data = job.as_dict()
    data.pop("output_path", None)
    data["result_url"] = _result_url(request, job)
    return JsonResponse({"ok": True, **data})


@require_http_methods(["GET"])
def download_output(request, job_id):
    job = _store().get(job_id)
    if not job:
        return _error("JOB_NOT_FOUND", "Job not found", 404)
    if job.status != Job.STATUS_DONE or not job.output_path:
        return _error("FILE_NOT_READY", "File not ready yet", 404, job_status=job.status)

    try:
        exp_i = int(request.GET.get("exp"))
    except (TypeError, ValueError):
        return _error("INVALID_EXP", "Invalid exp", 400)

    if not verify_download(str(job.id), job.output_path, exp_i, request.GET.get("sig") or ""):
        return _error("INVALID_SIGNATURE", "Invalid signature", 403)

    try:
        fh = open(job.output_path, "rb")
    except FileNotFoundError:
        logger.error("File not found: %s for job %s", job.output_path, job.id)
        return _error("FILE_NOT_FOUND", "File not found on server", 404)

    resp = FileResponse(fh, filename=output_filename(job.filename, str(job.id)), content_type="image/webp")
    resp["Cache-Control"] = "public, max-age=31536000, immutable"
    return resp


@csrf_exempt
@require_http_methods(["POST"])
def convert_now(request):
    """Synchronous conversion that bypasses the queue.

    Returns the WebP body when the client accepts image/webp, otherwise keeps
    the file and returns a signed result_url.
    """
    ensure_dirs()

    if _is_multipart(request):
        f = request.FILES.get("file")
        if not f:
            return _error("MISSING_FILE", "No file uploaded", 400)
        ser = JobParamsSerializer(data=request.POST)
        if not ser.is_valid():
            return _error("INVALID_INPUT", "Invalid conversion parameters", 400, fields=ser.errors)
        staged = _stage_upload(f)
        if isinstance(staged, HttpResponse):
            return staged
        input_path = staged[0]
    else:
        ser = UrlJobSerializer(data=_json_body(request))
        if not ser.is_valid():
            return _error("INVALID_INPUT", "Missing source_url or invalid parameters", 400, fields=ser.errors)
        url = ser.validated_data["source_url"]
        if not is_safe_url(url):
            return _error("INVALID_URL", "Invalid or unsafe URL", 400)

        fetched = default_fetcher().fetch(url, new_incoming_path(".tmp"))
        if not fetched.ok:
            return _error("DOWNLOAD_FAILED", fetched.error or "Failed to download image", 400)
        input_path = fetched.path
        mime = sniff_file_mime(input_path)
        if not is_valid_image_mime(mime):
            remove_file(input_path)
            return _error("INVALID_MIME", f"Invalid image type: {mime}", 415)

    params = ser.to_params()
    result_id = uuid.uuid4()
    out = output_path(result_id)
    try:
        result = ImageConverter().convert(
            input_path,
            out,
            quality=params.quality,
            width=params.width,
            height=params.height,
            fit=params.fit,
            strip_metadata=params.strip_metadata,
        )
    finally:
        remove_file(input_path)

    if not result.success or not os.path.exists(out):
        remove_file(out)
        return _error("CONVERSION_FAILED", result.error or "Failed to convert image", 422)

    if "image/webp" not in request.META.get("HTTP_ACCEPT", ""):
        # Kept under output/ until the retention sweep removes it.
        exp = int(time.time()) + settings.SIGNED_URL_EXPIRES
        sig = sign_download(str(result_id), out, exp)
        return JsonResponse(
            {
                "ok": True,
                "result_url": f"{_base_url(request)}/api/v1/results/{result_id}?exp={exp}&sig={sig}",
                "output_size": os.path.getsize(out),
                "time_ms": result.time_ms,
            }
        )

    try:
        with open(out, "rb") as fh:
            data = fh.read()
    finally:
        remove_file(out)

    resp = HttpResponse(data, content_type="image/webp")
    resp["Content-Disposition"] = f'inline; filename="{output_filename(params.filename, "converted")}"'
    resp["X-Conversion-Time-Ms"] = str(result.time_ms)
    return resp


@require_http_methods(["GET"])
def download_result(request, result_id):
    """Serve a file kept by a synchronous conversion."""
    out = output_path(result_id)

    try:
        exp_i = int(request.GET.get("exp"))
    except (TypeError, ValueError):
        return _error("INVALID_EXP", "Invalid exp", 400)

    if not verify_download(str(result_id), out, exp_i, request.GET.get("sig") or ""):
        return _error("INVALID_SIGNATURE", "Invalid signature", 403)

    try:
        fh = open(out, "rb")
    except FileNotFoundError:
        return _error("FILE_NOT_FOUND", "File not found on server", 404)

    resp = FileResponse(fh, filename=f"{result_id}.webp", content_type="image/webp")
    resp["Cache-Control"] = "private, max-age=3600"
    return resp
