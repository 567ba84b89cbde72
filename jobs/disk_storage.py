import hmac
import hashlib
import logging
import os
import time
import uuid
from pathlib import Path
from django.conf import settings

logger = logging.getLogger(__name__)

INCOMING = "incoming"
OUTPUT = "output"


def ensure_dirs():
    Path(settings.MEDIA_ROOT).mkdir(parents=True, exist_ok=True)
    (Path(settings.MEDIA_ROOT) / INCOMING).mkdir(parents=True, exist_ok=True)
    (Path(settings.MEDIA_ROOT) / OUTPUT).mkdir(parents=True, exist_ok=True)


def incoming_path(name: str) -> str:
    return str(Path(settings.MEDIA_ROOT) / INCOMING / name)


def new_incoming_path(ext: str = "") -> str:
    """Staging path for a producer-side upload, unique per call."""
    return incoming_path(f"{uuid.uuid4().hex}{ext}")


def staging_path(job_id, ext: str = "") -> str:
    # Downloads for a job land here; keyed by job id so jobs never share a file.
    return incoming_path(f"{job_id}{ext}")


def output_path(job_id) -> str:
    return str(Path(settings.MEDIA_ROOT) / OUTPUT / f"{job_id}.webp")


def remove_file(path: str | None) -> bool:
    """Best-effort delete. A file that is already gone is fine."""
    if not path:
        return False
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)
        return False


def remove_stale_files(older_than: float) -> int:
    """Delete files in incoming/ and output/ last modified before the older_than timestamp.

    Catches what has no job row: synchronous results and staging left by a crash.
    """
    removed = 0
    for sub in (INCOMING, OUTPUT):
        root = Path(settings.MEDIA_ROOT) / sub
        if not root.is_dir():
            continue
        for p in root.iterdir():
            try:
                stale = p.is_file() and p.stat().st_mtime < older_than
            except FileNotFoundError:
                continue
            if stale and remove_file(str(p)):
                removed += 1
    return removed


def sign_download(job_id: str, output_key: str, exp: int) -> str:
    msg = f"{job_id}|{output_key}|{exp}".encode("utf-8")
    secret = settings.SECRET_KEY.encode("utf-8")
    return hmac.new(secret, msg, hashlib.sha256).hexdigest()


def verify_download(job_id: str, output_key: str, exp: int, sig: str) -> bool:
    try:
        if int(exp) < int(time.time()):
            return False
    except (TypeError, ValueError):
        return False
    want = sign_download(job_id, output_key, int(exp))
    return hmac.compare_digest(want, str(sig or ""))
