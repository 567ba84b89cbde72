import http.client
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from django.conf import settings

from .disk_storage import remove_file
from .security import is_safe_url

logger = logging.getLogger(__name__)

USER_AGENT = "WebP-Converter-API/1.0"
CHUNK_SIZE = 1024 * 1024


@dataclass
class FetchResult:
    ok: bool
    status: int | None = None
    path: str | None = None
    size: int = 0
    content_type: str = ""
    error: str = ""


class _TooLarge(Exception):
    pass


class _GuardedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Caps the redirect chain and re-checks every hop."""

    def __init__(self, max_redirects: int, guard: Callable[[str], bool] | None):
        super().__init__()
        self.max_redirections = max_redirects
        self.guard = guard

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        if self.max_redirections <= 0:
            raise urllib.error.HTTPError(newurl, code, "Redirects are disabled", headers, fp)
        if self.guard is not None and not self.guard(newurl):
            raise urllib.error.HTTPError(newurl, code, "Redirect to a disallowed address", headers, fp)
        return super().redirect_request(req, fp, code, msg, headers, newurl)


class Fetcher:
    """Downloads a remote image to a staging path with a hard size cap."""

    def __init__(
        self,
        timeout: float = 30.0,
        max_redirects: int = 5,
        max_bytes: int = 15 * 1024 * 1024,
        guard: Callable[[str], bool] | None = None,
    ):
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.max_bytes = max_bytes
        self.guard = guard

    def fetch(self, url: str, dest: str) -> FetchResult:
        opener = urllib.request.build_opener(_GuardedRedirectHandler(self.max_redirects, self.guard))
        req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})

        size = 0
        status = None
        content_type = ""
        try:
            with opener.open(req, timeout=self.timeout) as resp:
                status = resp.status
                content_type = (resp.headers.get("Content-Type") or "").lower()
                if not 200 <= status < 300:
                    return FetchResult(ok=False, status=status, error=f"Failed to download image: HTTP {status}")

                # Early reject if content-length is present
                cl = resp.headers.get("Content-Length")
                if cl and cl.isdigit() and int(cl) > self.max_bytes:
                    raise _TooLarge()

                Path(dest).parent.mkdir(parents=True, exist_ok=True)
                with open(dest, "wb") as out:
                    while True:
                        chunk = resp.read(CHUNK_SIZE)
                        if not chunk:
                            break
                        size += len(chunk)
                        if size > self.max_bytes:
                            raise _TooLarge()
                        out.write(chunk)
        except _TooLarge:
            remove_file(dest)
            return FetchResult(ok=False, status=status, error="Downloaded file exceeds maximum size")
        except urllib.error.HTTPError as e:
            remove_file(dest)
            return FetchResult(ok=False, status=e.code, error=f"Failed to download image: HTTP {e.code} - {e.reason}")
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as e:
            remove_file(dest)
            reason = getattr(e, "reason", None) or e
            return FetchResult(ok=False, status=status, error=f"Failed to download image: {reason}")

        if size == 0:
            remove_file(dest)
            return FetchResult(ok=False, status=status, error="Failed to download image: empty response")

        logger.info("Downloaded %d bytes from %s", size, url)
        return FetchResult(ok=True, status=status, path=dest, size=size, content_type=content_type)


def default_fetcher() -> Fetcher:
    return Fetcher(
        timeout=settings.DOWNLOAD_TIMEOUT,
        max_redirects=settings.DOWNLOAD_MAX_REDIRECTS,
        max_bytes=settings.MAX_UPLOAD_BYTES,
        guard=is_safe_url,
    )
