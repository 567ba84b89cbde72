import hashlib
import ipaddress
import logging
import os
import re
import socket
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

ALLOWED_MIMES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "image/avif",
    }
)

_MIME_EXT = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/avif": ".avif",
}

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def is_http_url(u: str) -> bool:
    try:
        p = urlparse(u)
        return p.scheme in ("http", "https") and bool(p.hostname)
    except ValueError:
        return False


def _is_blocked_ip(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip.split("%", 1)[0])
    except ValueError:
        return True
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped:
        addr = addr.ipv4_mapped
    return (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_multicast
        or addr.is_unspecified
    )


def is_safe_url(url: str) -> bool:
    """True when url is http(s) and every address it resolves to is public.

    Loopback, private, link-local and other non-routable targets are refused so
    the fetcher can't be pointed at internal services.
    """
    if not is_http_url(url):
        return False

    p = urlparse(url)
    host = p.hostname or ""
    try:
        port = p.port or (443 if p.scheme == "https" else 80)
    except ValueError:
        return False

    try:
        infos = socket.getaddrinfo(host, port, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, UnicodeError) as e:
        logger.warning("Could not resolve %s: %s", host, e)
        return False

    addrs = {info[4][0] for info in infos}
    if not addrs:
        return False

    for ip in addrs:
        if _is_blocked_ip(ip):
            logger.warning("Blocked SSRF attempt: %s resolves to %s", url, ip)
            return False
    return True


def sniff_mime(head: bytes) -> str:
    """Identify an image type from its leading bytes."""
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head[4:8] == b"ftyp" and head[8:12] in (b"avif", b"avis"):
        return "image/avif"
    if head.lstrip()[:1] == b"<":
        return "text/html"
    return "application/octet-stream"


def sniff_file_mime(path: str) -> str:
    with open(path, "rb") as f:
        return sniff_mime(f.read(32))


def is_valid_image_mime(mime: str) -> bool:
    return mime in ALLOWED_MIMES


def ext_for_mime(mime: str) -> str:
    return _MIME_EXT.get(mime, "")


def sanitize_filename(filename: str) -> str:
    name = os.path.basename(filename or "")
    name = _UNSAFE_CHARS.sub("_", name)
    if len(name) > 255:
        stem, ext = os.path.splitext(name)
        name = stem[: 255 - len(ext)] + ext
    return name


def output_filename(filename: str | None, job_id: str) -> str:
    """Download name for a job's output, always ending in .webp."""
    name = sanitize_filename(filename or "") or f"{job_id}.webp"
    if not name.lower().endswith(".webp"):
        name += ".webp"
    return name


def hash_api_key(api_key: str | None) -> str | None:
    if not api_key:
        return None
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def api_key_from_request(request) -> str:
    key = request.META.get("HTTP_X_API_KEY") or ""
    if key:
        return key.strip()
    auth = request.META.get("HTTP_AUTHORIZATION") or ""
    if auth.startswith("Bearer "):
        return auth.split(" ", 1)[1].strip()
    return ""


def client_ip(request) -> str:
    for header in (
        "HTTP_CF_CONNECTING_IP",
        "HTTP_X_FORWARDED_FOR",
        "HTTP_X_REAL_IP",
        "REMOTE_ADDR",
    ):
        ip = request.META.get(header)
        if ip:
            return ip.split(",")[0].strip()[:45]
    return "0.0.0.0"
