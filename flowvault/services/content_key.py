import hashlib
from typing import Tuple
from urllib.parse import urlsplit

OBJECT_PREFIX = "flow_"
IMAGE_EXTENSION = ".jpg"
SIDECAR_EXTENSION = ".json"

_DEFAULT_PORTS = {"http": 80, "https": 443}


def derive_key(source_url: str) -> str:
    """Map a source URL to its content key: origin + path, no query or fragment.

    Anything that does not parse as an absolute URL is returned unchanged so it
    still acts as its own key.
    """
    try:
        parts = urlsplit(source_url)
        port = parts.port
        hostname = parts.hostname
    except (ValueError, AttributeError):
        return source_url
    if not parts.scheme or not hostname:
        return source_url

    scheme = parts.scheme.lower()
    if ":" in hostname:
        hostname = f"[{hostname}]"
    origin = f"{scheme}://{hostname}"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        origin = f"{origin}:{port}"
    return origin + (parts.path or "/")


def fingerprint(content_key: str) -> str:
    return hashlib.sha256(content_key.encode("utf-8")).hexdigest()


def object_names(digest: str) -> Tuple[str, str]:
    """Storage names for the image and its metadata sidecar."""
    base = f"{OBJECT_PREFIX}{digest}"
    return base + IMAGE_EXTENSION, base + SIDECAR_EXTENSION
