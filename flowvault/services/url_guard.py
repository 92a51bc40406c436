"""
URL admission checks for candidate image references.

The private-network check is lexical: it looks at the literal hostname and
never resolves DNS, so it is a fast pre-filter and not a defence against
DNS rebinding. Connection-time address checks are not performed.
"""

from typing import Iterable, Optional, Sequence
from urllib.parse import urlsplit

from flowvault.config import settings

ALLOWED_SCHEMES = ("http", "https")

_LOOPBACK_HOSTS = {"localhost", "127.0.0.1"}
_PRIVATE_PREFIXES = ("10.", "192.168.") + tuple(f"172.{n}." for n in range(16, 32))


def is_private_host(hostname: str) -> bool:
    """True for loopback literals and the RFC 1918 IPv4 ranges."""
    host = hostname.lower()
    return host in _LOOPBACK_HOSTS or host.startswith(_PRIVATE_PREFIXES)


def is_allowed_host(hostname: str, allowed_domains: Iterable[str]) -> bool:
    host = hostname.lower()
    for domain in allowed_domains:
        entry = domain.lower()
        if host == entry or host.endswith(f".{entry}"):
            return True
    return False


def validate(url: str, allowed_domains: Optional[Sequence[str]] = None) -> bool:
    """Return True when ``url`` is an in-scope, publicly hosted image reference."""
    if not isinstance(url, str) or not url:
        return False
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError:
        return False

    if parts.scheme.lower() not in ALLOWED_SCHEMES or not hostname:
        return False

    domains = settings.ALLOWED_IMAGE_DOMAINS if allowed_domains is None else allowed_domains
    if not is_allowed_host(hostname, domains):
        return False

    if is_private_host(hostname):
        return False

    return True


def find_invalid(urls: Iterable[str], allowed_domains: Optional[Sequence[str]] = None) -> list:
    return [u for u in urls if not validate(u, allowed_domains)]
