"""
Mapping of incoming proxy paths onto the upstream API.
"""

import logging
from typing import Optional
from urllib.parse import urljoin, urlsplit

from app.hcp_proxy.errors import NoUpstreamConfigured, UrlResolutionFailed

logger = logging.getLogger("uvicorn.error")

ALLOWED_SCHEMES = ("http", "https")
DEFAULT_PORTS = {"http": 80, "https": 443}


def sanitize_base(value: Optional[str]) -> Optional[str]:
    """
    Reduce a base URL to ``scheme://host[:port]/path`` without a trailing slash.

    Fragment, query and userinfo are discarded, the host is lowercased and a
    default port is dropped. Returns None for anything that is not an absolute
    http(s) URL.
    """
    if not value:
        return None
    trimmed = str(value).strip()
    if not trimmed:
        return None
    try:
        parts = urlsplit(trimmed)
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    host = parts.hostname
    if scheme not in ALLOWED_SCHEMES or not host:
        return None

    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != DEFAULT_PORTS[scheme]:
        host = f"{host}:{port}"
    return f"{scheme}://{host}{parts.path.rstrip('/')}"


def resolve_base(override: Optional[str], default: Optional[str]) -> str:
    """Pick the per-request base override if sent, else the configured default."""
    if override is not None and override.strip():
        base = sanitize_base(override)
        if base is None:
            logger.warning(f"[Proxy] Rejecting unparsable upstream base override: {override!r}")
            raise UrlResolutionFailed()
        return base
    if not default:
        raise NoUpstreamConfigured()
    return default


def is_proxy_path(path: str, prefix: str) -> bool:
    if prefix == "/":
        return path.startswith("/")
    return path == prefix or path.startswith(prefix + "/")


def build_target_url(request_target: str, prefix: str, base: str) -> str:
    """
    Resolve the part of ``request_target`` (path plus query) after ``prefix``
    against ``base``, e.g. ``/api/hcp/jobs/123?x=1`` with base
    ``https://api.example.com`` becomes ``https://api.example.com/jobs/123?x=1``.
    """
    clean_base = sanitize_base(base)
    if not clean_base:
        raise UrlResolutionFailed()
    if not request_target.startswith(prefix):
        logger.error(f"[Proxy] Request target {request_target!r} is outside prefix {prefix!r}")
        raise UrlResolutionFailed()

    suffix = request_target[len(prefix):]
    if suffix.startswith("/"):
        suffix = suffix[1:]
    if not clean_base.endswith("/"):
        clean_base = clean_base + "/"

    try:
        target = urljoin(clean_base, suffix)
        parts = urlsplit(target)
        port = parts.port
    except ValueError as e:
        logger.error(f"[Proxy] Failed to build target URL: {e}")
        raise UrlResolutionFailed() from e

    if parts.scheme not in ALLOWED_SCHEMES or not parts.hostname or port == 0:
        logger.error(f"[Proxy] Resolved target {target!r} is not an absolute http(s) URL")
        raise UrlResolutionFailed()
    return target
