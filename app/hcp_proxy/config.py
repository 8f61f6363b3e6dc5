"""
Immutable configuration snapshot for the HCP proxy.

The snapshot is parsed once from the environment at startup and handed to the
forwarding engine explicitly, so request handling never reads process state.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

from app.hcp_proxy.url_rewriter import sanitize_base
from app.vars import (
    DEFAULT_HCP_API_BASE,
    DEFAULT_MAX_BODY_SIZE,
    DEFAULT_PORT,
    DEFAULT_PROXY_PREFIX,
    DEFAULT_PROXY_TIMEOUT,
)

logger = logging.getLogger("uvicorn.error")

AUTH_MODE_BEARER = "bearer"
AUTH_MODE_BASIC = "basic"
AUTH_MODES = frozenset({AUTH_MODE_BEARER, AUTH_MODE_BASIC})


def normalize_prefix(value: Optional[str]) -> str:
    """Return the mount prefix with a leading slash and no trailing slash."""
    trimmed = (value or "").strip()
    if not trimmed:
        return DEFAULT_PROXY_PREFIX
    if not trimmed.startswith("/"):
        trimmed = "/" + trimmed
    return trimmed.rstrip("/") or "/"


def parse_origin_list(value: Optional[str]) -> FrozenSet[str]:
    if not value:
        return frozenset()
    return frozenset(entry.strip() for entry in value.split(",") if entry.strip())


def normalize_auth_mode(value: Optional[str]) -> Optional[str]:
    """Return ``bearer`` or ``basic``, or None for anything else."""
    if not value:
        return None
    mode = value.strip().lower()
    return mode if mode in AUTH_MODES else None


def sanitize_value(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value.strip() or None


def parse_max_body_size(value: Optional[str]) -> int:
    if not value:
        return DEFAULT_MAX_BODY_SIZE
    try:
        parsed = int(value.strip())
    except ValueError:
        logger.warning(
            f"[Config] Ignoring invalid MAX_BODY_SIZE={value!r}, using {DEFAULT_MAX_BODY_SIZE}"
        )
        return DEFAULT_MAX_BODY_SIZE
    return parsed if parsed > 0 else DEFAULT_MAX_BODY_SIZE


def parse_port(value: Optional[str]) -> int:
    try:
        parsed = int((value or "").strip())
    except ValueError:
        return DEFAULT_PORT
    return parsed if 0 < parsed < 65536 else DEFAULT_PORT


def parse_timeout(value: Optional[str]) -> Optional[float]:
    """Upstream timeout in seconds; ``0`` disables it."""
    if value is None or not value.strip():
        return DEFAULT_PROXY_TIMEOUT
    try:
        parsed = float(value.strip())
    except ValueError:
        return DEFAULT_PROXY_TIMEOUT
    if parsed < 0:
        return DEFAULT_PROXY_TIMEOUT
    return parsed or None


@dataclass(frozen=True)
class ProxyConfig:
    prefix: str = DEFAULT_PROXY_PREFIX
    allowed_origins: FrozenSet[str] = field(default_factory=frozenset)
    default_base: Optional[str] = DEFAULT_HCP_API_BASE
    default_auth_mode: str = AUTH_MODE_BEARER
    explicit_auth_header: Optional[str] = None
    default_api_key: Optional[str] = None
    max_body_size: int = DEFAULT_MAX_BODY_SIZE
    port: int = DEFAULT_PORT
    upstream_timeout: Optional[float] = DEFAULT_PROXY_TIMEOUT

    def __post_init__(self):
        # Normalize values passed directly (tests, embedding) the same way
        # the environment values are normalized.
        object.__setattr__(self, "prefix", normalize_prefix(self.prefix))
        object.__setattr__(self, "allowed_origins", frozenset(self.allowed_origins))
        object.__setattr__(self, "default_base", sanitize_base(self.default_base))
        object.__setattr__(
            self,
            "default_auth_mode",
            normalize_auth_mode(self.default_auth_mode) or AUTH_MODE_BEARER,
        )
        object.__setattr__(
            self, "explicit_auth_header", sanitize_value(self.explicit_auth_header)
        )
        object.__setattr__(self, "default_api_key", sanitize_value(self.default_api_key))
        if self.max_body_size <= 0:
            object.__setattr__(self, "max_body_size", DEFAULT_MAX_BODY_SIZE)

    @property
    def allows_any_origin(self) -> bool:
        return not self.allowed_origins or "*" in self.allowed_origins

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProxyConfig":
        env = os.environ if environ is None else environ
        raw_base = env.get("HCP_API_BASE") or DEFAULT_HCP_API_BASE
        default_base = sanitize_base(raw_base)
        if default_base is None:
            logger.warning(f"[Config] HCP_API_BASE={raw_base!r} is not a valid URL")
        return cls(
            prefix=normalize_prefix(env.get("PROXY_PREFIX")),
            allowed_origins=parse_origin_list(env.get("ALLOWED_ORIGINS")),
            default_base=default_base,
            default_auth_mode=normalize_auth_mode(env.get("HCP_API_KEY_MODE"))
            or AUTH_MODE_BEARER,
            explicit_auth_header=sanitize_value(env.get("HCP_AUTH_HEADER")),
            default_api_key=sanitize_value(env.get("HCP_API_KEY")),
            max_body_size=parse_max_body_size(env.get("MAX_BODY_SIZE")),
            port=parse_port(env.get("PORT")),
            upstream_timeout=parse_timeout(env.get("PROXY_TIMEOUT")),
        )
