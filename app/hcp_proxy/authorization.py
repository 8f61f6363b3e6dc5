"""
Computes the Authorization header sent upstream.

Precedence, first match wins:
    1. the configured full header value (HCP_AUTH_HEADER)
    2. the caller's own Authorization header
    3. the caller's X-Hcp-Api-Key token, encoded per auth mode
    4. the configured default token (HCP_API_KEY), encoded per auth mode
Nothing matched means the header is omitted upstream.
"""

import base64
import logging
from typing import Optional

from app.hcp_proxy.config import (
    AUTH_MODE_BASIC,
    ProxyConfig,
    normalize_auth_mode,
    sanitize_value,
)
from app.utils import token_fingerprint

logger = logging.getLogger("uvicorn.error")

BASIC_PREFIX = "basic "
BEARER_PREFIX = "bearer "


def encode_token(token: str, mode: str) -> str:
    lowered = token.lower()
    if mode == AUTH_MODE_BASIC:
        if lowered.startswith(BASIC_PREFIX):
            return token
        encoded = base64.b64encode(f"{token}:".encode("utf-8")).decode("ascii")
        return f"Basic {encoded}"
    if lowered.startswith(BEARER_PREFIX) or lowered.startswith(BASIC_PREFIX):
        return token
    return f"Bearer {token}"


def resolve_authorization(
    config: ProxyConfig,
    authorization: Optional[str] = None,
    api_key: Optional[str] = None,
    auth_mode: Optional[str] = None,
) -> Optional[str]:
    if config.explicit_auth_header:
        logger.debug("[Auth] Using configured HCP_AUTH_HEADER")
        return config.explicit_auth_header

    incoming = sanitize_value(authorization)
    if incoming:
        logger.debug("[Auth] Passing through caller Authorization header")
        return incoming

    request_token = sanitize_value(api_key)
    token = request_token or config.default_api_key
    if not token:
        return None

    mode = normalize_auth_mode(auth_mode) or config.default_auth_mode
    logger.debug(
        f"[Auth] Encoding {'request' if request_token else 'default'} token "
        f"({token_fingerprint(token)}) as {mode}"
    )
    return encode_token(token, mode)
