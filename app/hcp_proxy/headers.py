"""
Header filtering in both directions of the proxy.
"""

from typing import Dict, Iterable, List, Optional, Tuple

# Hop-by-hop headers that should NOT be forwarded (RFC 9110)
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# Headers injected by browsers or load balancers, or consumed by the proxy
SUPPRESSED_REQUEST_HEADERS = frozenset(
    {
        "host",
        "content-length",
        "accept-encoding",
        "origin",
        "referer",
        "x-real-ip",
        "x-hcp-api-key",
        "x-hcp-auth-mode",
        "x-hcp-api-base",
    }
)
FORWARDED_HEADER_PREFIX = "x-forwarded-"

# The body is re-streamed decoded and re-framed by the local server
SUPPRESSED_RESPONSE_HEADERS = frozenset({"content-encoding", "transfer-encoding"})


def _pairs(headers) -> Iterable[Tuple[str, str]]:
    if hasattr(headers, "multi_items"):
        return headers.multi_items()
    return headers.items()


def _connection_tokens(pairs: List[Tuple[str, str]]) -> frozenset:
    """Header names listed in Connection are hop-by-hop as well."""
    tokens = set()
    for name, value in pairs:
        if name.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return frozenset(tokens)


def _is_suppressed_request_header(name: str) -> bool:
    return (
        name in HOP_BY_HOP_HEADERS
        or name in SUPPRESSED_REQUEST_HEADERS
        or name.startswith(FORWARDED_HEADER_PREFIX)
    )


def build_upstream_headers(headers, authorization: Optional[str]) -> Dict[str, str]:
    """
    Build the header set sent upstream from the caller's headers.

    Repeated headers are collapsed into one comma separated value. The
    resolved ``authorization`` replaces whatever the caller sent; None removes
    the header altogether.
    """
    pairs = list(_pairs(headers))
    listed = _connection_tokens(pairs)

    grouped: Dict[str, List[str]] = {}
    for name, value in pairs:
        name_lower = name.lower()
        if _is_suppressed_request_header(name_lower) or name_lower in listed:
            continue
        if value is None:
            continue
        grouped.setdefault(name_lower, []).append(value)

    forwarded = {
        name: ("; " if name == "cookie" else ", ").join(values)
        for name, values in grouped.items()
    }

    forwarded.pop("authorization", None)
    if authorization:
        forwarded["authorization"] = authorization
    return forwarded


def filter_response_headers(headers) -> List[Tuple[str, str]]:
    """
    Select the upstream response headers relayed to the caller.

    Repeated headers such as set-cookie stay separate entries.
    """
    pairs = list(_pairs(headers))
    listed = _connection_tokens(pairs)
    decoded = any(
        name.lower() == "content-encoding" and value.strip().lower() != "identity"
        for name, value in pairs
    )

    relayed = []
    for name, value in pairs:
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS or name_lower in listed:
            continue
        if name_lower in SUPPRESSED_RESPONSE_HEADERS:
            continue
        if decoded and name_lower == "content-length":
            # Length of the encoded body, no longer accurate once decoded
            continue
        relayed.append((name, value))
    return relayed
