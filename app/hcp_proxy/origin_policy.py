from dataclasses import dataclass
from typing import AbstractSet, List, Optional, Tuple

from starlette.datastructures import MutableHeaders

WILDCARD_ORIGIN = "*"

ALLOWED_METHODS = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
ALLOWED_HEADERS = ",".join(
    [
        "Authorization",
        "Content-Type",
        "X-Hcp-Api-Key",
        "X-Hcp-Auth-Mode",
        "X-Hcp-Api-Base",
        "X-Requested-With",
    ]
)
MAX_AGE = "86400"


@dataclass(frozen=True)
class OriginDecision:
    """
    Outcome of the cross-origin check for one request.

    ``allow_origin`` is the value echoed in Access-Control-Allow-Origin, or an
    empty string when the origin gets no permissive headers. ``proceed`` tells
    whether the request may continue past cross-origin enforcement.
    """

    allow_origin: str
    proceed: bool


def evaluate_origin(
    origin: Optional[str], allowed_origins: AbstractSet[str]
) -> OriginDecision:
    if not allowed_origins or WILDCARD_ORIGIN in allowed_origins:
        return OriginDecision(allow_origin=origin or WILDCARD_ORIGIN, proceed=True)
    if not origin:
        # Non-browser callers do not send an Origin header
        return OriginDecision(allow_origin="", proceed=True)
    if origin in allowed_origins:
        return OriginDecision(allow_origin=origin, proceed=True)
    return OriginDecision(allow_origin="", proceed=False)


def cors_headers(decision: OriginDecision) -> List[Tuple[str, str]]:
    headers = []
    if decision.allow_origin:
        headers.append(("Access-Control-Allow-Origin", decision.allow_origin))
        headers.append(("Vary", "Origin"))
    headers.append(("Access-Control-Allow-Methods", ALLOWED_METHODS))
    headers.append(("Access-Control-Allow-Headers", ALLOWED_HEADERS))
    headers.append(("Access-Control-Max-Age", MAX_AGE))
    return headers


def merge_vary(current: str, token: str) -> str:
    """Append ``token`` to a Vary value unless it is already listed."""
    listed = [item.strip().lower() for item in current.split(",") if item.strip()]
    if WILDCARD_ORIGIN in listed or token.lower() in listed:
        return current
    return f"{current}, {token}" if listed else token


def apply_cors_headers(headers: MutableHeaders, decision: OriginDecision) -> None:
    """
    Add the cross-origin headers to a response.

    Headers already present on the response (e.g. relayed from upstream) keep
    their value, except Vary, which gets Origin appended.
    """
    for name, value in cors_headers(decision):
        if name == "Vary" and name in headers:
            headers[name] = merge_vary(", ".join(headers.getlist(name)), value)
        elif name not in headers:
            headers[name] = value
