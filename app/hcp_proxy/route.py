import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask

from app.hcp_proxy.authorization import resolve_authorization
from app.hcp_proxy.config import ProxyConfig
from app.hcp_proxy.errors import (
    NotFound,
    OriginForbidden,
    PayloadTooLarge,
    ProxyError,
    StreamingFailure,
    UnhandledInternal,
    UpstreamUnreachable,
)
from app.hcp_proxy.headers import build_upstream_headers, filter_response_headers
from app.hcp_proxy.origin_policy import (
    OriginDecision,
    apply_cors_headers,
    evaluate_origin,
)
from app.hcp_proxy.url_rewriter import build_target_url, is_proxy_path, resolve_base
from app.utils.exception_logging import log_exception_with_details
from app.utils.traced_requests import traced_request
from app.vars import API_BASE_HEADER, API_KEY_HEADER, AUTH_MODE_HEADER, HEALTHCHECK_PATH

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
BODYLESS_METHODS = frozenset({"GET", "HEAD"})


def request_path(request: Request) -> str:
    """The raw (still percent-encoded) path of the request, without the query."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


def request_target(request: Request) -> str:
    """The raw path plus query string of the request."""
    path = request_path(request)
    query = request.scope.get("query_string") or b""
    if query:
        path = f"{path}?{query.decode('latin-1')}"
    return path


async def read_request_body(request: Request, limit: int) -> bytes:
    """
    Read the request body, giving up as soon as more than ``limit`` bytes
    arrived. GET and HEAD requests never have their body read.
    """
    if request.method.upper() in BODYLESS_METHODS:
        return b""

    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise PayloadTooLarge()

    chunks = []
    total = 0
    async for chunk in request.stream():
        if not chunk:
            continue
        total += len(chunk)
        if total > limit:
            logger.warning(f"[Proxy] Request body exceeded {limit} bytes, aborting read")
            raise PayloadTooLarge()
        chunks.append(chunk)
    return b"".join(chunks)


async def relay_upstream_body(
    upstream: httpx.Response,
    chunks: AsyncIterator[bytes],
    first_chunk: bytes = b"",
) -> AsyncIterator[bytes]:
    """
    Stream the rest of the upstream body to the caller.

    Starlette cancels the iteration when the client disconnects; the upstream
    response is closed right away instead of being drained. A transport error
    mid-stream is re-raised, which aborts the connection since the status line
    is already out.
    """
    try:
        if first_chunk:
            yield first_chunk
        async for chunk in chunks:
            if chunk:
                yield chunk
    except (GeneratorExit, asyncio.CancelledError):
        logger.info("[Proxy] Client disconnected, aborting upstream stream")
        raise
    except (httpx.HTTPError, httpx.StreamError) as e:
        log_exception_with_details(logger, "[Proxy] Streaming response failed", e)
        raise
    finally:
        await upstream.aclose()


class HcpProxy:
    """
    Forwards requests under the mount prefix to the upstream API.

    Holds the configuration snapshot and one pooled HTTP client; nothing else
    is shared between requests.
    """

    def __init__(
        self,
        config: ProxyConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.upstream_timeout),
            follow_redirects=False,
            transport=transport,
        )

    async def aclose(self):
        await self.client.aclose()

    async def dispatch(self, request: Request) -> Response:
        decision = evaluate_origin(
            request.headers.get("origin"), self.config.allowed_origins
        )
        try:
            # Same undecoded form the upstream URL is built from
            path = request_path(request)
            if path == HEALTHCHECK_PATH:
                response = JSONResponse({"status": "ok"})
                apply_cors_headers(response.headers, decision)
                return response
            if not is_proxy_path(path, self.config.prefix):
                return NotFound().to_response()
            return await self.forward(request, decision)
        except Exception as e:
            log_exception_with_details(logger, "[Proxy]", e)
            response = UnhandledInternal().to_response()
            apply_cors_headers(response.headers, decision)
            return response

    async def forward(self, request: Request, decision: OriginDecision) -> Response:
        method = request.method.upper()
        with traced_request(
            tracer,
            operation="hcp_proxy_request",
            start_message=f"[Proxy] {method} {request.url.path}",
            extra_attrs={
                "proxy.method": method,
                "proxy.origin": request.headers.get("origin"),
            },
        ) as span:
            try:
                response = await self._forward(request, decision, method, span)
            except ProxyError as e:
                span.set_attribute("proxy.error", type(e).__name__)
                response = e.to_response()
            span.set_attribute("proxy.status_code", response.status_code)

        apply_cors_headers(response.headers, decision)
        return response

    async def _forward(
        self, request: Request, decision: OriginDecision, method: str, span
    ) -> Response:
        if not decision.proceed:
            logger.warning(
                f"[Proxy] Origin not allowed: {request.headers.get('origin')!r}"
            )
            raise OriginForbidden()

        if method == "OPTIONS":
            return Response(status_code=204)

        base = resolve_base(request.headers.get(API_BASE_HEADER), self.config.default_base)
        target_url = build_target_url(
            request_target(request), self.config.prefix, base
        )
        span.set_attribute("proxy.target_url", target_url)

        body = await read_request_body(request, self.config.max_body_size)

        authorization = resolve_authorization(
            self.config,
            authorization=request.headers.get("authorization"),
            api_key=request.headers.get(API_KEY_HEADER),
            auth_mode=request.headers.get(AUTH_MODE_HEADER),
        )
        headers = build_upstream_headers(request.headers, authorization)

        logger.debug(f"[Proxy] Forwarding {method} -> {target_url}")
        upstream = await self.send_upstream(method, target_url, headers, body)
        return await self.relay(upstream)

    async def send_upstream(
        self, method: str, target_url: str, headers: dict, body: bytes
    ) -> httpx.Response:
        content = body if body and method not in BODYLESS_METHODS else None
        upstream_request = self.client.build_request(
            method, target_url, headers=headers, content=content
        )
        try:
            return await self.client.send(
                upstream_request, stream=True, follow_redirects=False
            )
        except httpx.RequestError as e:
            logger.error(
                f"[Proxy] Upstream request to {target_url} failed: {type(e).__name__}: {e}"
            )
            raise UpstreamUnreachable() from e

    async def relay(self, upstream: httpx.Response) -> Response:
        """
        Turn the upstream response into a streamed response.

        The first chunk is read before anything is sent, so an upstream that
        fails straight away still gets a proper 500.
        """
        chunks = upstream.aiter_bytes()
        try:
            first_chunk = await chunks.__anext__()
        except StopAsyncIteration:
            first_chunk = b""
        except (httpx.HTTPError, httpx.StreamError) as e:
            log_exception_with_details(logger, "[Proxy] Streaming response failed", e)
            await upstream.aclose()
            raise StreamingFailure() from e

        response = StreamingResponse(
            relay_upstream_body(upstream, chunks, first_chunk),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        for name, value in filter_response_headers(upstream.headers):
            response.headers.append(name, value)
        return response


def build_router(proxy: HcpProxy) -> APIRouter:
    router = APIRouter()

    # Catch-all: the proxy decides between health check, 404 and forwarding
    @router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
    async def proxy_all(request: Request, path: str):
        return await proxy.dispatch(request)

    return router
