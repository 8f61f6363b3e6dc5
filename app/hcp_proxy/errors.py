from typing import Optional

from fastapi.responses import JSONResponse, PlainTextResponse, Response


class ProxyError(Exception):
    """
    A failure with a fixed status code and a short caller-facing message.

    The message is the only thing exposed to the caller; internal details stay
    in the logs.
    """

    status_code = 500
    message = "Proxy request failed."
    plain_text = False

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_response(self) -> Response:
        if self.plain_text:
            return PlainTextResponse(self.message, status_code=self.status_code)
        return JSONResponse({"error": self.message}, status_code=self.status_code)


class NotFound(ProxyError):
    status_code = 404
    message = "Not found"
    plain_text = True


class OriginForbidden(ProxyError):
    status_code = 403
    message = "Origin not allowed."


class PayloadTooLarge(ProxyError):
    status_code = 413
    message = "Request body too large."


class NoUpstreamConfigured(ProxyError):
    status_code = 500
    message = "No upstream base configured."


class UrlResolutionFailed(ProxyError):
    status_code = 500
    message = "Unable to resolve upstream URL."


class UpstreamUnreachable(ProxyError):
    status_code = 502
    message = "Failed to reach Housecall Pro API."


class StreamingFailure(ProxyError):
    """Only surfaces as a response when no headers were sent yet."""

    status_code = 500
    message = "Streaming response failed."


class UnhandledInternal(ProxyError):
    status_code = 502
    message = "Proxy request failed."
