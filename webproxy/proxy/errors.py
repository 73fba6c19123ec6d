"""
Failure taxonomy of the proxy and its mapping to outward responses.

Every failure the pipeline knows about is a ``ProxyError`` carrying the
status code and a plain-text message that is safe to send to the caller.
Anything else is reported as a generic 500 without internal details.
"""

import logging

from starlette.responses import PlainTextResponse

from webproxy.utils import safe_text
from webproxy.utils.exception_logging import log_exception_with_details

logger = logging.getLogger("uvicorn.error")


class ProxyError(Exception):
    status_code = 500
    default_message = "Proxy request failed."

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(self.message)


class ClientInputError(ProxyError):
    """The caller supplied a target the proxy will not fetch."""

    status_code = 400


class MissingTargetError(ClientInputError):
    default_message = "Missing target URL: pass it as the 'url' query parameter."


class InvalidTargetError(ClientInputError):
    default_message = "Invalid target URL."


class UnsupportedSchemeError(ClientInputError):
    default_message = "Unsupported protocol: only http and https targets are allowed."

    def __init__(self, scheme: str):
        self.scheme = scheme
        super().__init__(
            f"Unsupported protocol '{safe_text(scheme, limit=20)}': "
            "only http and https targets are allowed."
        )


class UpstreamTimeoutError(ProxyError):
    status_code = 504
    default_message = (
        "Request timed out: the target site took too long to respond and may be "
        "unreachable from this network."
    )


class UpstreamUnreachableError(ProxyError):
    status_code = 502

    def __init__(self, host: str):
        self.host = host
        super().__init__(
            f"Unable to reach the target site {safe_text(host, limit=100)}.\n\n"
            "Possible causes:\n"
            "1. The site cannot be reached from the proxy's network\n"
            "2. The site refused the proxied connection\n"
            "3. The TLS handshake with the site failed"
        )


def classify_error(exc: BaseException) -> tuple[int, str]:
    """Map an exception to the outward status code and message."""
    if isinstance(exc, ProxyError):
        return exc.status_code, exc.message
    return ProxyError.status_code, ProxyError.default_message


def error_response(exc: BaseException) -> PlainTextResponse:
    status_code, message = classify_error(exc)
    if isinstance(exc, ClientInputError):
        logger.info(f"[Proxy] Rejected request ({status_code}): {message}")
    elif isinstance(exc, ProxyError):
        logger.warning(f"[Proxy] Upstream failure ({status_code}): {exc.__class__.__name__}")
    else:
        log_exception_with_details(logger, "[Proxy]", exc)
    return PlainTextResponse(message, status_code=status_code)
