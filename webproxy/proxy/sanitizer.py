from typing import Iterable, List, Optional, Tuple
from urllib.parse import urljoin

from webproxy.proxy.rewriter import RewriteContext

# Hop-by-hop headers are managed by the ASGI server (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Upstream framing and content restrictions that would block proxied pages
BLOCKING_SECURITY_HEADERS = {
    "content-security-policy",
    "x-frame-options",
}

# Invalid once the body has been decoded and rewritten
BODY_DEPENDENT_HEADERS = {
    "content-length",
    "content-encoding",
}

CORS_HEADERS = [
    ("access-control-allow-origin", "*"),
    ("access-control-allow-methods", "GET, POST, PUT, DELETE, OPTIONS"),
    ("access-control-allow-headers", "*"),
]
_CORS_NAMES = {name for name, _ in CORS_HEADERS}


def rewrite_location_header(location: str, context: RewriteContext) -> str:
    """
    Point a redirect back at the proxy. Relative locations are resolved
    against the URL that produced the redirect.
    """
    if not location or context.marker in location:
        return location
    try:
        absolute = urljoin(context.target_url, location)
    except ValueError:
        return location
    if not absolute.lower().startswith(("http://", "https://")):
        return location
    return context.wrap(absolute)


def sanitize_response_headers(
    headers: Iterable[Tuple[str, str]],
    rewritten: bool = False,
    context: Optional[RewriteContext] = None,
) -> List[Tuple[str, str]]:
    """
    Return the header list relayed to the client.

    Repeated headers such as set-cookie are preserved. When ``context`` is
    given, Location headers are rewritten to proxied form.
    """
    sanitized: List[Tuple[str, str]] = []
    for name, value in headers:
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS:
            continue
        if name_lower in BLOCKING_SECURITY_HEADERS or name_lower in _CORS_NAMES:
            continue
        if rewritten and name_lower in BODY_DEPENDENT_HEADERS:
            continue
        if name_lower == "location" and context is not None:
            value = rewrite_location_header(value, context)
        sanitized.append((name_lower, value))

    sanitized.extend(CORS_HEADERS)
    return sanitized
