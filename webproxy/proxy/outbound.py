from dataclasses import dataclass
from typing import AsyncIterator, Dict, Mapping, Optional

from fastapi import Request

from webproxy.proxy.target import Target
from webproxy.vars import DEFAULT_ACCEPT_LANGUAGE, DEFAULT_USER_AGENT

# Only these request headers reach the target. Cookies, authorization,
# conditional and hop-by-hop headers are dropped.
ALLOWED_REQUEST_HEADERS = {
    "accept",
    "accept-language",
    "accept-encoding",
    "content-type",
    "user-agent",
    "cache-control",
}

BODYLESS_METHODS = {"GET", "HEAD"}


@dataclass(frozen=True)
class OutboundRequest:
    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[AsyncIterator[bytes]] = None


def filter_headers(headers: Mapping[str, str], host: str) -> Dict[str, str]:
    """
    Reduce the inbound headers to the allow-list, force ``Host`` to the
    target and fill in a browser User-Agent and Accept-Language if missing.
    """
    filtered: Dict[str, str] = {}
    for name, value in headers.items():
        if name.lower() in ALLOWED_REQUEST_HEADERS:
            filtered[name.lower()] = value

    filtered["host"] = host
    if "user-agent" not in filtered:
        filtered["user-agent"] = DEFAULT_USER_AGENT
    if "accept-language" not in filtered:
        filtered["accept-language"] = DEFAULT_ACCEPT_LANGUAGE
    return filtered


def build_outbound_request(request: Request, target: Target) -> OutboundRequest:
    method = request.method.upper()
    body = None
    if method not in BODYLESS_METHODS:
        # Single-pass stream, relayed to the target without buffering
        body = request.stream()
    return OutboundRequest(
        method=method,
        url=target.url,
        headers=filter_headers(request.headers, target.host),
        body=body,
    )
