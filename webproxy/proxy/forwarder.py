import asyncio
import logging
from dataclasses import dataclass

import httpx

from webproxy.proxy.errors import UpstreamTimeoutError, UpstreamUnreachableError
from webproxy.proxy.outbound import OutboundRequest
from webproxy.utils import redact_url
from webproxy.utils.exception_logging import find_exception_in_exception_groups
from webproxy.vars import PROXY_FOLLOW_REDIRECTS, PROXY_TIMEOUT

logger = logging.getLogger("uvicorn.error")

# Headers httpx.AsyncClient adds to every request by default
CLIENT_DEFAULT_HEADERS = ("accept", "accept-encoding", "connection", "user-agent")


@dataclass
class Forwarded:
    """An upstream response whose body has not been read yet, together with
    the client owning its connection."""

    client: httpx.AsyncClient
    response: httpx.Response


async def close_forwarded(forwarded: Forwarded) -> None:
    try:
        await forwarded.response.aclose()
    finally:
        await forwarded.client.aclose()


async def forward_request(outbound: OutboundRequest) -> Forwarded:
    """
    Send the outbound request once and return as soon as the response
    headers are available.

    The call is cancelled after PROXY_TIMEOUT seconds, which aborts the
    upstream connection. There are no retries.
    """
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(PROXY_TIMEOUT),
        follow_redirects=PROXY_FOLLOW_REDIRECTS,
    )
    host = outbound.headers.get("host", "")
    try:
        upstream_request = client.build_request(
            method=outbound.method,
            url=outbound.url,
            headers=outbound.headers,
            content=outbound.body,
        )
        for name in CLIENT_DEFAULT_HEADERS:
            if name not in outbound.headers:
                upstream_request.headers.pop(name, None)
        response = await asyncio.wait_for(
            client.send(upstream_request, stream=True), timeout=PROXY_TIMEOUT
        )
    except asyncio.TimeoutError:
        await client.aclose()
        logger.warning(
            f"[Proxy] No response from {redact_url(outbound.url)} within {PROXY_TIMEOUT}s, cancelled"
        )
        raise UpstreamTimeoutError()
    except Exception as e:
        await client.aclose()
        if find_exception_in_exception_groups(e, httpx.TimeoutException):
            logger.warning(f"[Proxy] Timeout for {redact_url(outbound.url)}: {e}")
            raise UpstreamTimeoutError() from e
        if find_exception_in_exception_groups(e, httpx.RequestError) or isinstance(
            e, httpx.InvalidURL
        ):
            logger.warning(
                f"[Proxy] Failed to reach {redact_url(outbound.url)}: {type(e).__name__}: {e}"
            )
            raise UpstreamUnreachableError(host) from e
        raise

    return Forwarded(client=client, response=response)
