import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask

from webproxy.proxy.errors import ProxyError, error_response
from webproxy.proxy.forwarder import Forwarded, close_forwarded, forward_request
from webproxy.proxy.outbound import build_outbound_request
from webproxy.proxy.rewriter import ContentRewriter, RewriteContext, RewritePolicy
from webproxy.proxy.sanitizer import sanitize_response_headers
from webproxy.proxy.target import parse_target
from webproxy.utils.traced_requests import traced_request
from webproxy.vars import (
    PROXY_FOLLOW_REDIRECTS,
    PROXY_PATH,
    PUBLIC_URL,
    REWRITE_CSS_URLS,
    REWRITE_POLICY,
)

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

content_rewriter = ContentRewriter(
    RewritePolicy.parse(REWRITE_POLICY), rewrite_css=REWRITE_CSS_URLS
)


def get_proxy_origin(request: Request) -> str:
    """Origin that rewritten URLs point back to."""
    if PUBLIC_URL:
        return PUBLIC_URL
    return str(request.base_url).rstrip("/")


def build_rewrite_context(request: Request, final_url: str) -> RewriteContext:
    return RewriteContext(
        target_url=final_url,
        proxy_origin=get_proxy_origin(request),
        proxy_path=PROXY_PATH,
    )


async def stream_upstream(forwarded: Forwarded) -> AsyncIterator[bytes]:
    """Relay the raw upstream body, closing the upstream however the stream ends."""
    try:
        async for chunk in forwarded.response.aiter_raw():
            yield chunk
    finally:
        await close_forwarded(forwarded)


async def relay_response(
    request: Request, forwarded: Forwarded, span: Optional[trace.Span] = None
) -> Response:
    """
    Build the client response. Rewritable bodies are buffered and rewritten,
    everything else is streamed through as received.
    """
    upstream = forwarded.response
    context = build_rewrite_context(request, str(upstream.url))
    content_type = upstream.headers.get("content-type", "")
    rewrite = (
        request.method != "HEAD"
        and upstream.status_code not in (204, 304)
        and content_rewriter.should_rewrite(content_type)
    )
    headers = sanitize_response_headers(
        upstream.headers.multi_items(),
        rewritten=rewrite,
        context=None if PROXY_FOLLOW_REDIRECTS else context,
    )
    if span is not None:
        span.set_attribute("proxy.status_code", upstream.status_code)
        span.set_attribute("proxy.rewritten", rewrite)

    if rewrite:
        try:
            body = await upstream.aread()
        finally:
            await close_forwarded(forwarded)
        content = content_rewriter.rewrite_document(
            body, content_type, context, encoding=upstream.charset_encoding
        )
        response = Response(content=content, status_code=upstream.status_code)
    else:
        response = StreamingResponse(
            stream_upstream(forwarded),
            status_code=upstream.status_code,
            # Covers a body the server never iterates; closing twice is a no-op
            background=BackgroundTask(close_forwarded, forwarded),
        )

    for name, value in headers:
        response.headers.append(name, value)
    return response


async def forward_to_target(request: Request) -> Response:
    """
    Proxy one request to the URL given in the ``url`` query parameter.

    Validation and upstream failures are turned into plain-text error
    responses; upstream statuses are relayed unchanged.
    """
    raw_target = request.query_params.get("url")
    with traced_request(
        tracer,
        operation="proxy_request",
        method=request.method,
        target_url=raw_target,
    ) as span:
        try:
            target = parse_target(raw_target)
            span.set_attribute("proxy.target_host", target.host)
            outbound = build_outbound_request(request, target)
            forwarded = await forward_request(outbound)
            try:
                return await relay_response(request, forwarded, span)
            except Exception:
                await close_forwarded(forwarded)
                raise
        except ProxyError as e:
            span.set_attribute("proxy.error", type(e).__name__)
            return error_response(e)
        except Exception as e:
            span.set_attribute("proxy.error", "unexpected")
            return error_response(e)


@router.api_route(
    PROXY_PATH,
    methods=["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"],
)
async def proxy(request: Request):
    """Fetch ``?url=`` on behalf of the caller."""
    return await forward_to_target(request)
