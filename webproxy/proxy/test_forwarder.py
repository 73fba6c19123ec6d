import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from httpx import AsyncClient, ConnectError, ReadTimeout

from webproxy.proxy.errors import UpstreamTimeoutError, UpstreamUnreachableError
from webproxy.proxy.forwarder import close_forwarded, forward_request
from webproxy.proxy.outbound import OutboundRequest


def _outbound(method="GET", body=None):
    return OutboundRequest(
        method=method,
        url="https://example.org/page?q=1",
        headers={"host": "example.org", "user-agent": "test-agent"},
        body=body,
    )


def _upstream_response(status_code=200, headers=None, body=b"hello"):
    return httpx.Response(
        status_code,
        headers=headers or {"content-type": "text/plain"},
        stream=httpx.ByteStream(body),
    )


class TestForwardRequest:
    @pytest.mark.asyncio
    async def test_returns_open_response(self):
        response = _upstream_response()

        with patch.object(AsyncClient, "send", new_callable=AsyncMock) as mock_send:
            mock_send.return_value = response

            forwarded = await forward_request(_outbound())

        assert forwarded.response is response
        assert not forwarded.client.is_closed
        sent = mock_send.call_args.args[0]
        assert sent.method == "GET"
        assert str(sent.url) == "https://example.org/page?q=1"
        assert sent.headers["host"] == "example.org"
        assert mock_send.call_args.kwargs["stream"] is True

        await close_forwarded(forwarded)
        assert forwarded.client.is_closed
        assert response.is_closed

    @pytest.mark.asyncio
    async def test_client_default_headers_not_added(self):
        with patch.object(AsyncClient, "send", new_callable=AsyncMock) as mock_send:
            mock_send.return_value = _upstream_response()

            forwarded = await forward_request(_outbound())

        sent = mock_send.call_args.args[0]
        assert "accept" not in sent.headers
        assert "accept-encoding" not in sent.headers
        assert "connection" not in sent.headers
        assert sent.headers["user-agent"] == "test-agent"
        await close_forwarded(forwarded)

    @pytest.mark.asyncio
    async def test_caller_accept_encoding_kept(self):
        outbound = OutboundRequest(
            method="GET",
            url="https://example.org/",
            headers={
                "host": "example.org",
                "user-agent": "test-agent",
                "accept": "text/html",
                "accept-encoding": "br",
            },
            body=None,
        )

        with patch.object(AsyncClient, "send", new_callable=AsyncMock) as mock_send:
            mock_send.return_value = _upstream_response()

            forwarded = await forward_request(outbound)

        sent = mock_send.call_args.args[0]
        assert sent.headers["accept"] == "text/html"
        assert sent.headers["accept-encoding"] == "br"
        await close_forwarded(forwarded)

    @pytest.mark.asyncio
    async def test_streams_request_body(self):
        async def body():
            yield b"part-1;"
            yield b"part-2"

        with patch.object(AsyncClient, "send", new_callable=AsyncMock) as mock_send:
            mock_send.return_value = _upstream_response(status_code=201)

            forwarded = await forward_request(_outbound("POST", body()))

        sent = mock_send.call_args.args[0]
        assert sent.method == "POST"
        assert await sent.aread() == b"part-1;part-2"
        await close_forwarded(forwarded)

    @pytest.mark.asyncio
    async def test_single_attempt_only(self):
        with patch.object(AsyncClient, "send", new_callable=AsyncMock) as mock_send:
            mock_send.side_effect = ConnectError("Connection refused")

            with pytest.raises(UpstreamUnreachableError):
                await forward_request(_outbound())

        assert mock_send.await_count == 1

    @pytest.mark.asyncio
    async def test_timeout_cancels_in_flight_call(self, monkeypatch):
        monkeypatch.setattr("webproxy.proxy.forwarder.PROXY_TIMEOUT", 0.05)
        cancelled = []

        async def slow_send(*args, **kwargs):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        with patch.object(AsyncClient, "send", new=slow_send), patch.object(
            AsyncClient, "aclose", new_callable=AsyncMock
        ) as mock_close:
            for _ in range(3):
                with pytest.raises(UpstreamTimeoutError) as exc_info:
                    await forward_request(_outbound())
                assert exc_info.value.status_code == 504

        assert len(cancelled) == 3
        assert mock_close.await_count == 3

    @pytest.mark.asyncio
    async def test_transport_timeout(self):
        with patch.object(AsyncClient, "send", new_callable=AsyncMock) as mock_send:
            mock_send.side_effect = ReadTimeout("Read timed out")

            with pytest.raises(UpstreamTimeoutError):
                await forward_request(_outbound())

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            ConnectError("Connection refused"),
            httpx.ConnectError("[Errno -2] Name or service not known"),
            httpx.RemoteProtocolError("Server disconnected"),
            httpx.TooManyRedirects("Exceeded maximum allowed redirects."),
        ],
    )
    async def test_transport_errors_are_unreachable(self, error):
        with patch.object(AsyncClient, "send", new_callable=AsyncMock) as mock_send, patch.object(
            AsyncClient, "aclose", new_callable=AsyncMock
        ) as mock_close:
            mock_send.side_effect = error

            with pytest.raises(UpstreamUnreachableError) as exc_info:
                await forward_request(_outbound())

        assert exc_info.value.status_code == 502
        assert "example.org" in exc_info.value.message
        assert "q=1" not in exc_info.value.message
        mock_close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self):
        with patch.object(AsyncClient, "send", new_callable=AsyncMock) as mock_send, patch.object(
            AsyncClient, "aclose", new_callable=AsyncMock
        ) as mock_close:
            mock_send.side_effect = RuntimeError("boom")

            with pytest.raises(RuntimeError):
                await forward_request(_outbound())

        mock_close.assert_awaited_once()
