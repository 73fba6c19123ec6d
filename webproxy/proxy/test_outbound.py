from unittest.mock import Mock

import pytest
from fastapi import Request

from webproxy.proxy.outbound import build_outbound_request, filter_headers
from webproxy.proxy.target import parse_target
from webproxy.vars import DEFAULT_ACCEPT_LANGUAGE, DEFAULT_USER_AGENT


@pytest.fixture
def mock_request():
    """Create a mock FastAPI Request object."""
    request = Mock(spec=Request)
    request.method = "GET"
    request.headers = {
        "host": "proxy.example.com",
        "user-agent": "test-agent",
        "accept": "text/html",
    }
    request.stream = Mock(return_value="body-stream")
    return request


class TestFilterHeaders:
    def test_allow_listed_headers_are_copied(self):
        result = filter_headers(
            {
                "Accept": "text/html",
                "Accept-Language": "de-DE",
                "Accept-Encoding": "gzip",
                "Content-Type": "application/json",
                "User-Agent": "test-agent",
                "Cache-Control": "no-cache",
            },
            "example.org",
        )

        assert result == {
            "accept": "text/html",
            "accept-language": "de-DE",
            "accept-encoding": "gzip",
            "content-type": "application/json",
            "user-agent": "test-agent",
            "cache-control": "no-cache",
            "host": "example.org",
        }

    def test_other_headers_are_dropped(self):
        result = filter_headers(
            {
                "cookie": "session=abc",
                "authorization": "Bearer token123",
                "if-none-match": '"etag"',
                "connection": "keep-alive",
                "x-forwarded-for": "10.0.0.1",
                "referer": "https://proxy.example.com/",
            },
            "example.org",
        )

        assert set(result) == {"host", "user-agent", "accept-language"}

    def test_host_is_overridden(self):
        result = filter_headers({"Host": "proxy.example.com"}, "example.org:8443")

        assert result["host"] == "example.org:8443"

    def test_defaults_injected_when_absent(self):
        result = filter_headers({}, "example.org")

        assert result["user-agent"] == DEFAULT_USER_AGENT
        assert result["accept-language"] == DEFAULT_ACCEPT_LANGUAGE

    def test_defaults_do_not_override_client_values(self):
        result = filter_headers(
            {"User-Agent": "curl/8.0", "Accept-Language": "fr"}, "example.org"
        )

        assert result["user-agent"] == "curl/8.0"
        assert result["accept-language"] == "fr"

    def test_configured_default_user_agent(self, monkeypatch):
        monkeypatch.setattr(
            "webproxy.proxy.outbound.DEFAULT_USER_AGENT", "webproxy-test/1.0"
        )

        assert filter_headers({}, "example.org")["user-agent"] == "webproxy-test/1.0"


class TestBuildOutboundRequest:
    def test_get_has_no_body(self, mock_request):
        target = parse_target("https://example.org/a?b=c")

        outbound = build_outbound_request(mock_request, target)

        assert outbound.method == "GET"
        assert outbound.url == "https://example.org/a?b=c"
        assert outbound.body is None
        assert outbound.headers["host"] == "example.org"
        assert outbound.headers["user-agent"] == "test-agent"
        mock_request.stream.assert_not_called()

    def test_head_has_no_body(self, mock_request):
        mock_request.method = "HEAD"

        outbound = build_outbound_request(mock_request, parse_target("https://example.org"))

        assert outbound.body is None

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH", "OPTIONS"])
    def test_body_stream_attached(self, mock_request, method):
        mock_request.method = method

        outbound = build_outbound_request(mock_request, parse_target("https://example.org"))

        assert outbound.method == method
        assert outbound.body == "body-stream"
        mock_request.stream.assert_called_once()
