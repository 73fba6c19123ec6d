"""
URL rewriting for proxied HTML and CSS.

Rewriting is textual: tags and CSS ``url(...)`` references are located with
regular expressions, so attribute order, quoting style and intervening
attributes do not matter, but markup inside comments is rewritten too.

Two policies are supported:

* ``full``: every ``src``/``href`` reference and every CSS ``url(...)`` is
  resolved against the document base and routed through the proxy, and a
  navigation interception script is injected before ``</head>``.
* ``base``: a ``<base>`` tag pointing at the target origin is inserted so
  relative references load directly from the origin; only absolute
  ``http(s)://`` references are routed through the proxy.

Both are idempotent: references already containing ``/proxy?url=`` are left
untouched and the base tag / script are only inserted once.
"""

import html
import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from re import Match
from typing import Optional
from urllib.parse import quote, urljoin, urlsplit

from webproxy.proxy.intercept import INTERCEPT_MARKER, build_intercept_script

logger = logging.getLogger("uvicorn.error")

SRC_TAGS = {"img", "script", "iframe", "embed", "audio", "video", "source"}
HREF_TAGS = {"a", "link"}

# Never routed through the proxy
SKIPPED_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "data:")
HTTP_PREFIXES = ("http://", "https://")

_TAG_RE = re.compile(
    r"<(?P<name>img|script|iframe|embed|audio|video|source|a|link)(?=[\s/>])[^>]*>",
    re.IGNORECASE,
)
# One attribute per match; quoted values are consumed whole
_ATTR_RE = re.compile(
    r"(?P<prefix>\s+(?P<attr>[^\s=/>\"']+)\s*=\s*)"
    r"(?:\"(?P<dq>[^\"]*)\"|'(?P<sq>[^']*)'|(?P<uq>[^\s\"'>]+))"
    r"|\s+[^\s=/>\"']+"
)

_BASE_TAG_RE = re.compile(r"<base(?=[\s/>])[^>]*>", re.IGNORECASE)
_HEAD_OPEN_RE = re.compile(r"<head(?=[\s>])[^>]*>", re.IGNORECASE)
_HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)

_STYLE_BLOCK_RE = re.compile(
    r"(?P<open><style(?=[\s>])[^>]*>)(?P<css>.*?)(?P<close></style\s*>)",
    re.IGNORECASE | re.DOTALL,
)
_STYLE_ATTR_RE = re.compile(
    r"(?P<prefix>\sstyle\s*=\s*)(?:\"(?P<dq>[^\"]*)\"|'(?P<sq>[^']*)')",
    re.IGNORECASE,
)
_CSS_URL_RE = re.compile(
    r"url\(\s*(?:\"(?P<dq>[^\"]*)\"|'(?P<sq>[^']*)'|(?P<uq>[^)\"'\s]*))\s*\)",
    re.IGNORECASE,
)
_CSS_IMPORT_RE = re.compile(
    r"(?P<prefix>@import\s+)(?P<q>[\"'])(?P<value>[^\"']+)(?P=q)", re.IGNORECASE
)


class RewritePolicy(str, Enum):
    FULL_INTERCEPT = "full"
    CONSERVATIVE_BASE = "base"

    @classmethod
    def parse(cls, value: str) -> "RewritePolicy":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown rewrite policy {value!r}, expected 'full' or 'base'"
            ) from None


@dataclass(frozen=True)
class RewriteContext:
    """Everything needed to turn a reference into a proxied URL."""

    target_url: str
    proxy_origin: str
    proxy_path: str = "/proxy"

    @property
    def marker(self) -> str:
        return f"{self.proxy_path}?url="

    @property
    def proxy_endpoint(self) -> str:
        return f"{self.proxy_origin}{self.marker}"

    @property
    def origin(self) -> str:
        parts = urlsplit(self.target_url)
        return f"{parts.scheme}://{parts.netloc.rpartition('@')[2]}"

    def wrap(self, absolute_url: str) -> str:
        return self.proxy_endpoint + quote(absolute_url, safe="")

    def with_base(self, base_url: str) -> "RewriteContext":
        return replace(self, target_url=base_url)


def proxy_reference(
    value: str, context: RewriteContext, resolve: bool = True
) -> Optional[str]:
    """
    Return the proxied form of one reference, or None to leave it as is.

    With ``resolve`` the reference is resolved against ``context.target_url``
    first; otherwise only absolute http(s) URLs are proxied. A reference that
    cannot be parsed is left alone.
    """
    reference = html.unescape(value).strip()
    if not reference or context.marker in reference:
        return None
    lowered = reference.lower()
    if lowered.startswith(SKIPPED_PREFIXES):
        return None

    if resolve:
        try:
            absolute = urljoin(context.target_url, reference)
        except ValueError:
            logger.debug(f"[Rewrite] Leaving malformed reference untouched: {reference[:100]}")
            return None
    else:
        absolute = reference

    if not absolute.lower().startswith(HTTP_PREFIXES):
        return None
    return context.wrap(absolute)


def _quoted(match: Match, new_value: str) -> str:
    if match.group("dq") is not None:
        return f'"{new_value}"'
    if match.group("sq") is not None:
        return f"'{new_value}'"
    return new_value


def _match_value(match: Match) -> str:
    for group in ("dq", "sq", "uq"):
        value = match.group(group)
        if value is not None:
            return value
    return ""


def _find_attr(tag: str, name: str, start: int = 0) -> Optional[Match]:
    """First ``name=value`` attribute of a tag, walking attributes in order."""
    for match in _ATTR_RE.finditer(tag, start):
        attr = match.group("attr")
        if attr is not None and attr.lower() == name:
            return match
    return None


def rewrite_css(css: str, context: RewriteContext) -> str:
    """Proxy every ``url(...)`` and ``@import "..."`` reference in CSS text."""

    def replace_url(match: Match) -> str:
        value = _match_value(match)
        if match.group("uq") is not None:
            # Entity-quoted values from style attributes, e.g. url(&quot;a.png&quot;)
            value = html.unescape(value).strip("\"'")
        proxied = proxy_reference(value, context)
        if proxied is None:
            return match.group(0)
        return f"url({_quoted(match, proxied)})"

    def replace_import(match: Match) -> str:
        proxied = proxy_reference(match.group("value"), context)
        if proxied is None:
            return match.group(0)
        q = match.group("q")
        return f"{match.group('prefix')}{q}{proxied}{q}"

    css = _CSS_URL_RE.sub(replace_url, css)
    return _CSS_IMPORT_RE.sub(replace_import, css)


class ContentRewriter:
    """Rewrites documents according to the policy chosen at construction."""

    def __init__(self, policy: RewritePolicy, rewrite_css: bool = True):
        self.policy = policy
        self.css_enabled = rewrite_css

    @property
    def resolves_relative(self) -> bool:
        return self.policy is RewritePolicy.FULL_INTERCEPT

    def should_rewrite(self, content_type: Optional[str]) -> bool:
        content_type = (content_type or "").lower()
        if "text/html" in content_type:
            return True
        return (
            self.resolves_relative and self.css_enabled and "text/css" in content_type
        )

    def rewrite_document(
        self,
        content: bytes,
        content_type: Optional[str],
        context: RewriteContext,
        encoding: Optional[str] = None,
    ) -> bytes:
        """Decode, rewrite and re-encode a response body."""
        codec = encoding or "utf-8"
        try:
            text = content.decode(codec, errors="replace")
        except LookupError:
            codec = "utf-8"
            text = content.decode(codec, errors="replace")

        if "text/html" in (content_type or "").lower():
            text = self.rewrite_html(text, context)
        else:
            text = rewrite_css(text, context)
        return text.encode(codec, errors="replace")

    def rewrite_html(self, document: str, context: RewriteContext) -> str:
        if self.resolves_relative:
            return self._rewrite_full(document, context)
        return self._rewrite_conservative(document, context)

    def _rewrite_tags(self, document: str, context: RewriteContext) -> str:
        resolve = self.resolves_relative

        def replace_tag(tag_match: Match) -> str:
            tag = tag_match.group(0)
            name = tag_match.group("name").lower()
            wanted = "src" if name in SRC_TAGS else "href"
            attr_match = _find_attr(tag, wanted, tag_match.end("name") - tag_match.start())
            if attr_match is None:
                return tag
            proxied = proxy_reference(_match_value(attr_match), context, resolve)
            if proxied is None:
                return tag
            return (
                tag[: attr_match.start()]
                + attr_match.group("prefix")
                + _quoted(attr_match, proxied)
                + tag[attr_match.end() :]
            )

        return _TAG_RE.sub(replace_tag, document)

    def _document_base(self, document: str, context: RewriteContext) -> RewriteContext:
        base_tag = _BASE_TAG_RE.search(document)
        if not base_tag:
            return context
        href = _find_attr(base_tag.group(0), "href")
        if not href:
            return context
        try:
            base = urljoin(context.target_url, html.unescape(_match_value(href)).strip())
        except ValueError:
            return context
        if context.marker in base or not base.lower().startswith(HTTP_PREFIXES):
            return context
        return context.with_base(base)

    def _rewrite_full(self, document: str, context: RewriteContext) -> str:
        context = self._document_base(document, context)
        document = self._rewrite_tags(document, context)

        if self.css_enabled:

            def replace_block(match: Match) -> str:
                return (
                    match.group("open")
                    + rewrite_css(match.group("css"), context)
                    + match.group("close")
                )

            def replace_style_attr(match: Match) -> str:
                css = _match_value(match)
                rewritten = rewrite_css(css, context)
                if rewritten == css:
                    return match.group(0)
                return match.group("prefix") + _quoted(match, rewritten)

            document = _STYLE_BLOCK_RE.sub(replace_block, document)
            document = _STYLE_ATTR_RE.sub(replace_style_attr, document)

        if INTERCEPT_MARKER not in document:
            script = build_intercept_script(context)
            head_close = _HEAD_CLOSE_RE.search(document)
            if head_close:
                position = head_close.start()
                document = document[:position] + script + document[position:]
            else:
                document = document + script
        return document

    def _rewrite_conservative(self, document: str, context: RewriteContext) -> str:
        if not _BASE_TAG_RE.search(document):
            base_tag = f'<base href="{html.escape(context.origin, quote=True)}/">'
            document = _HEAD_OPEN_RE.sub(
                lambda match: match.group(0) + base_tag, document, count=1
            )
        return self._rewrite_tags(document, context)
