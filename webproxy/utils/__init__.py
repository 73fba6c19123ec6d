import re
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def redact_url(url: Optional[str]) -> str:
    """Drop credentials, query and fragment so a URL is safe to log."""
    if not url:
        return "<empty>"
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<unparseable url>"
    host = parts.netloc.rpartition("@")[2]
    redacted = urlunsplit((parts.scheme, host, parts.path, "", ""))
    if parts.query:
        redacted += "?<redacted>"
    return redacted


def safe_text(value: Optional[str], limit: int = 200) -> str:
    """Strip control characters (CR/LF included) and cap the length of
    caller-controlled text before it is echoed in a response body."""
    if value is None:
        return ""
    cleaned = _CONTROL_CHARS.sub("", str(value))
    if len(cleaned) > limit:
        cleaned = cleaned[:limit] + "..."
    return cleaned
