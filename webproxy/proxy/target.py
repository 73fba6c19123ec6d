import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from webproxy.proxy.errors import (
    InvalidTargetError,
    MissingTargetError,
    UnsupportedSchemeError,
)

ALLOWED_SCHEMES = ("http", "https")
# Code points a browser refuses in a host name
_FORBIDDEN_HOST_CHARS = re.compile(r"[\x00-\x20\x7f<>\"^|{}\\`%#/?@\[\]]")


@dataclass(frozen=True)
class Target:
    scheme: str
    host: str
    url: str

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.host}"


def parse_target(raw: Optional[str]) -> Target:
    """
    Validate the value of the ``url`` query parameter.

    Raises MissingTargetError when it is absent or blank, InvalidTargetError
    when it is not an absolute URL with a host, and UnsupportedSchemeError
    for anything but http/https.
    """
    if raw is None or not raw.strip():
        raise MissingTargetError()
    raw = raw.strip()

    try:
        parts = urlsplit(raw)
        # Accessing the port validates it
        parts.port
    except ValueError as e:
        raise InvalidTargetError("Invalid target URL: it could not be parsed.") from e

    if not parts.scheme:
        raise InvalidTargetError("Invalid target URL: an absolute URL is required.")
    if parts.scheme not in ALLOWED_SCHEMES:
        raise UnsupportedSchemeError(parts.scheme)
    if not parts.hostname:
        raise InvalidTargetError("Invalid target URL: the host is missing.")
    if _FORBIDDEN_HOST_CHARS.search(parts.hostname):
        raise InvalidTargetError("Invalid target URL: the host is malformed.")

    host = parts.netloc.rpartition("@")[2]
    path = parts.path or "/"
    url = urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))
    return Target(scheme=parts.scheme, host=host, url=url)
