import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "webproxy")

PROXY_PATH = "/" + os.getenv("PROXY_PATH", "/proxy").strip("/")
PROXY_TIMEOUT = float(os.getenv("PROXY_TIMEOUT", "30"))
PROXY_FOLLOW_REDIRECTS = (
    os.getenv("PROXY_FOLLOW_REDIRECTS", "true").lower() == "true"
)
# Public-facing origin used in rewritten URLs, e.g. https://proxy.example.com
PUBLIC_URL = os.getenv("PUBLIC_URL", "").rstrip("/")

# "full" rewrites every reference and injects the navigation script,
# "base" only wraps absolute URLs and inserts a <base> tag.
REWRITE_POLICY = os.getenv("REWRITE_POLICY", "full").lower()
REWRITE_CSS_URLS = os.getenv("REWRITE_CSS_URLS", "true").lower() == "true"

DEFAULT_USER_AGENT = os.getenv(
    "DEFAULT_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)
DEFAULT_ACCEPT_LANGUAGE = os.getenv("DEFAULT_ACCEPT_LANGUAGE", "en-US,en;q=0.9")

STATIC_DIR = os.getenv("STATIC_DIR", "")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
