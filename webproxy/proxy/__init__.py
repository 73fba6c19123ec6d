from .errors import (
    ProxyError,
    ClientInputError,
    MissingTargetError,
    InvalidTargetError,
    UnsupportedSchemeError,
    UpstreamTimeoutError,
    UpstreamUnreachableError,
)
from .rewriter import ContentRewriter, RewriteContext, RewritePolicy
from .target import Target, parse_target

__all__ = [
    "ProxyError",
    "ClientInputError",
    "MissingTargetError",
    "InvalidTargetError",
    "UnsupportedSchemeError",
    "UpstreamTimeoutError",
    "UpstreamUnreachableError",
    "ContentRewriter",
    "RewriteContext",
    "RewritePolicy",
    "Target",
    "parse_target",
]
