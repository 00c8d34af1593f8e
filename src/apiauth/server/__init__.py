"""ApiAuth server components."""

from apiauth.server.middleware import HmacAuthMiddleware, ResponseContentMd5Middleware

__all__ = [
    "HmacAuthMiddleware",
    "ResponseContentMd5Middleware",
]
