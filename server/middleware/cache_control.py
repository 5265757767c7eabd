"""
Cache-control middleware for FastAPI.

Game state changes every few seconds, so no HTTP response (room listings,
stats, health) may be served from a browser or proxy cache.
"""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
}


class NoCacheMiddleware(BaseHTTPMiddleware):
    """HTTP middleware that marks every response as uncacheable."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        for header, value in NO_CACHE_HEADERS.items():
            response.headers[header] = value
        return response
