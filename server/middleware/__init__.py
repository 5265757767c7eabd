"""
Middleware components for the Exploding Kittens server.

Provides:
- NoCacheMiddleware: Disables HTTP caching of API responses
"""

from .cache_control import NoCacheMiddleware

__all__ = [
    "NoCacheMiddleware",
]
