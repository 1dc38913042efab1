"""Middleware — Protocol-based, no inheritance required.

A middleware is any callable matching:
    def mw(ctx: RequestContext, next: Next) -> Any

Middleware is composed by ``MiddlewarePipeline``: global middleware
first, then the route's own, each wrapping the next like onion layers
around the handler.
"""

from switchyard.middleware.pipeline import MiddlewarePipeline, ResolvedMiddleware
from switchyard.middleware.protocol import Middleware, Next

__all__ = [
    "Middleware",
    "MiddlewarePipeline",
    "Next",
    "ResolvedMiddleware",
]
