"""Middleware protocol and Next type alias.

A middleware is any callable matching::

    def my_mw(ctx: RequestContext, next: Next) -> Any: ...

No base class required. The pipeline checks the shape, not the lineage.
Objects exposing ``handle(ctx, next)`` are accepted as well.

Calling ``next(ctx)`` runs the rest of the chain and returns its result.
Returning without calling it short-circuits the chain; whatever the
middleware returns becomes the pipeline's result.
"""

from collections.abc import Callable
from typing import Any, Protocol, TypeAlias

from switchyard.http.request import RequestContext

# The next layer in the middleware chain
Next: TypeAlias = Callable[[RequestContext], Any]


class Middleware(Protocol):
    """Protocol for switchyard middleware.

    Accepts both functions and callable objects::

        # Function middleware
        def timing(ctx: RequestContext, next: Next) -> Any:
            start = time.monotonic()
            result = next(ctx)
            ctx.state["elapsed"] = time.monotonic() - start
            return result

        # Class middleware
        class RequireApiKey:
            def __call__(self, ctx: RequestContext, next: Next) -> Any:
                if "x-api-key" not in ctx.headers:
                    return Response(status=401)
                return next(ctx)
    """

    def __call__(self, ctx: RequestContext, next: Next) -> Any: ...
