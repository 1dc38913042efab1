"""Switchyard — an HTTP request router.

Maps (method, path) to a handler, extracts path parameters, runs a
middleware chain, enforces per-route fixed-window rate limits, and can
snapshot the compiled route table to disk.

Basic usage::

    from switchyard import RequestContext, Router

    router = Router()

    @router.get("/users/{id}", name="users.show", where={"id": r"\\d+"})
    def show(id: int):
        return {"id": id}

    response = router.run(RequestContext.build("GET", "/users/42"))
    response.body  # {"id": 42}

Serving over ASGI::

    from switchyard.server.asgi import RouterApp
    app = RouterApp(router)
"""

__version__ = "0.1.0"
__all__ = [
    "CachePolicy",
    "ConfigurationError",
    "HTTPError",
    "HandlerResolutionError",
    "MethodNotAllowed",
    "MiddlewareResolutionError",
    "NamedRouteError",
    "Next",
    "ParameterResolutionError",
    "PatternCompilationError",
    "RateLimit",
    "RateLimitExceeded",
    "RequestContext",
    "Response",
    "RouteDeclaration",
    "RouteNotFound",
    "Router",
    "RouterConfig",
    "SwitchyardError",
    "get_request",
    "middleware_param",
]

_ERRORS = frozenset(
    {
        "ConfigurationError",
        "HTTPError",
        "HandlerResolutionError",
        "MethodNotAllowed",
        "MiddlewareResolutionError",
        "NamedRouteError",
        "ParameterResolutionError",
        "PatternCompilationError",
        "RateLimitExceeded",
        "RouteNotFound",
        "SwitchyardError",
    }
)


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import switchyard`` fast while providing a clean top-level API.
    """
    if name == "Router":
        from switchyard.router import Router

        return Router

    if name == "RouterConfig":
        from switchyard.config import RouterConfig

        return RouterConfig

    if name == "RequestContext":
        from switchyard.http.request import RequestContext

        return RequestContext

    if name == "Response":
        from switchyard.http.response import Response

        return Response

    if name in ("CachePolicy", "RateLimit", "RouteDeclaration"):
        from switchyard.routing import declaration as _decl

        return getattr(_decl, name)

    if name == "Next":
        from switchyard.middleware.protocol import Next

        return Next

    if name in ("get_request", "middleware_param"):
        from switchyard import context as _ctx

        return getattr(_ctx, name)

    if name in _ERRORS:
        from switchyard import errors as _errors

        return getattr(_errors, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
