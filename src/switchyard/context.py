"""Request-scoped context via ContextVar.

Provides:
- ``request_var``: The current ``RequestContext`` while ``Router.run`` executes.
- ``middleware_param_var``: The ``:``-suffix of the middleware reference
  currently being invoked (``"api"`` for ``"auth:api"``).

Both are set by the router and reset afterwards. Handlers and middleware
normally receive the context explicitly; these exist for helpers deep in
a call stack and for parameterised middleware.

Thread safety:
    ``ContextVar`` is task-local under asyncio and thread-local under
    threads. No locks needed.
"""

from contextvars import ContextVar

from switchyard.http.request import RequestContext

request_var: ContextVar[RequestContext] = ContextVar("switchyard_request")
"""The current request. Set by ``Router.run`` before matching."""

middleware_param_var: ContextVar[str | None] = ContextVar(
    "switchyard_middleware_param", default=None
)
"""Parameter suffix of the middleware now running, or None."""


def get_request() -> RequestContext:
    """Return the current request.

    Raises ``LookupError`` if called outside ``Router.run``.
    """
    return request_var.get()


def middleware_param() -> str | None:
    """Return the parameter the running middleware was referenced with.

    Usage::

        pipeline.alias("auth", require_auth)
        route_middleware = ["auth:api"]

        def require_auth(ctx, next):
            guard = middleware_param()  # "api"
            ...
    """
    return middleware_param_var.get()
