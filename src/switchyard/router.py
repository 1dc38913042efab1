"""Router facade.

Mutable during setup (route declarations, middleware, aliases, providers).
Built — and from then on read-only — on ``build()`` or on the first
``match()`` / ``run()``.

A request flows: ``match`` (route table) → rate-limit check →
``MiddlewarePipeline.execute`` wrapping ``Dispatcher.dispatch`` → result.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, TypeAlias

from switchyard._internal.types import Handler, Provider
from switchyard.config import RouterConfig
from switchyard.context import request_var
from switchyard.dispatch import Dispatcher
from switchyard.errors import ConfigurationError, HTTPError, NamedRouteError
from switchyard.http.request import RequestContext
from switchyard.http.response import Response
from switchyard.middleware.pipeline import MiddlewarePipeline
from switchyard.ratelimit import RateOutcome, RateWindow, rate_limit_identity
from switchyard.routing.cache import RouteCache
from switchyard.routing.declaration import (
    CachePolicy,
    MiddlewareRef,
    RateLimit,
    RouteDeclaration,
    RouteGroup,
    as_methods,
)
from switchyard.routing.pattern import CompiledRoute, RouteMatch, compile_route, normalize_path
from switchyard.routing.table import RouteTable
from switchyard.server.errors import handle_http_error, handle_internal_error

logger = logging.getLogger("switchyard.router")

DeclarationSource: TypeAlias = Iterable[RouteDeclaration] | Callable[[], Iterable[RouteDeclaration]]


class _RouteDecorators:
    """Decorator surface shared by ``Router`` and group registrars."""

    __slots__ = ()

    def add(self, declaration: RouteDeclaration) -> None:
        raise NotImplementedError

    def route(
        self,
        path: str,
        *,
        methods: str | Sequence[str] = "GET",
        name: str | None = None,
        where: Mapping[str, str] | None = None,
        middleware: Sequence[MiddlewareRef] = (),
        rate_limit: RateLimit | None = None,
        cache: CachePolicy | None = None,
    ) -> Callable[[Handler], Handler]:
        """Register a route handler via decorator.

        Args:
            path: URI template. Use ``{param}`` for path parameters.
            methods: One method or a sequence of methods. Defaults to ``"GET"``.
                Each method becomes its own route declaration.
            name: Optional route name for URL generation.
            where: Regex constraints per parameter, e.g. ``{"id": r"\\d+"}``.
            middleware: Middleware references run after global middleware.
            rate_limit: Optional fixed-window limit for this route.
            cache: Optional response-cache hints exposed on the match.
        """

        def decorator(func: Handler) -> Handler:
            for method in as_methods(methods):
                self.add(
                    RouteDeclaration(
                        method=method,
                        uri=path,
                        handler=func,
                        name=name,
                        where=where or {},
                        middleware=tuple(middleware),
                        rate_limit=rate_limit,
                        cache=cache,
                    )
                )
            return func

        return decorator

    def get(self, path: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(path, methods="GET", **kwargs)

    def post(self, path: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(path, methods="POST", **kwargs)

    def put(self, path: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(path, methods="PUT", **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(path, methods="PATCH", **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(path, methods="DELETE", **kwargs)


class GroupRegistrar(_RouteDecorators):
    """Registers routes on a router through a ``RouteGroup``.

    Usage::

        api = router.group(prefix="/api", middleware=["auth"], name="api")

        @api.get("/users/{id}", name="users.show")  # GET /api/users/{id}, "api.users.show"
        def show(id: int): ...

        admin = api.group(prefix="/admin", middleware=["admin"])
    """

    __slots__ = ("_group", "_router")

    def __init__(self, router: Router, group: RouteGroup) -> None:
        self._router = router
        self._group = group

    def add(self, declaration: RouteDeclaration) -> None:
        self._router.add(self._group.apply(declaration))

    def group(
        self,
        prefix: str | None = None,
        *,
        middleware: Sequence[MiddlewareRef] = (),
        name: str | None = None,
    ) -> GroupRegistrar:
        child = RouteGroup(prefix=prefix, middleware=tuple(middleware), name=name)
        return GroupRegistrar(self._router, self._group.nest(child))


class Router(_RouteDecorators):
    """The switchyard router.

    Usage::

        router = Router()

        @router.get("/users/{id}", name="users.show", where={"id": r"\\d+"})
        def show(id: int):
            return {"id": id}

        router.match("GET", "/users/42")           # RouteMatch(..., {"id": "42"})
        router.run(RequestContext.build("GET", "/users/42"))
        router.url("users.show", {"id": 42})       # "/users/42"

    Thread safety:
        Setup is single-threaded. Building uses a lock with a double check
        so exactly one thread compiles the table, even when several
        request threads trigger the first build at once. Once built, the
        table is only read; ``reload()`` swaps in a complete replacement.
    """

    __slots__ = (
        "_build_lock",
        "_cache",
        "_dispatcher",
        "_pending",
        "_pipeline",
        "_providers",
        "_rate_window",
        "_table",
        "config",
    )

    def __init__(
        self,
        config: RouterConfig | None = None,
        *,
        rate_window: RateWindow | None = None,
    ) -> None:
        self.config: RouterConfig = config or RouterConfig()
        self._pending: list[RouteDeclaration] = []
        self._pipeline = MiddlewarePipeline()
        self._providers: dict[Any, Provider] = {}
        self._dispatcher = Dispatcher(self._providers)
        self._rate_window = rate_window or RateWindow()
        self._cache = RouteCache(self.config.cache_path)
        self._build_lock = threading.Lock()

        # Compiled state, set by build()
        self._table: RouteTable | None = None

    # -- Setup --

    def add(self, declaration: RouteDeclaration) -> None:
        """Queue a declaration for the next build."""
        self._check_not_built()
        self._pending.append(declaration)

    def group(
        self,
        prefix: str | None = None,
        *,
        middleware: Sequence[MiddlewareRef] = (),
        name: str | None = None,
    ) -> GroupRegistrar:
        """Return a registrar applying a shared prefix, middleware, and name prefix."""
        return GroupRegistrar(
            self, RouteGroup(prefix=prefix, middleware=tuple(middleware), name=name)
        )

    def middleware(self, *refs: MiddlewareRef) -> Router:
        """Register global middleware (runs before every route's own)."""
        self._pipeline.add_global(*refs)
        return self

    def alias(self, name: str, target: MiddlewareRef) -> Router:
        """Register a middleware alias. May be called after routes are built."""
        self._pipeline.alias(name, target)
        return self

    def bind(self, annotation: Any, resolver: Provider) -> Router:
        """Register a dependency provider for handler parameters.

        *resolver* is an instance handed over as-is, or a zero-argument
        factory called on every injection::

            router.bind(Database, db)                # instance
            router.bind(UserRepository, make_repo)   # factory
        """
        self._providers[annotation] = resolver
        return self

    @property
    def pipeline(self) -> MiddlewarePipeline:
        return self._pipeline

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def rate_window(self) -> RateWindow:
        return self._rate_window

    # -- Build --

    def build(self, loader: DeclarationSource | None = None) -> Router:
        """Build the route table, or load it from the snapshot.

        With ``cache_enabled`` and a readable snapshot, the snapshot is
        used as-is and *loader* is never consulted. Otherwise *loader*'s
        declarations are compiled after the ones registered on the
        router, and a snapshot is written when caching is enabled.

        Compilation errors are fatal; no route is silently dropped.
        """
        with self._build_lock:
            if self._table is not None:
                msg = "Router is already built. Use reload() to replace the route table."
                raise ConfigurationError(msg)
            self._table = self._load_or_compile(loader)
        return self

    def reload(self, loader: DeclarationSource | None = None) -> Router:
        """Compile a fresh table and publish it in one assignment.

        Requests already holding the previous table finish against it.
        The snapshot is bypassed on load and rewritten when caching is
        enabled.
        """
        table = self._compile(loader)
        if self.config.cache_enabled:
            self._cache.save(table)
        self._table = table
        logger.info("Route table reloaded with %d routes", len(table))
        return self

    def clear_cache(self) -> bool:
        """Delete the route snapshot so the next build recompiles."""
        return self._cache.clear()

    @property
    def table(self) -> RouteTable:
        self._ensure_built()
        assert self._table is not None
        return self._table

    @property
    def routes(self) -> tuple[CompiledRoute, ...]:
        """All compiled routes, in registration order."""
        return self.table.all()

    # -- Request handling --

    def match(self, method: str, uri: str) -> RouteMatch:
        """Match *method* and *uri* (query string allowed) to a route.

        Raises ``RouteNotFound`` or ``MethodNotAllowed``.
        """
        path = normalize_path(uri.partition("?")[0])
        return self.table.match(method.upper(), path)

    def check_rate_limit(self, match: RouteMatch, ctx: RequestContext) -> RateOutcome | None:
        """Count this request against the route's rate limit, if it has one.

        Raises ``RateLimitExceeded`` when over the ceiling.
        """
        policy = match.route.rate_limit
        if policy is None or not self.config.rate_limit_enabled:
            return None
        identity = rate_limit_identity(
            policy,
            ctx,
            match.route,
            trust_forwarded_for=self.config.trust_forwarded_for,
        )
        return self._rate_window.check(identity, policy.max_attempts, policy.window_seconds)

    def dispatch(self, match: RouteMatch, ctx: RequestContext | None = None) -> Any:
        """Run the middleware chain around the matched handler.

        Errors from middleware and handlers propagate to the caller.
        """
        ctx = (ctx or RequestContext(path=match.route.uri)).with_path_params(match.path_params)
        route = match.route
        start = time.perf_counter()

        def terminal(req: RequestContext) -> Any:
            return self._dispatcher.dispatch(route.handler, match.path_params, req)

        result = self._pipeline.execute(route.middleware, terminal, ctx)

        if self.config.debug:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.debug(
                "%s %s -> %s (%.2fms)", ctx.method, ctx.path, _handler_label(route), elapsed_ms
            )
        return result

    def run(self, ctx: RequestContext) -> Response:
        """Handle one request end to end and always return a Response.

        ``RouteNotFound`` → 404, ``MethodNotAllowed`` → 405,
        ``RateLimitExceeded`` → 429 with ``X-RateLimit-*`` and
        ``Retry-After`` headers, anything else → 500. A route table that
        fails to build is not a request error: ``ConfigurationError``
        reaches the caller.
        """
        self._ensure_built()
        token = request_var.set(ctx)
        try:
            match = self.match(ctx.method, ctx.path)
            outcome = self.check_rate_limit(match, ctx)
            result = self.dispatch(match, ctx)
            response = result if isinstance(result, Response) else Response(body=result)
            if outcome is not None:
                response = response.with_headers(dict(outcome.headers()))
        except HTTPError as exc:
            response = handle_http_error(exc, ctx)
        except Exception as exc:
            response = handle_internal_error(exc, ctx, debug=self.config.debug)
        finally:
            request_var.reset(token)
        return response

    # -- URL generation --

    def url(self, name: str, params: Mapping[str, Any] | None = None) -> str:
        """Build the path of the route called *name*.

        Raises ``NamedRouteError`` for an unknown name or missing parameters.
        """
        route = self.table.find_by_name(name)
        if route is None:
            msg = f"Named route not found: {name!r}"
            raise NamedRouteError(msg)
        return route.build_path(params or {})

    # -- Internals --

    def _ensure_built(self) -> None:
        """Thread-safe build with double-check locking."""
        if self._table is not None:
            return
        with self._build_lock:
            if self._table is not None:
                return
            self._table = self._load_or_compile(None)

    def _load_or_compile(self, loader: DeclarationSource | None) -> RouteTable:
        if self.config.cache_enabled:
            cached = self._cache.load()
            if cached is not None:
                return cached

        table = self._compile(loader)
        if self.config.cache_enabled:
            self._cache.save(table)
        logger.info("Route table built with %d routes", len(table))
        return table

    def _compile(self, loader: DeclarationSource | None) -> RouteTable:
        declarations = list(self._pending)
        if loader is not None:
            declarations.extend(loader() if callable(loader) else loader)

        table = RouteTable()
        for declaration in declarations:
            table.add(
                compile_route(declaration, default_constraint=self.config.default_constraint)
            )
        return table

    def _check_not_built(self) -> None:
        if self._table is not None:
            msg = (
                "Cannot add routes after the route table is built. "
                "Declare routes before the first request, or use reload()."
            )
            raise ConfigurationError(msg)


def _handler_label(route: CompiledRoute) -> str:
    handler = route.handler
    if isinstance(handler, str):
        return handler
    return getattr(handler, "__qualname__", None) or repr(handler)
