"""Middleware pipeline — alias table, global middleware, onion composition.

References are resolved when a request runs, not when routes are
declared, so aliases may be registered after the routes that use them.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from switchyard._internal.imports import import_string
from switchyard.context import middleware_param_var
from switchyard.errors import MiddlewareResolutionError
from switchyard.http.request import RequestContext
from switchyard.middleware.protocol import Next
from switchyard.routing.declaration import MiddlewareRef


@dataclass(frozen=True, slots=True)
class ResolvedMiddleware:
    """A middleware reference after alias and import resolution.

    ``param`` is the ``:``-suffix of the reference (``"api"`` for
    ``"auth:api"``), exposed to the middleware through
    ``switchyard.context.middleware_param()`` while it runs.
    """

    func: Callable[[RequestContext, Next], Any]
    label: str
    param: str | None = None


class MiddlewarePipeline:
    """Global middleware plus a name → middleware alias table.

    Usage::

        pipeline = MiddlewarePipeline()
        pipeline.add_global(log_requests)
        pipeline.alias("auth", "myapp.middleware:RequireUser")

        result = pipeline.execute(["auth:admin"], handler, ctx)
    """

    __slots__ = ("_aliases", "_globals")

    def __init__(self) -> None:
        self._globals: list[MiddlewareRef] = []
        self._aliases: dict[str, MiddlewareRef] = {}

    def add_global(self, *refs: MiddlewareRef) -> None:
        """Append middleware that runs, outermost first, on every route."""
        self._globals.extend(refs)

    def alias(self, name: str, target: MiddlewareRef) -> None:
        """Register *name* as a short reference to *target*.

        *target* is a middleware callable, a middleware class (instantiated
        without arguments per request), or a ``"module:attr"`` string.
        """
        self._aliases[name] = target

    @property
    def globals(self) -> tuple[MiddlewareRef, ...]:
        return tuple(self._globals)

    @property
    def aliases(self) -> dict[str, MiddlewareRef]:
        return dict(self._aliases)

    def resolve(self, ref: MiddlewareRef) -> ResolvedMiddleware:
        """Resolve one reference to a callable.

        String references are looked up as, in order: an alias; an alias
        with a ``:param`` suffix; an import string. Anything else is a
        ``MiddlewareResolutionError``.
        """
        if not isinstance(ref, str):
            return ResolvedMiddleware(func=_as_callable(ref, repr(ref)), label=_label(ref))

        param: str | None = None
        target: MiddlewareRef | None = self._aliases.get(ref)
        if target is None and ":" in ref:
            head, _, suffix = ref.partition(":")
            if head in self._aliases:
                target, param = self._aliases[head], suffix
        if target is None:
            target = ref

        if isinstance(target, str):
            try:
                target = import_string(target)
            except (ImportError, AttributeError, ValueError) as exc:
                msg = f"Middleware {ref!r} is not a registered alias or an importable 'module:attr'"
                raise MiddlewareResolutionError(msg) from exc

        return ResolvedMiddleware(func=_as_callable(target, ref), label=ref, param=param)

    def execute(
        self,
        refs: Iterable[MiddlewareRef],
        terminal: Callable[[RequestContext], Any],
        ctx: RequestContext,
    ) -> Any:
        """Run ``globals + refs`` around *terminal* and return the result.

        Every reference is resolved before anything runs. Layers are
        wrapped right to left so ``chain[0]`` runs first and *terminal*
        runs only if every layer calls ``next``.
        """
        chain = [self.resolve(ref) for ref in (*self._globals, *refs)]

        handler: Next = terminal
        for mw in reversed(chain):
            outer = handler

            def layer(
                req: RequestContext, _mw: ResolvedMiddleware = mw, _next: Next = outer
            ) -> Any:
                token = middleware_param_var.set(_mw.param)
                try:
                    return _mw.func(req, _next)
                finally:
                    middleware_param_var.reset(token)

            handler = layer

        return handler(ctx)


def _as_callable(target: Any, ref: str) -> Callable[[RequestContext, Next], Any]:
    if isinstance(target, type):
        try:
            target = target()
        except TypeError as exc:
            msg = f"Middleware class for {ref!r} must be constructible without arguments"
            raise MiddlewareResolutionError(msg) from exc

    handle = getattr(target, "handle", None)
    if callable(handle):
        return handle
    if callable(target):
        return target

    msg = f"Middleware {ref!r} resolved to {type(target).__name__}, which is not callable"
    raise MiddlewareResolutionError(msg)


def _label(func: Any) -> str:
    return getattr(func, "__qualname__", None) or type(func).__name__
