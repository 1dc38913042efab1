"""Dispatcher — resolves a route's handler and its arguments, then calls it.

Resolution order for each handler parameter:

1. ``RequestContext`` (by annotation, or a parameter named ``ctx`` / ``request``)
2. Path parameters (by name, coerced to the annotated type)
3. Dependency providers (by type annotation, via ``bind()``)
4. The parameter's default value
5. Query, then body parameters from the request context (coerced)

A parameter none of these can satisfy is a ``ParameterResolutionError``.
Coercion never falls back silently: ``"abc"`` for an ``int`` parameter
raises rather than becoming ``0``.
"""

import inspect
import math
import types
import typing
from collections.abc import Callable, Mapping
from typing import Any

from switchyard._internal.imports import import_string, object_path, split_owner
from switchyard._internal.types import HandlerRef, Provider
from switchyard.errors import HandlerResolutionError, ParameterResolutionError
from switchyard.http.request import RequestContext

TRUTHY = frozenset({"1", "true", "yes", "on"})
FALSY = frozenset({"0", "false", "no", "off", ""})

# Annotations coerced from strings rather than looked up as dependencies
PRIMITIVES: frozenset[Any] = frozenset({str, int, float, bool, list, tuple, dict, bytes})

_CONTEXT_NAMES = frozenset({"ctx", "request"})


class Dispatcher:
    """Calls handlers with arguments resolved from the request.

    Usage::

        dispatcher = Dispatcher()
        dispatcher.bind(UserRepository, make_repository)

        def show(id: int, repo: UserRepository, verbose: bool = False): ...

        dispatcher.dispatch(show, {"id": "42"}, ctx)
    """

    __slots__ = ("_providers",)

    def __init__(self, providers: dict[Any, Provider] | None = None) -> None:
        self._providers: dict[Any, Provider] = providers if providers is not None else {}

    def bind(self, annotation: Any, resolver: Provider) -> None:
        """Register a dependency provider for parameters annotated *annotation*.

        *resolver* is either a ready-made instance (an instance of
        *annotation*, or any non-callable object), handed over as-is, or
        a zero-argument factory called for every injection. A factory
        that wants to share one object memoizes it itself.
        """
        self._providers[annotation] = resolver

    def dispatch(
        self,
        handler: HandlerRef,
        params: Mapping[str, str],
        ctx: RequestContext | None = None,
    ) -> Any:
        """Resolve *handler*, build its arguments, call it, and return the result.

        Raises ``HandlerResolutionError`` if *handler* cannot be found and
        ``ParameterResolutionError`` if an argument cannot be resolved.
        Errors raised by the handler itself propagate unchanged.
        """
        ctx = ctx if ctx is not None else RequestContext()
        func = self.resolve_handler(handler, ctx)
        args, kwargs = self.build_arguments(func, params, ctx)
        return func(*args, **kwargs)

    def resolve_handler(self, handler: HandlerRef, ctx: RequestContext) -> Callable[..., Any]:
        """Turn a handler reference into a callable.

        ``"module:function"`` imports the function. ``"module:Class.method"``
        instantiates ``Class`` (constructor arguments resolved like handler
        arguments) and returns the bound method. A plain function defined
        on a class (``UserController.show``) goes the same way as its
        import string, so it behaves identically whether the route came
        from a live declaration or from a snapshot.
        """
        if not isinstance(handler, str):
            member_path = _class_member_path(handler)
            if member_path is None:
                return handler
            handler = member_path

        try:
            target = import_string(handler)
        except (ImportError, AttributeError, ValueError) as exc:
            msg = f"Handler not found: {handler!r} ({exc})"
            raise HandlerResolutionError(msg) from exc

        owner_path, member = split_owner(handler)
        if member is not None:
            owner = import_string(owner_path)
            if isinstance(owner, type) and not isinstance(
                inspect.getattr_static(owner, member, None), (staticmethod, classmethod)
            ):
                instance = self._instantiate(owner, ctx)
                target = getattr(instance, member)

        if not callable(target):
            msg = f"Handler {handler!r} resolved to {type(target).__name__}, which is not callable"
            raise HandlerResolutionError(msg)
        return target

    def build_arguments(
        self,
        func: Callable[..., Any],
        params: Mapping[str, str],
        ctx: RequestContext,
    ) -> tuple[list[Any], dict[str, Any]]:
        """Resolve every parameter of *func*. Returns ``(args, kwargs)``."""
        sig = _signature(func)
        args: list[Any] = []
        kwargs: dict[str, Any] = {}

        for name, param in sig.parameters.items():
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            value = self._resolve_parameter(func, name, param, params, ctx)
            if param.kind is inspect.Parameter.POSITIONAL_ONLY:
                args.append(value)
            else:
                kwargs[name] = value

        return args, kwargs

    def _resolve_parameter(
        self,
        func: Callable[..., Any],
        name: str,
        param: inspect.Parameter,
        params: Mapping[str, str],
        ctx: RequestContext,
    ) -> Any:
        annotation = param.annotation

        if annotation is RequestContext or (
            name in _CONTEXT_NAMES and annotation in (inspect.Parameter.empty, RequestContext)
        ):
            return ctx

        if name in params:
            return _coerce_for(func, name, params[name], annotation)

        if not _is_primitive(annotation):
            provider = self._find_provider(annotation)
            if provider is not None:
                return _provide(provider, annotation)

        if param.default is not inspect.Parameter.empty:
            return param.default

        value = ctx.input(name)
        if value is not None:
            return _coerce_for(func, name, value, annotation)

        msg = f"Cannot resolve parameter {name!r} of {_describe(func)}"
        raise ParameterResolutionError(msg)

    def _find_provider(self, annotation: Any) -> Provider | None:
        if annotation is inspect.Parameter.empty:
            return None
        target = _unwrap_optional(annotation)
        for key in (annotation, target, getattr(target, "__name__", None)):
            if key is not None and key in self._providers:
                return self._providers[key]
        return None

    def _instantiate(self, cls: type, ctx: RequestContext) -> Any:
        args, kwargs = self.build_arguments(cls, {}, ctx)
        return cls(*args, **kwargs)


def coerce(value: Any, annotation: Any) -> Any:
    """Convert a raw parameter value to *annotation*.

    Strings are parsed for ``int``, ``float`` and ``bool``; ``list`` and
    ``tuple`` wrap a scalar; anything unannotated, unions of several
    types, and non-primitive types leave the value as it is.

    Raises ``ValueError`` when the value cannot be converted.
    """
    if annotation is inspect.Parameter.empty or annotation is Any:
        return value

    target = _unwrap_optional(annotation)
    origin = typing.get_origin(target) or target

    if origin is bool:
        return _to_bool(value)
    if origin is int:
        return _to_int(value)
    if origin is float:
        if isinstance(value, bool):
            raise ValueError(f"expected a number, got {value!r}")
        return float(value)
    if origin is str:
        return value if isinstance(value, str) else str(value)
    if origin in (list, tuple):
        items = list(value) if isinstance(value, (list, tuple)) else [value]
        return items if origin is list else tuple(items)
    return value


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except ValueError:
        # "3.7" truncates to 3; "abc", "nan" and "inf" still fail
        number = float(value)
        if not math.isfinite(number):
            raise
        return int(number)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUTHY:
        return True
    if text in FALSY:
        return False
    raise ValueError(f"expected a boolean, got {value!r}")


def _coerce_for(func: Callable[..., Any], name: str, value: Any, annotation: Any) -> Any:
    try:
        return coerce(value, annotation)
    except (ValueError, TypeError) as exc:
        msg = f"Cannot convert {name}={value!r} to {_type_name(annotation)} for {_describe(func)}"
        raise ParameterResolutionError(msg) from exc


def _unwrap_optional(annotation: Any) -> Any:
    """``X | None`` and ``Optional[X]`` become ``X``; other unions stay as they are."""
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        members = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(members) == 1:
            return members[0]
    return annotation


def _is_primitive(annotation: Any) -> bool:
    if annotation is inspect.Parameter.empty or annotation is Any:
        return True
    target = _unwrap_optional(annotation)
    origin = typing.get_origin(target) or target
    return origin in PRIMITIVES or typing.get_origin(target) in (typing.Union, types.UnionType)


def _provide(provider: Provider, annotation: Any) -> Any:
    target = _unwrap_optional(annotation)
    if isinstance(target, type) and isinstance(provider, target):
        return provider
    if callable(provider):
        return provider()
    return provider


def _class_member_path(func: Any) -> str | None:
    """Return ``"module:Class.name"`` if *func* is a function stored on a class."""
    if not inspect.isfunction(func):
        return None
    path = object_path(func)
    if path is None:
        return None
    owner_path, member = split_owner(path)
    if member is None:
        return None
    try:
        owner = import_string(owner_path)
    except (ImportError, AttributeError, ValueError):
        return None
    if not isinstance(owner, type):
        return None
    attr = inspect.getattr_static(owner, member, None)
    if isinstance(attr, (staticmethod, classmethod)):
        attr = attr.__func__
    return path if attr is func else None


def _signature(func: Callable[..., Any]) -> inspect.Signature:
    try:
        return inspect.signature(func, eval_str=True)
    except NameError:
        # Annotation names not importable from the handler's module
        return inspect.signature(func)
    except (TypeError, ValueError) as exc:
        msg = f"Cannot inspect the signature of {_describe(func)}"
        raise HandlerResolutionError(msg) from exc


def _describe(func: Callable[..., Any]) -> str:
    return getattr(func, "__qualname__", None) or repr(func)


def _type_name(annotation: Any) -> str:
    return getattr(annotation, "__name__", None) or str(annotation)
