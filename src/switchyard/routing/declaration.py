"""Route declarations — the input the route table is built from.

Declarations are plain frozen values. They can come from decorators on
the router, from a JSON declaration file (``switchyard.loader``), or be
constructed directly; the table does not care which.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, TypeAlias

from switchyard._internal.types import HandlerRef
from switchyard.errors import ConfigurationError
from switchyard.routing.pattern import normalize_path

if TYPE_CHECKING:
    from switchyard.http.request import RequestContext

METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH"})

# Named rate-limit periods, in seconds
PERIODS: dict[str, int] = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}

# Partition-key selectors understood by the rate limiter
SELECTORS = frozenset({"ip", "user_id", "api_key"})

# A middleware reference: an alias name (optionally "name:param"), an
# import string, or a middleware callable.
MiddlewareRef: TypeAlias = str | Callable[..., Any]


@dataclass(frozen=True, slots=True)
class RateLimit:
    """Fixed-window limit for one route.

    ``per`` is a named period (``"second"``, ``"minute"``, ``"hour"``,
    ``"day"``) or a number of seconds. Unknown period names fall back to
    one minute. ``by`` selects the partition key: ``ip``, ``user_id``,
    or ``api_key``::

        RateLimit(60)                          # 60 per minute per IP
        RateLimit(1000, per="day", by="user_id")
        RateLimit(5, per=10)                   # 5 per 10 seconds
    """

    max_attempts: int
    per: str | int = "minute"
    by: str = "ip"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"RateLimit.max_attempts must be at least 1, got {self.max_attempts}"
            raise ConfigurationError(msg)
        if self.by not in SELECTORS:
            msg = f"RateLimit.by must be one of {sorted(SELECTORS)}, got {self.by!r}"
            raise ConfigurationError(msg)
        if isinstance(self.per, int) and self.per < 1:
            msg = f"RateLimit.per must be a positive number of seconds, got {self.per}"
            raise ConfigurationError(msg)

    @property
    def window_seconds(self) -> int:
        if isinstance(self.per, int):
            return self.per
        return PERIODS.get(self.per, 60)

    def to_dict(self) -> dict[str, Any]:
        return {"max_attempts": self.max_attempts, "per": self.per, "by": self.by}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RateLimit:
        return cls(
            max_attempts=int(data["max_attempts"]),
            per=data.get("per", "minute"),
            by=data.get("by", "ip"),
        )


@dataclass(frozen=True, slots=True)
class CachePolicy:
    """Response-cache hints carried on a route.

    The router does not store responses; it exposes the policy on the
    match so a caching layer can act on it.
    """

    ttl: int
    tags: tuple[str, ...] = ()
    vary: tuple[str, ...] = ()
    key: str | None = None

    def cache_key(self, ctx: RequestContext) -> str:
        """Return the cache key for *ctx*.

        An explicit ``key`` wins. Otherwise the key hashes the method,
        path, and the values of every ``vary`` header.
        """
        if self.key:
            return self.key
        parts = [ctx.method, ctx.path, *(ctx.headers.get(h, "") or "" for h in self.vary)]
        digest = hashlib.md5(":".join(parts).encode(), usedforsecurity=False).hexdigest()
        return f"cache:{digest}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "ttl": self.ttl,
            "tags": list(self.tags),
            "vary": list(self.vary),
            "key": self.key,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CachePolicy:
        return cls(
            ttl=int(data["ttl"]),
            tags=tuple(data.get("tags", ())),
            vary=tuple(data.get("vary", ())),
            key=data.get("key"),
        )


@dataclass(frozen=True, slots=True)
class RouteDeclaration:
    """One (method, URI template) → handler mapping.

    ``method`` is upper-cased and ``uri`` normalized on construction.
    ``where`` maps placeholder names to regex constraints.
    ``middleware`` is in execution order: group/inherited references
    first, then the route's own.
    """

    method: str
    uri: str
    handler: HandlerRef
    name: str | None = None
    where: Mapping[str, str] = field(default_factory=dict)
    middleware: tuple[MiddlewareRef, ...] = ()
    rate_limit: RateLimit | None = None
    cache: CachePolicy | None = None

    def __post_init__(self) -> None:
        method = self.method.upper()
        if method not in METHODS:
            msg = f"Unsupported HTTP method {self.method!r} for {self.uri!r}. Use one of {sorted(METHODS)}."
            raise ConfigurationError(msg)
        if not (callable(self.handler) or isinstance(self.handler, str)):
            msg = f"Handler for {method} {self.uri!r} must be a callable or an import string"
            raise ConfigurationError(msg)
        object.__setattr__(self, "method", method)
        object.__setattr__(self, "uri", normalize_path(self.uri))
        object.__setattr__(self, "where", dict(self.where))
        object.__setattr__(self, "middleware", tuple(self.middleware))


@dataclass(frozen=True, slots=True)
class RouteGroup:
    """Shared prefix, middleware, and name prefix for a set of routes.

    Applying a group to a declaration::

        group = RouteGroup(prefix="/api", middleware=("auth",), name="api")
        group.apply(RouteDeclaration("GET", "/users", h, name="users.index"))
        # -> GET /api/users, middleware ("auth",), name "api.users.index"
    """

    prefix: str | None = None
    middleware: tuple[MiddlewareRef, ...] = ()
    name: str | None = None

    def apply(self, declaration: RouteDeclaration) -> RouteDeclaration:
        uri = declaration.uri
        if self.prefix and self.prefix.strip("/"):
            uri = normalize_path(self.prefix.strip("/") + "/" + declaration.uri.strip("/"))

        name = declaration.name
        if self.name and name:
            name = f"{self.name}.{name}"

        return replace(
            declaration,
            uri=uri,
            name=name,
            middleware=(*self.middleware, *declaration.middleware),
        )

    def nest(self, child: RouteGroup) -> RouteGroup:
        """Combine with an inner group; the outer group's settings come first."""
        prefix = "/".join(p.strip("/") for p in (self.prefix, child.prefix) if p and p.strip("/"))
        if self.name and child.name:
            name: str | None = f"{self.name}.{child.name}"
        else:
            name = self.name or child.name
        return RouteGroup(
            prefix=prefix or None,
            middleware=(*self.middleware, *child.middleware),
            name=name,
        )


def as_methods(methods: str | Sequence[str]) -> tuple[str, ...]:
    """Accept ``"GET"`` or ``["GET", "POST"]``; return upper-cased methods."""
    if isinstance(methods, str):
        return (methods.upper(),)
    return tuple(m.upper() for m in methods)
