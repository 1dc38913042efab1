"""Route table with hash lookup for static routes and ordered scans for dynamic ones.

Routes are added while the table is built and never mutated afterwards.
Static routes live in a ``method -> path -> route`` dict, so exact
lookups cost one hash probe no matter how many routes exist. Dynamic
routes live in per-method lists kept in registration order, which is
also their match priority.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from typing import Any

from switchyard._internal.imports import object_path
from switchyard.errors import ConfigurationError, MethodNotAllowed, RouteNotFound
from switchyard.routing.declaration import CachePolicy, RateLimit
from switchyard.routing.pattern import CompiledRoute, RouteMatch

logger = logging.getLogger("switchyard.router")

SNAPSHOT_VERSION = 1


class RouteTable:
    """Registry of compiled routes.

    Usage::

        table = RouteTable()
        table.add(compile_route(RouteDeclaration("GET", "/users", list_users)))
        table.add(compile_route(RouteDeclaration("GET", "/users/{id}", show_user)))
        match = table.match("GET", "/users/42")
    """

    __slots__ = ("_all", "_dynamic", "_named", "_static")

    def __init__(self) -> None:
        # Exact matches: method -> {path -> route}
        self._static: dict[str, dict[str, CompiledRoute]] = {}
        # Pattern matches: method -> [route, ...] in registration order
        self._dynamic: dict[str, list[CompiledRoute]] = {}
        # Named routes: name -> route
        self._named: dict[str, CompiledRoute] = {}
        # Every route, in registration order
        self._all: list[CompiledRoute] = []

    def add(self, route: CompiledRoute) -> None:
        """Add a compiled route.

        The first static route registered for a (method, path) pair wins;
        later duplicates are kept in ``all()`` but never matched. A name
        that is already taken is re-pointed at the new route.
        """
        if route.is_static:
            by_path = self._static.setdefault(route.method, {})
            existing = by_path.setdefault(route.uri, route)
            if existing is not route:
                logger.warning(
                    "Duplicate route %s %s ignored; the first registration wins",
                    route.method,
                    route.uri,
                )
        else:
            self._dynamic.setdefault(route.method, []).append(route)

        if route.name:
            previous = self._named.get(route.name)
            if previous is not None and previous is not route:
                logger.warning(
                    "Route name %r re-pointed from %s %s to %s %s",
                    route.name,
                    previous.method,
                    previous.uri,
                    route.method,
                    route.uri,
                )
            self._named[route.name] = route

        self._all.append(route)

    # -- Lookups --

    def find_exact(self, method: str, path: str) -> CompiledRoute | None:
        """Return the static route for (*method*, *path*), if any."""
        by_path = self._static.get(method)
        if by_path is None:
            return None
        return by_path.get(path)

    def find_dynamic(self, method: str) -> tuple[CompiledRoute, ...]:
        """Return *method*'s dynamic routes in match-priority order."""
        return tuple(self._dynamic.get(method, ()))

    def find_by_name(self, name: str) -> CompiledRoute | None:
        return self._named.get(name)

    def path_exists_for_any_method(self, path: str) -> bool:
        """True if *path* structurally matches some route, ignoring method."""
        return bool(self.allowed_methods(path))

    def allowed_methods(self, path: str) -> frozenset[str]:
        """Return every method under which *path* matches a route."""
        allowed = {method for method, by_path in self._static.items() if path in by_path}
        for method, routes in self._dynamic.items():
            if method in allowed:
                continue
            if any(route.match(path) is not None for route in routes):
                allowed.add(method)
        return frozenset(allowed)

    def match(self, method: str, path: str) -> RouteMatch:
        """Match a normalized *method* and *path*.

        Strict priority: exact static lookup, then the method's dynamic
        routes in registration order, then a cross-method existence check.

        Raises ``MethodNotAllowed`` if the path matches under another
        method only, ``RouteNotFound`` if it matches nothing.
        """
        route = self.find_exact(method, path)
        if route is not None:
            return RouteMatch(route=route, path_params={})

        for route in self._dynamic.get(method, ()):
            params = route.match(path)
            if params is not None:
                return RouteMatch(route=route, path_params=params)

        allowed = self.allowed_methods(path)
        if allowed:
            raise MethodNotAllowed(allowed, f"Method {method} not allowed for {path}")

        raise RouteNotFound(f"Route not found: {method} {path}")

    # -- Introspection --

    def all(self) -> tuple[CompiledRoute, ...]:
        """Return every route in registration order."""
        return tuple(self._all)

    def by_method(self) -> dict[str, list[CompiledRoute]]:
        """Return routes grouped by HTTP method."""
        grouped: dict[str, list[CompiledRoute]] = {}
        for route in self._all:
            grouped.setdefault(route.method, []).append(route)
        return grouped

    def __len__(self) -> int:
        return len(self._all)

    def __iter__(self) -> Iterator[CompiledRoute]:
        return iter(self._all)

    # -- Snapshot --

    def serialize(self) -> dict[str, Any]:
        """Return a JSON-compatible snapshot of the four indices.

        Routes are stored once, in ``all``; the other indices refer to
        them by position. Dynamic routes keep their compiled regex
        source so loading never re-parses templates.

        Raises ``ConfigurationError`` if a handler or middleware cannot
        be expressed as an import string.
        """
        positions = {id(route): i for i, route in enumerate(self._all)}
        return {
            "version": SNAPSHOT_VERSION,
            "all": [_encode_route(route) for route in self._all],
            "static": {
                method: {path: positions[id(route)] for path, route in by_path.items()}
                for method, by_path in self._static.items()
            },
            "dynamic": {
                method: [positions[id(route)] for route in routes]
                for method, routes in self._dynamic.items()
            },
            "named": {name: positions[id(route)] for name, route in self._named.items()},
        }

    @classmethod
    def deserialize(cls, data: dict[str, Any]) -> RouteTable:
        """Rebuild a table from ``serialize()`` output.

        Raises ``ConfigurationError`` if the snapshot is from another
        format version or is malformed.
        """
        version = data.get("version") if isinstance(data, dict) else None
        if version != SNAPSHOT_VERSION:
            msg = f"Unsupported route snapshot version {version!r} (expected {SNAPSHOT_VERSION})"
            raise ConfigurationError(msg)

        table = cls()
        try:
            routes = [_decode_route(entry) for entry in data["all"]]
            table._all = routes
            table._static = {
                method: {path: routes[i] for path, i in by_path.items()}
                for method, by_path in data["static"].items()
            }
            table._dynamic = {
                method: [routes[i] for i in indices] for method, indices in data["dynamic"].items()
            }
            table._named = {name: routes[i] for name, i in data["named"].items()}
        except (KeyError, IndexError, TypeError, ValueError, re.error) as exc:
            msg = f"Malformed route snapshot: {exc}"
            raise ConfigurationError(msg) from exc
        return table


def _reference(obj: Any, what: str, route: CompiledRoute) -> str:
    if isinstance(obj, str):
        return obj
    path = object_path(obj)
    if path is None:
        msg = (
            f"Cannot snapshot {route.method} {route.uri}: {what} {obj!r} has no "
            "importable 'module:qualname'. Use a module-level callable or an import string."
        )
        raise ConfigurationError(msg)
    return path


def _encode_route(route: CompiledRoute) -> dict[str, Any]:
    return {
        "method": route.method,
        "uri": route.uri,
        "handler": _reference(route.handler, "handler", route),
        "name": route.name,
        "where": dict(route.constraints),
        "middleware": [_reference(mw, "middleware", route) for mw in route.middleware],
        "rate_limit": route.rate_limit.to_dict() if route.rate_limit else None,
        "cache": route.cache.to_dict() if route.cache else None,
        "pattern": route.matcher.pattern if route.matcher is not None else None,
    }


def _decode_route(entry: dict[str, Any]) -> CompiledRoute:
    pattern = entry["pattern"]
    return CompiledRoute(
        method=entry["method"],
        uri=entry["uri"],
        handler=entry["handler"],
        name=entry["name"],
        constraints=dict(entry["where"]),
        middleware=tuple(entry["middleware"]),
        rate_limit=RateLimit.from_dict(entry["rate_limit"]) if entry["rate_limit"] else None,
        cache=CachePolicy.from_dict(entry["cache"]) if entry["cache"] else None,
        matcher=re.compile(pattern) if pattern is not None else None,
    )
