"""Declaration loader for JSON route files.

A declaration file is parsed once at startup into ``RouteDeclaration``
values; handlers are named by import string and resolved at dispatch::

    {
      "routes": [
        {"method": "GET", "uri": "/health", "handler": "app.views:health"}
      ],
      "groups": [
        {
          "prefix": "/api",
          "middleware": ["auth:api"],
          "name": "api",
          "routes": [
            {"methods": ["PUT", "PATCH"], "uri": "/users/{id}",
             "handler": "app.controllers:UserController.update",
             "name": "users.update", "where": {"id": "\\\\d+"},
             "rate_limit": {"max_attempts": 60, "per": "minute", "by": "ip"},
             "cache": {"ttl": 300, "tags": ["users"]}}
          ]
        }
      ]
    }
"""

import json
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

from switchyard.errors import ConfigurationError
from switchyard.routing.declaration import (
    CachePolicy,
    RateLimit,
    RouteDeclaration,
    RouteGroup,
    as_methods,
)

_ROUTE_KEYS = frozenset(
    {"method", "methods", "uri", "handler", "name", "where", "middleware", "rate_limit", "cache"}
)


def load_declarations(path: str | Path) -> list[RouteDeclaration]:
    """Read a JSON declaration file and return its declarations in file order.

    Top-level ``routes`` come first, then each group's routes.

    Raises ``ConfigurationError`` if the file is not valid JSON or an
    entry is malformed.
    """
    source = Path(path)
    try:
        document = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        msg = f"{source}: not valid JSON ({exc})"
        raise ConfigurationError(msg) from exc
    return parse_declarations(document, source=str(source))


def parse_declarations(document: Any, *, source: str = "<declarations>") -> list[RouteDeclaration]:
    """Turn an already-parsed declaration document into declarations."""
    if not isinstance(document, Mapping):
        msg = f"{source}: top level must be an object with 'routes' and/or 'groups'"
        raise ConfigurationError(msg)

    declarations = list(_parse_routes(document.get("routes", []), RouteGroup(), f"{source}: routes"))
    for g, group_entry in enumerate(document.get("groups", [])):
        where = f"{source}: groups[{g}]"
        if not isinstance(group_entry, Mapping):
            msg = f"{where} must be an object"
            raise ConfigurationError(msg)
        group = RouteGroup(
            prefix=group_entry.get("prefix"),
            middleware=tuple(group_entry.get("middleware", ())),
            name=group_entry.get("name"),
        )
        declarations.extend(_parse_routes(group_entry.get("routes", []), group, f"{where}.routes"))
    return declarations


def _parse_routes(entries: Any, group: RouteGroup, where: str) -> Iterator[RouteDeclaration]:
    if not isinstance(entries, list):
        msg = f"{where} must be a list"
        raise ConfigurationError(msg)
    for i, entry in enumerate(entries):
        for declaration in _parse_route(entry, f"{where}[{i}]"):
            yield group.apply(declaration)


def _parse_route(entry: Any, where: str) -> list[RouteDeclaration]:
    if not isinstance(entry, Mapping):
        msg = f"{where} must be an object"
        raise ConfigurationError(msg)

    unknown = set(entry) - _ROUTE_KEYS
    if unknown:
        msg = f"{where} has unknown keys: {', '.join(sorted(unknown))}"
        raise ConfigurationError(msg)

    try:
        methods = as_methods(entry.get("methods") or entry["method"])
        uri = entry["uri"]
        handler = entry["handler"]
    except KeyError as exc:
        msg = f"{where} is missing required key {exc.args[0]!r}"
        raise ConfigurationError(msg) from exc

    if not isinstance(handler, str):
        msg = f"{where}.handler must be an import string like 'module:function'"
        raise ConfigurationError(msg)

    try:
        rate_limit = RateLimit.from_dict(entry["rate_limit"]) if entry.get("rate_limit") else None
        cache = CachePolicy.from_dict(entry["cache"]) if entry.get("cache") else None
    except (KeyError, TypeError, ValueError, ConfigurationError) as exc:
        msg = f"{where} has an invalid rate_limit or cache section ({exc})"
        raise ConfigurationError(msg) from exc

    try:
        return [
            RouteDeclaration(
                method=method,
                uri=uri,
                handler=handler,
                name=entry.get("name"),
                where=entry.get("where", {}),
                middleware=tuple(entry.get("middleware", ())),
                rate_limit=rate_limit,
                cache=cache,
            )
            for method in methods
        ]
    except ConfigurationError as exc:
        msg = f"{where}: {exc}"
        raise ConfigurationError(msg) from exc
