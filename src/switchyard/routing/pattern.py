"""Path templates: normalization, compilation, matching, and URL building.

A template such as ``/users/{id}/posts/{slug}`` becomes either a static
route (no placeholders, matched by string equality) or a dynamic route
whose matcher is a regex with one named group per placeholder. Each
group's sub-pattern is the placeholder's constraint, or one path
segment (``[^/]+``) when unconstrained.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from switchyard._internal.types import HandlerRef
from switchyard.errors import NamedRouteError, PatternCompilationError

if TYPE_CHECKING:
    from switchyard.routing.declaration import CachePolicy, RateLimit, RouteDeclaration

DEFAULT_CONSTRAINT = r"[^/]+"

PLACEHOLDER = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


def normalize_path(path: str) -> str:
    """Return the canonical form of *path*.

    Always starts with ``/``; never ends with ``/`` except the root::

        "users/"    -> "/users"
        "//a//b/"   -> "/a//b"
        ""          -> "/"
    """
    stripped = path.strip("/")
    return "/" + stripped if stripped else "/"


def is_static(template: str) -> bool:
    """True if *template* has no ``{param}`` placeholders."""
    return "{" not in template


def placeholder_names(template: str) -> tuple[str, ...]:
    """Return placeholder names in template order."""
    return tuple(PLACEHOLDER.findall(template))


def compile_template(
    template: str,
    constraints: Mapping[str, str] | None = None,
    *,
    default_constraint: str = DEFAULT_CONSTRAINT,
) -> re.Pattern[str]:
    """Compile a dynamic *template* to a regex with named groups.

    Literal text between placeholders is escaped. The returned pattern
    is meant for ``fullmatch`` — a path matches only when the whole of
    it is consumed.

    Raises ``PatternCompilationError`` for stray braces, malformed or
    repeated placeholder names, and constraints that are not valid
    regular expressions.
    """
    constraints = constraints or {}
    parts: list[str] = []
    seen: set[str] = set()
    pos = 0

    for m in PLACEHOLDER.finditer(template):
        literal = template[pos : m.start()]
        _check_literal(template, literal)
        parts.append(re.escape(literal))

        name = m.group(1)
        if name in seen:
            raise PatternCompilationError(template, f"parameter {{{name}}} appears twice")
        seen.add(name)

        sub = constraints.get(name, default_constraint)
        try:
            re.compile(sub)
        except re.error as exc:
            raise PatternCompilationError(
                template, f"constraint for {{{name}}} is not a valid regex ({exc})"
            ) from exc
        parts.append(f"(?P<{name}>{sub})")
        pos = m.end()

    tail = template[pos:]
    _check_literal(template, tail)
    parts.append(re.escape(tail))

    try:
        return re.compile("".join(parts))
    except re.error as exc:
        raise PatternCompilationError(template, str(exc)) from exc


def _check_literal(template: str, literal: str) -> None:
    if "{" in literal or "}" in literal:
        raise PatternCompilationError(
            template, "placeholders must look like {name} with name matching [a-zA-Z_][a-zA-Z0-9_]*"
        )


@dataclass(frozen=True, slots=True)
class CompiledRoute:
    """A route ready for matching. Immutable after construction.

    ``matcher`` is ``None`` for static routes, which are looked up by
    exact path instead.
    """

    method: str
    uri: str
    handler: HandlerRef
    name: str | None = None
    constraints: Mapping[str, str] = field(default_factory=dict)
    middleware: tuple[Any, ...] = ()
    rate_limit: RateLimit | None = None
    cache: CachePolicy | None = None
    matcher: re.Pattern[str] | None = None

    @property
    def is_static(self) -> bool:
        return self.matcher is None

    @property
    def param_names(self) -> tuple[str, ...]:
        return placeholder_names(self.uri)

    def match(self, path: str) -> dict[str, str] | None:
        """Return captured parameters if *path* matches, else ``None``.

        Values are always strings; type coercion is the dispatcher's job.
        *path* must already be normalized.
        """
        if self.matcher is None:
            return {} if path == self.uri else None
        m = self.matcher.fullmatch(path)
        if m is None:
            return None
        return {k: v for k, v in m.groupdict().items() if v is not None}

    def build_path(self, params: Mapping[str, Any]) -> str:
        """Substitute *params* into the template (reverse routing).

        Raises ``NamedRouteError`` when a placeholder has no value, or when
        the built path would not match this route again (an empty value,
        a ``/`` in a single-segment parameter, a constraint violation).
        """
        label = self.name or self.uri
        missing = [n for n in self.param_names if n not in params]
        if missing:
            raise NamedRouteError(
                f"Missing route parameters for {label!r}: {', '.join(missing)}"
            )
        if self.matcher is None:
            return self.uri

        values = {name: str(params[name]) for name in self.param_names}
        for name, value in values.items():
            constraint = self.constraints.get(name)
            if constraint is not None and re.fullmatch(constraint, value) is None:
                raise NamedRouteError(
                    f"Parameter {name}={value!r} does not satisfy {constraint!r} for {label!r}"
                )

        raw = PLACEHOLDER.sub(lambda m: values[m.group(1)], self.uri)
        if self.matcher.fullmatch(raw) is None:
            shown = ", ".join(f"{k}={v!r}" for k, v in values.items())
            raise NamedRouteError(f"Parameters {shown} do not form a path matching {label!r}")

        return PLACEHOLDER.sub(lambda m: quote(values[m.group(1)], safe="/"), self.uri)


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful route match."""

    route: CompiledRoute
    path_params: dict[str, str]


def compile_route(
    declaration: RouteDeclaration,
    *,
    default_constraint: str = DEFAULT_CONSTRAINT,
) -> CompiledRoute:
    """Turn a declaration into a ``CompiledRoute``.

    Static templates get no matcher; dynamic ones are compiled here,
    once, at table-build time.
    """
    matcher = None
    if not is_static(declaration.uri):
        matcher = compile_template(
            declaration.uri,
            declaration.where,
            default_constraint=default_constraint,
        )
    elif "}" in declaration.uri:
        raise PatternCompilationError(declaration.uri, "unbalanced '}'")

    return CompiledRoute(
        method=declaration.method,
        uri=declaration.uri,
        handler=declaration.handler,
        name=declaration.name,
        constraints=dict(declaration.where),
        middleware=tuple(declaration.middleware),
        rate_limit=declaration.rate_limit,
        cache=declaration.cache,
        matcher=matcher,
    )
