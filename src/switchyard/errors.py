"""Switchyard exception hierarchy.

Shared across the route table, pipeline, dispatcher, and router facade
so every module raises and catches the same types.

Per-request conditions (not found, wrong method, rate limited) are
``HTTPError`` subclasses so the HTTP-facing layer can map them 1:1 to
status codes. Everything else is a setup or resolution failure.
"""

from dataclasses import dataclass


class SwitchyardError(Exception):
    """Base for all switchyard-specific errors."""


class ConfigurationError(SwitchyardError):
    """Raised when router configuration or a route declaration is invalid.

    Typically raised while the route table is being built.
    """


class PatternCompilationError(ConfigurationError):
    """A URI template or a parameter constraint could not be compiled."""

    def __init__(self, template: str, reason: str) -> None:
        self.template = template
        self.reason = reason
        super().__init__(f"Cannot compile route {template!r}: {reason}")


@dataclass(frozen=True, slots=True)
class HTTPError(SwitchyardError):
    """An error that maps directly to an HTTP status code.

    Raised by the router or by handlers. ``Router.run`` catches these
    and turns them into a ``Response`` with the same status and headers.
    """

    status: int
    detail: str = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)


class RouteNotFound(HTTPError):  # noqa: N818
    """404 — no route structurally matches the path under any method."""

    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(status=404, detail=detail)


class MethodNotAllowed(HTTPError):  # noqa: N818
    """405 — the path matches a route, but not for this HTTP method.

    Includes an ``Allow`` header listing the methods the path does match.
    """

    def __init__(self, allowed: frozenset[str], detail: str = "") -> None:
        object.__setattr__(self, "allowed", allowed)
        allow_value = ", ".join(sorted(allowed))
        default_detail = f"Method not allowed. Allowed methods: {allow_value}"
        super().__init__(
            status=405,
            detail=detail or default_detail,
            headers=(("Allow", allow_value),) if allowed else (),
        )


class RateLimitExceeded(HTTPError):  # noqa: N818
    """429 — the route's fixed-window ceiling was exceeded.

    ``retry_after`` is the whole number of seconds until the window
    resets (always at least 1). ``reset_at`` is the absolute epoch
    timestamp of the reset.
    """

    def __init__(self, retry_after: int, *, limit: int, reset_at: int) -> None:
        object.__setattr__(self, "retry_after", retry_after)
        object.__setattr__(self, "limit", limit)
        object.__setattr__(self, "reset_at", reset_at)
        super().__init__(
            status=429,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers=(
                ("X-RateLimit-Limit", str(limit)),
                ("X-RateLimit-Remaining", "0"),
                ("X-RateLimit-Reset", str(reset_at)),
                ("Retry-After", str(retry_after)),
            ),
        )


class MiddlewareResolutionError(SwitchyardError):
    """A middleware reference did not resolve to a callable."""


class HandlerResolutionError(SwitchyardError):
    """A route's handler reference could not be resolved."""


class ParameterResolutionError(SwitchyardError):
    """A handler argument could not be resolved or coerced."""


class NamedRouteError(SwitchyardError):
    """URL generation failed: unknown route name or missing parameters."""
