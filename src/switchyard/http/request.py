"""Per-request context passed explicitly through match, pipeline, and dispatch.

Replaces ambient request state: the dispatcher and middleware read the
method, path, query, form and headers from this object, never from
process globals, so both are testable without global mutation.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any
from urllib.parse import parse_qsl

from switchyard.http.headers import Headers


@dataclass(frozen=True, slots=True)
class RequestContext:
    """An immutable view of one inbound request.

    ``path`` never carries a query component; ``query`` holds the parsed
    query string. ``form`` holds already-parsed body parameters (form
    or JSON object), supplied by whatever sits in front of the router.

    ``state`` is a per-request scratch dict for middleware to hand data
    to handlers (the dict itself is mutable, the field reference is not).
    """

    method: str = "GET"
    path: str = "/"
    query: Mapping[str, str] = field(default_factory=dict)
    form: Mapping[str, Any] = field(default_factory=dict)
    headers: Headers = field(default_factory=Headers)
    client: str | None = None
    user_id: str | None = None
    path_params: Mapping[str, str] = field(default_factory=dict)
    state: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def build(
        cls,
        method: str,
        uri: str,
        *,
        headers: Iterable[tuple[str, str]] | Mapping[str, str] = (),
        form: Mapping[str, Any] | None = None,
        client: str | None = None,
        user_id: str | None = None,
    ) -> RequestContext:
        """Build a context from a raw request target.

        Splits any query component off *uri* and parses it::

            ctx = RequestContext.build("get", "/users/7?expand=1")
            ctx.path   # "/users/7"
            ctx.query  # {"expand": "1"}
        """
        path, _, query_string = uri.partition("?")
        return cls(
            method=method.upper(),
            path=path or "/",
            query=dict(parse_qsl(query_string, keep_blank_values=True)),
            form=dict(form or {}),
            headers=Headers(headers),
            client=client,
            user_id=user_id,
        )

    def with_path_params(self, params: Mapping[str, str]) -> RequestContext:
        """Return a copy carrying the matched route's path parameters."""
        return replace(self, path_params=dict(params))

    def input(self, name: str) -> Any:
        """Look *name* up in query parameters, then body parameters.

        Returns ``None`` when neither carries it.
        """
        if name in self.query:
            return self.query[name]
        return self.form.get(name)
