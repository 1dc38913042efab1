"""Tests for switchyard.loader — JSON declaration files."""

import json

import pytest
import sample_app

from switchyard.errors import ConfigurationError
from switchyard.http.request import RequestContext
from switchyard.loader import load_declarations, parse_declarations
from switchyard.routing.declaration import CachePolicy, RateLimit
from switchyard.router import Router

DOCUMENT = {
    "routes": [
        {"method": "GET", "uri": "/", "handler": "sample_app:home", "name": "home"},
    ],
    "groups": [
        {
            "prefix": "/api",
            "middleware": ["tag"],
            "name": "api",
            "routes": [
                {
                    "method": "GET",
                    "uri": "/users/{id}",
                    "handler": "sample_app:UserController.show",
                    "name": "users.show",
                    "where": {"id": "\\d+"},
                    "rate_limit": {"max_attempts": 60, "per": "minute", "by": "ip"},
                    "cache": {"ttl": 300, "tags": ["users"]},
                },
                {
                    "methods": ["PUT", "PATCH"],
                    "uri": "/users/{id}",
                    "handler": "sample_app:show_user",
                    "middleware": ["extra"],
                },
            ],
        }
    ],
}


def _one(**entry: object) -> dict[str, object]:
    return {"routes": [{"method": "GET", "uri": "/", "handler": "m:f", **entry}]}


class TestParseDeclarations:
    def test_top_level_routes_first(self) -> None:
        declarations = parse_declarations(DOCUMENT)
        assert [(d.method, d.uri) for d in declarations] == [
            ("GET", "/"),
            ("GET", "/api/users/{id}"),
            ("PUT", "/api/users/{id}"),
            ("PATCH", "/api/users/{id}"),
        ]

    def test_group_applied(self) -> None:
        show = parse_declarations(DOCUMENT)[1]
        assert show.name == "api.users.show"
        assert show.middleware == ("tag",)
        assert show.where == {"id": r"\d+"}
        assert show.rate_limit == RateLimit(60, per="minute", by="ip")
        assert show.cache == CachePolicy(ttl=300, tags=("users",))

    def test_route_middleware_after_group(self) -> None:
        update = parse_declarations(DOCUMENT)[2]
        assert update.middleware == ("tag", "extra")
        assert update.name is None

    def test_empty_document(self) -> None:
        assert parse_declarations({}) == []

    @pytest.mark.parametrize(
        ("document", "message"),
        [
            ([], "top level"),
            ({"routes": {}}, "must be a list"),
            ({"routes": ["x"]}, "must be an object"),
            ({"routes": [{"method": "GET", "uri": "/"}]}, "missing required key 'handler'"),
            ({"routes": [{"uri": "/", "handler": "m:f"}]}, "missing required key 'method'"),
            (_one(handler=3), "import string"),
            (_one(x=1), "unknown keys: x"),
            (_one(method="TRACE"), "Unsupported HTTP method"),
            (_one(rate_limit={"per": "minute"}), "invalid rate_limit"),
            (_one(rate_limit={"max_attempts": 0}), "invalid rate_limit"),
            (_one(cache={"tags": ["x"]}), "invalid rate_limit or cache"),
            ({"groups": ["x"]}, "groups[0] must be an object"),
        ],
    )
    def test_invalid(self, document: object, message: str) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            parse_declarations(document, source="routes.json")
        assert message in str(exc_info.value)

    def test_error_names_location(self) -> None:
        document = {"groups": [{"routes": [{"method": "GET", "uri": "/"}]}]}
        with pytest.raises(ConfigurationError, match=r"groups\[0\]\.routes\[0\]"):
            parse_declarations(document, source="routes.json")


class TestLoadDeclarations:
    def test_reads_file(self, tmp_path) -> None:
        path = tmp_path / "routes.json"
        path.write_text(json.dumps(DOCUMENT))
        assert len(load_declarations(path)) == 4

    def test_invalid_json(self, tmp_path) -> None:
        path = tmp_path / "routes.json"
        path.write_text("{")
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_declarations(path)

    def test_router_serves_loaded_routes(self, tmp_path) -> None:
        path = tmp_path / "routes.json"
        path.write_text(json.dumps(DOCUMENT))
        router = Router().alias("tag", "sample_app:tag_response")
        router.bind(sample_app.UserRepository, sample_app.UserRepository)
        router.build(lambda: load_declarations(path))

        assert router.url("api.users.show", {"id": 1}) == "/api/users/1"
        match = router.match("GET", "/api/users/1")
        assert match.route.handler == "sample_app:UserController.show"

        response = router.run(RequestContext.build("GET", "/api/users/1", client="127.0.0.1"))
        assert response.body == {"id": 1, "name": "ada"}
        assert response.header("X-Tagged") == "1"
        assert response.header("X-RateLimit-Limit") == "60"
