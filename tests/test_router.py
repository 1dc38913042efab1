"""Tests for switchyard.router — the facade tying table, pipeline, and dispatch together."""

import logging
import threading

import pytest
import sample_app

from switchyard.config import RouterConfig
from switchyard.context import get_request
from switchyard.errors import (
    ConfigurationError,
    MethodNotAllowed,
    NamedRouteError,
    PatternCompilationError,
    RouteNotFound,
)
from switchyard.http.request import RequestContext
from switchyard.http.response import Response
from switchyard.routing.declaration import RateLimit, RouteDeclaration
from switchyard.router import Router


def _get(router: Router, uri: str, **kwargs) -> Response:
    return router.run(RequestContext.build("GET", uri, **kwargs))


class TestDecorators:
    def test_get_registers_route(self) -> None:
        router = Router()

        @router.get("/hello")
        def hello() -> str:
            return "hi"

        assert router.match("GET", "/hello").route.handler is hello

    def test_multiple_methods(self) -> None:
        router = Router()

        @router.route("/items", methods=["GET", "POST"])
        def items() -> str:
            return "items"

        assert {r.method for r in router.routes} == {"GET", "POST"}

    @pytest.mark.parametrize("verb", ["get", "post", "put", "patch", "delete"])
    def test_verb_shortcuts(self, verb: str) -> None:
        router = Router()

        @getattr(router, verb)("/thing")
        def thing() -> str:
            return verb

        assert router.match(verb.upper(), "/thing").route.method == verb.upper()

    def test_add_after_build_rejected(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/", sample_app.home))
        router.build()
        with pytest.raises(ConfigurationError, match="after the route table is built"):
            router.add(RouteDeclaration("GET", "/late", sample_app.home))


class TestMatch:
    def test_strips_query_and_normalizes(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/users/{id}", sample_app.show_user))
        match = router.match("get", "/users/42/?expand=1")
        assert match.path_params == {"id": "42"}

    def test_not_found_and_method_not_allowed(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/users", sample_app.home))
        with pytest.raises(RouteNotFound):
            router.match("GET", "/nothing")
        with pytest.raises(MethodNotAllowed):
            router.match("POST", "/users")


class TestRun:
    def test_wraps_return_value(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/users/{id}", sample_app.show_user))
        response = _get(router, "/users/42")
        assert response.status == 200
        assert response.body == {"id": 42}

    def test_passes_response_through(self) -> None:
        router = Router()

        @router.post("/items")
        def create() -> Response:
            return Response(body="created", status=201)

        response = router.run(RequestContext.build("POST", "/items"))
        assert response.status == 201
        assert response.body == "created"

    def test_404(self) -> None:
        response = _get(Router(), "/missing")
        assert response.status == 404
        assert "error" in response.body

    def test_405_with_allow_header(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/users", sample_app.home))
        router.add(RouteDeclaration("POST", "/users", sample_app.home))
        response = router.run(RequestContext.build("DELETE", "/users"))
        assert response.status == 405
        assert response.header("Allow") == "GET, POST"

    def test_500_hides_details_by_default(self, caplog: pytest.LogCaptureFixture) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/boom", sample_app.boom))
        with caplog.at_level(logging.ERROR, logger="switchyard.server"):
            response = _get(router, "/boom")
        assert response.status == 500
        assert response.body == {"error": "Internal Server Error"}
        assert "handler exploded" in caplog.text

    def test_500_debug_body(self) -> None:
        router = Router(RouterConfig(debug=True))
        router.add(RouteDeclaration("GET", "/boom", sample_app.boom))
        response = _get(router, "/boom")
        assert response.status == 500
        assert response.body["exception"] == "RuntimeError"
        assert response.body["message"] == "handler exploded"
        assert any("RuntimeError" in line for line in response.body["traceback"])

    def test_parameter_failure_is_500(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/users/{id}", sample_app.show_user))
        assert _get(router, "/users/abc").status == 500

    def test_query_parameters_reach_handler(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/search", sample_app.search))
        response = _get(router, "/search?q=router&page=3&limit=50")
        # A declared default is preferred over the query string
        assert response.body == {"q": "router", "page": 3, "limit": 10}

    def test_request_is_available_during_run(self) -> None:
        router = Router()
        seen: list[str] = []

        @router.get("/who")
        def who() -> str:
            seen.append(get_request().path)
            return "ok"

        _get(router, "/who")
        assert seen == ["/who"]
        with pytest.raises(LookupError):
            get_request()

    def test_string_handler(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/posts/{user}/{slug}", "sample_app:show_post"))
        assert _get(router, "/posts/ada/intro").body == {"user": "ada", "slug": "intro"}

    def test_class_function_handler_gets_an_instance(self) -> None:
        router = Router()
        router.bind(sample_app.UserRepository, sample_app.UserRepository)
        router.add(RouteDeclaration("GET", "/c/{id}", sample_app.UserController.show))
        response = _get(router, "/c/1")
        assert response.status == 200
        assert response.body == {"id": 1, "name": "ada"}

    def test_build_failure_reaches_caller(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/bad/{id}", sample_app.home, where={"id": "(["}))
        router.add(RouteDeclaration("GET", "/ok", sample_app.home))

        with pytest.raises(PatternCompilationError):
            _get(router, "/ok")
        # Still unbuilt: the next request fails the same way
        with pytest.raises(PatternCompilationError):
            _get(router, "/ok")


class TestDebugTiming:
    def test_logs_each_dispatch(self, caplog: pytest.LogCaptureFixture) -> None:
        router = Router(RouterConfig(debug=True))
        router.add(RouteDeclaration("GET", "/users/{id}", sample_app.show_user))
        router.add(RouteDeclaration("GET", "/posts/{user}/{slug}", "sample_app:show_post"))

        with caplog.at_level(logging.DEBUG, logger="switchyard.router"):
            _get(router, "/users/42")
            _get(router, "/posts/ada/intro")

        lines = [r.getMessage() for r in caplog.records if r.name == "switchyard.router"]
        timing = [line for line in lines if "ms)" in line]
        assert len(timing) == 2
        assert timing[0].startswith("GET /users/42 -> show_user (")
        assert timing[1].startswith("GET /posts/ada/intro -> sample_app:show_post (")
        assert all(line.endswith("ms)") for line in timing)

    def test_silent_without_debug(self, caplog: pytest.LogCaptureFixture) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/users/{id}", sample_app.show_user))

        with caplog.at_level(logging.DEBUG, logger="switchyard.router"):
            _get(router, "/users/42")

        assert not any("->" in r.getMessage() for r in caplog.records)


class TestRateLimitedRoutes:
    def _router(self, **config) -> Router:
        router = Router(RouterConfig(**config))
        router.add(
            RouteDeclaration("POST", "/login", sample_app.home, rate_limit=RateLimit(2))
        )
        return router

    def test_headers_then_429(self) -> None:
        router = self._router()
        ctx = RequestContext.build("POST", "/login", client="10.0.0.1")

        first = router.run(ctx)
        assert first.status == 200
        assert first.header("X-RateLimit-Limit") == "2"
        assert first.header("X-RateLimit-Remaining") == "1"

        assert router.run(ctx).header("X-RateLimit-Remaining") == "0"

        blocked = router.run(ctx)
        assert blocked.status == 429
        assert blocked.header("X-RateLimit-Remaining") == "0"
        assert 0 < int(blocked.header("Retry-After")) <= 60

    def test_clients_counted_separately(self) -> None:
        router = self._router()
        for _ in range(2):
            router.run(RequestContext.build("POST", "/login", client="10.0.0.1"))
        other = router.run(RequestContext.build("POST", "/login", client="10.0.0.2"))
        assert other.status == 200

    def test_disabled(self) -> None:
        router = self._router(rate_limit_enabled=False)
        ctx = RequestContext.build("POST", "/login", client="10.0.0.1")
        for _ in range(5):
            response = router.run(ctx)
        assert response.status == 200
        assert response.header("X-RateLimit-Limit") is None


class TestMiddleware:
    def test_global_then_route_then_handler(self) -> None:
        order: list[str] = []

        def outer(ctx, next):
            order.append("global")
            return next(ctx)

        def inner(ctx, next):
            order.append("route")
            return next(ctx)

        router = Router().middleware(outer).alias("inner", inner)

        @router.get("/x", middleware=["inner"])
        def x() -> str:
            order.append("handler")
            return "x"

        _get(router, "/x")
        assert order == ["global", "route", "handler"]

    def test_parameterised_alias(self) -> None:
        router = Router().alias("guard", "sample_app:RequireGuard")
        router.add(
            RouteDeclaration("GET", "/admin", sample_app.home, middleware=("guard:admin",))
        )
        assert _get(router, "/admin").status == 403
        assert _get(router, "/admin", headers={"X-Guard": "admin"}).body == "home"

    def test_unknown_middleware_is_500(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/x", sample_app.home, middleware=("missing",)))
        assert _get(router, "/x").status == 500


class TestGroups:
    def test_prefix_name_and_middleware(self) -> None:
        router = Router().alias("tag", sample_app.tag_response)
        api = router.group(prefix="/api", middleware=["tag"], name="api")

        @api.get("/users/{id}", name="users.show")
        def show(id: int) -> dict[str, int]:
            return {"id": id}

        route = router.match("GET", "/api/users/5").route
        assert route.name == "api.users.show"
        assert route.middleware == ("tag",)
        assert router.url("api.users.show", {"id": 5}) == "/api/users/5"
        assert _get(router, "/api/users/5").header("X-Tagged") == "1"

    def test_nested_groups(self) -> None:
        router = Router()
        api = router.group(prefix="/api", middleware=["a"], name="api")
        admin = api.group(prefix="/admin", middleware=["b"], name="admin")

        @admin.delete("/users/{id}", name="users.destroy", middleware=["c"])
        def destroy(id: int) -> None:
            return None

        route = router.match("DELETE", "/api/admin/users/1").route
        assert route.name == "api.admin.users.destroy"
        assert route.middleware == ("a", "b", "c")


class TestUrl:
    def test_generates_path(self) -> None:
        router = Router()
        router.add(
            RouteDeclaration(
                "GET", "/users/{id}", sample_app.show_user, name="users.show", where={"id": r"\d+"}
            )
        )
        assert router.url("users.show", {"id": 42}) == "/users/42"

    def test_unknown_name(self) -> None:
        with pytest.raises(NamedRouteError, match="not found"):
            Router().url("nope")

    def test_missing_parameter(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/users/{id}", sample_app.show_user, name="users.show"))
        with pytest.raises(NamedRouteError):
            router.url("users.show", {})


class TestBuild:
    def test_invalid_pattern_is_fatal(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/x/{id}", sample_app.home, where={"id": "("}))
        with pytest.raises(PatternCompilationError):
            router.build()

    def test_build_twice_rejected(self) -> None:
        router = Router().build()
        with pytest.raises(ConfigurationError, match="already built"):
            router.build()

    def test_loader_declarations_follow_registered_ones(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/first", sample_app.home))
        router.build(lambda: [RouteDeclaration("GET", "/second", sample_app.home)])
        assert [r.uri for r in router.routes] == ["/first", "/second"]

    def test_reload_swaps_table(self) -> None:
        router = Router().build([RouteDeclaration("GET", "/old", sample_app.home)])
        router.reload([RouteDeclaration("GET", "/new", sample_app.home)])
        assert router.match("GET", "/new").route.uri == "/new"
        with pytest.raises(RouteNotFound):
            router.match("GET", "/old")

    def test_concurrent_first_requests_build_once(self) -> None:
        router = Router()
        router.add(RouteDeclaration("GET", "/", sample_app.home))
        tables = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            tables.append(router.table)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(tables) == 8
        assert all(t is tables[0] for t in tables)

    def test_snapshot_used_on_next_start(self, tmp_path) -> None:
        config = RouterConfig(cache_enabled=True, cache_path=tmp_path / "routes.json")
        first = Router(config)
        first.add(RouteDeclaration("GET", "/users/{id}", "sample_app:show_user", name="u"))
        first.build()
        assert (tmp_path / "routes.json").is_file()

        second = Router(config).build(lambda: pytest.fail("loader must not run on a cache hit"))
        assert second.url("u", {"id": 3}) == "/users/3"
        assert _get(second, "/users/3").body == {"id": 3}

        assert second.clear_cache() is True
        assert not (tmp_path / "routes.json").exists()
