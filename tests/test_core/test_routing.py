"""Tests for freya.routing: pattern compilation, route table order, routers."""

import pytest

from freya.exceptions import RoutingError
from freya.routing import Route, Router, RouteTable, compile_pattern, match_route, normalize_template


def handler(request, response, next) -> None: ...


def other(request, response, next) -> None: ...


class TestCompilePattern:
    def test_static(self) -> None:
        pattern = compile_pattern("/hello")
        assert pattern.match("/hello") == {}
        assert pattern.match("/hello/world") is None
        assert pattern.param_names == ()
        assert not pattern.has_wildcard

    def test_param_names_in_order(self) -> None:
        pattern = compile_pattern("/users/:user_id/posts/:post_id")
        assert pattern.param_names == ("user_id", "post_id")
        assert pattern.match("/users/7/posts/9") == {"user_id": "7", "post_id": "9"}

    def test_param_matches_one_segment_only(self) -> None:
        pattern = compile_pattern("/users/:id")
        assert pattern.match("/users/1/2") is None
        assert pattern.match("/users/") is None

    def test_wildcard_captures_rest(self) -> None:
        pattern = compile_pattern("/files/*")
        assert pattern.has_wildcard
        assert pattern.match("/files/a/b/c.txt") == {"*": "a/b/c.txt", "wildcard": "a/b/c.txt"}

    def test_wildcard_can_be_empty(self) -> None:
        assert compile_pattern("/files/*").match("/files/") == {"*": "", "wildcard": ""}

    def test_literal_metacharacters_escaped(self) -> None:
        pattern = compile_pattern("/v1.0/items+(all)")
        assert pattern.match("/v1.0/items+(all)") == {}
        assert pattern.match("/v1x0/items+(all)") is None

    def test_param_inside_segment(self) -> None:
        pattern = compile_pattern("/files/:name.json")
        assert pattern.match("/files/report.json") == {"name": "report"}

    def test_case_sensitive(self) -> None:
        assert compile_pattern("/About").match("/about") is None

    def test_never_rejects_a_template(self) -> None:
        for template in ("", "*", "/[unclosed", "/a/:", "/(?P<x>)"):
            compile_pattern(template)


class TestRoute:
    def test_method_upper_cased(self) -> None:
        route = Route("get", "/x", (handler,))
        assert route.method == "GET"

    def test_requires_handlers(self) -> None:
        with pytest.raises(RoutingError):
            Route("GET", "/x", ())

    def test_match_checks_method(self) -> None:
        route = Route("POST", "/items", (handler,))
        assert route.match("/items", "POST") == {}
        assert route.match("/items", "GET") is None

    def test_all_matches_every_method(self) -> None:
        route = Route("ALL", "/any", (handler,))
        for method in ("GET", "POST", "DELETE", "PATCH"):
            assert match_route(route, "/any", method) == {}


class TestRouteTable:
    def test_registration_order_wins(self) -> None:
        table = RouteTable([
            Route("GET", "/users/:id", (handler,)),
            Route("GET", "/users/me", (other,)),
        ])
        found = table.lookup("GET", "/users/me")
        assert found is not None
        route, params = found
        assert route.handlers == (handler,)
        assert params == {"id": "me"}

    def test_specific_first_wins(self) -> None:
        table = RouteTable([
            Route("GET", "/users/me", (other,)),
            Route("GET", "/users/:id", (handler,)),
        ])
        route, params = table.lookup("GET", "/users/me")
        assert route.handlers == (other,)
        assert params == {}

    def test_no_match_returns_none(self) -> None:
        table = RouteTable([Route("GET", "/a", (handler,))])
        assert table.lookup("GET", "/b") is None
        assert table.lookup("DELETE", "/a") is None

    def test_head_falls_back_to_get(self) -> None:
        table = RouteTable([Route("GET", "/page", (handler,))])
        route, _params = table.lookup("HEAD", "/page")
        assert route.method == "GET"

    def test_explicit_head_preferred(self) -> None:
        table = RouteTable([
            Route("GET", "/page", (handler,)),
            Route("HEAD", "/page", (other,)),
        ])
        route, _params = table.lookup("HEAD", "/page")
        assert route.method == "HEAD"

    def test_url_for(self) -> None:
        table = RouteTable([Route("GET", "/users/:id/files/*", (handler,), name="user_file")])
        assert table.url_for("user_file", id=42, **{"*": "a/b.txt"}) == "/users/42/files/a/b.txt"

    def test_url_for_missing_param(self) -> None:
        table = RouteTable([Route("GET", "/users/:id", (handler,), name="user")])
        with pytest.raises(RoutingError, match="Missing parameter 'id'"):
            table.url_for("user")

    def test_url_for_unknown_name(self) -> None:
        with pytest.raises(RoutingError):
            RouteTable().url_for("nope")


class TestNormalizeTemplate:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("/", "/"), ("", "/"), ("//api//v1/", "/api/v1"), ("users", "/users"), ("/x/", "/x")],
    )
    def test_normalize(self, raw: str, expected: str) -> None:
        assert normalize_template(raw) == expected


class TestRouter:
    def test_prefix_applied(self) -> None:
        router = Router(prefix="/api/")
        router.get("/items", handler)
        assert [r.path for r in router.routes] == ["/api/items"]

    def test_decorator_form(self) -> None:
        router = Router()

        @router.post("/items")
        def create(request, response, next) -> None: ...

        assert router.routes[0].handlers == (create,)
        assert router.routes[0].method == "POST"

    def test_direct_form_returns_router(self) -> None:
        router = Router()
        assert router.get("/a", handler, other) is router
        assert router.routes[0].handlers == (handler, other)

    def test_add_route_multiple_methods(self) -> None:
        router = Router()
        router.add_route("/thing", handler, methods=["GET", "PUT"])
        assert [r.method for r in router.routes] == ["GET", "PUT"]

    def test_route_path_chaining(self) -> None:
        router = Router()
        router.route_path("/book").get(handler).post(other).delete(handler)
        assert [(r.method, r.path) for r in router.routes] == [
            ("GET", "/book"),
            ("POST", "/book"),
            ("DELETE", "/book"),
        ]

    def test_use_records_middleware(self) -> None:
        router = Router()
        router.use(handler)
        router.use("/admin", other)
        entries = router.middleware
        assert entries[0].path_prefix is None
        assert entries[1].path_prefix == "/admin"

    def test_use_path_without_handler(self) -> None:
        with pytest.raises(RoutingError):
            Router().use("/admin")

    def test_build_table_is_snapshot(self) -> None:
        router = Router()
        router.get("/a", handler)
        table = router.build_table()
        router.get("/b", handler)
        assert len(table) == 1
