"""Tests for BodyParserMiddleware and its helpers."""

import json

import pytest

from freya import Freya
from freya.middleware import BodyParserMiddleware
from freya.middleware.bodyparser import DEFAULT_LIMIT, parse_size, parse_urlencoded

JSON = {"Accept": "application/json"}


def echo_app(**options) -> Freya:
    app = Freya()
    app.use(BodyParserMiddleware(**options))

    @app.post("/echo")
    def echo(request, response, next):
        body = request.parsed_body
        if isinstance(body, bytes):
            body = {"bytes": len(body)}
        response.json({"body": body})

    return app


def post(app: Freya, content_type: str, body: bytes | str):
    ctx = app.simulate("POST", "/echo", headers={"Content-Type": content_type, **JSON}, body=body)
    return ctx, json.loads(ctx.response_body)


class TestParseSize:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (100, 100),
            ("100", 100),
            ("100b", 100),
            ("2kb", 2048),
            ("1 MB", 1024 * 1024),
            ("1g", 1024**3),
            ("lots", DEFAULT_LIMIT),
            (None, DEFAULT_LIMIT),
        ],
    )
    def test_parse(self, value, expected: int) -> None:
        assert parse_size(value) == expected


class TestParseUrlencoded:
    def test_flat(self) -> None:
        assert parse_urlencoded("a=1&b=two+words&c=%26") == {"a": "1", "b": "two words", "c": "&"}

    def test_nested(self) -> None:
        assert parse_urlencoded("user[name]=Ada&user[role]=admin") == {
            "user": {"name": "Ada", "role": "admin"},
        }

    def test_arrays(self) -> None:
        assert parse_urlencoded("tags[]=a&tags[]=b") == {"tags": ["a", "b"]}

    def test_array_of_objects(self) -> None:
        assert parse_urlencoded("items[][id]=1&items[][id]=2") == {"items": [{"id": "1"}, {"id": "2"}]}

    def test_not_extended(self) -> None:
        assert parse_urlencoded("user[name]=Ada&a=1&a=2", extended=False) == {"user[name]": "Ada", "a": "2"}

    def test_skips_empty_keys(self) -> None:
        assert parse_urlencoded("&=x&ok=1") == {"ok": "1"}


class TestBodyParserMiddleware:
    def test_json(self) -> None:
        ctx, data = post(echo_app(), "application/json", '{"a": [1, 2]}')
        assert ctx.status == 200
        assert data == {"body": {"a": [1, 2]}}

    def test_empty_json_is_empty_object(self) -> None:
        _ctx, data = post(echo_app(), "application/json", "")
        assert data == {"body": {}}

    def test_invalid_json(self) -> None:
        ctx, data = post(echo_app(), "application/json", "{oops")
        assert ctx.status == 400
        assert data["error"]["message"].startswith("Invalid JSON")

    def test_strict_rejects_scalars(self) -> None:
        ctx, data = post(echo_app(), "application/json", '"just a string"')
        assert ctx.status == 400
        assert data["error"]["message"] == "JSON must be an object or array"

    def test_non_strict_allows_scalars(self) -> None:
        _ctx, data = post(echo_app(strict=False), "application/json", "42")
        assert data == {"body": 42}

    def test_urlencoded(self) -> None:
        _ctx, data = post(echo_app(), "application/x-www-form-urlencoded", "user[name]=Ada&tags[]=x")
        assert data == {"body": {"user": {"name": "Ada"}, "tags": ["x"]}}

    def test_text(self) -> None:
        _ctx, data = post(echo_app(types=("text",)), "text/plain; charset=utf-8", "hello")
        assert data == {"body": "hello"}

    def test_raw(self) -> None:
        _ctx, data = post(echo_app(types=("raw",)), "application/octet-stream", b"\x00\x01\x02")
        assert data == {"body": {"bytes": 3}}

    def test_raw_any_type(self) -> None:
        _ctx, data = post(echo_app(types=("raw",), raw_type="*"), "image/png", b"\x89PNG")
        assert data == {"body": {"bytes": 4}}

    def test_disabled_type_untouched(self) -> None:
        _ctx, data = post(echo_app(types=("urlencoded",)), "text/plain", "hello")
        assert data == {"body": {}}

    def test_limit(self) -> None:
        ctx, data = post(echo_app(limit="10b"), "application/json", '{"long": "xxxxxxxxxxxx"}')
        assert ctx.status == 413
        assert data["error"]["message"] == "Request body exceeds 10 bytes"

    def test_unknown_type(self) -> None:
        with pytest.raises(ValueError, match="xml"):
            BodyParserMiddleware(types=("json", "xml"))
