"""Tests for freya.response: the sent latch, headers, cookies, files, negotiation."""

import json
import os

import pytest

from freya import Freya
from freya.cookies import CookieOptions
from freya.exceptions import Forbidden, NotFound
from freya.request import Request
from freya.response import Response, guess_content_type, http_date

from tests.conftest import make_context


def make_response(headers: dict[str, str] | None = None, app=None) -> Response:
    request = Request(make_context(headers=headers), app=app)
    response = Response(request, app=app)
    request.response = response
    return response


class TestStatus:
    def test_default_200(self) -> None:
        assert Response().status_code == 200

    def test_set_and_chain(self) -> None:
        res = Response()
        assert res.status(201) is res
        assert res.status_code == 201

    @pytest.mark.parametrize("code", [0, 99, 1000])
    def test_invalid(self, code: int) -> None:
        with pytest.raises(ValueError):
            Response().status(code)


class TestHeaders:
    def test_set_replaces_case_insensitively(self) -> None:
        res = Response().set_header("X-A", "1").set_header("x-a", "2")
        assert res.get_header_values("X-A") == ["2"]

    def test_append_keeps_existing(self) -> None:
        res = Response().set_header("Link", "a").append_header("Link", ["b", "c"])
        assert res.get_header_values("link") == ["a", "b", "c"]

    def test_remove(self) -> None:
        res = Response().set_header("X-A", "1").remove_header("x-a")
        assert not res.has_header("X-A")

    def test_set_headers(self) -> None:
        res = Response().set_headers({"X-A": "1", "X-B": "2"})
        assert res.get_header("x-b") == "2"

    @pytest.mark.parametrize(
        ("shorthand", "expected"),
        [
            ("json", "application/json; charset=utf-8"),
            ("html", "text/html; charset=utf-8"),
            ("png", "image/png"),
            (".css", "text/css; charset=utf-8"),
            ("application/pdf", "application/pdf"),
        ],
    )
    def test_type(self, shorthand: str, expected: str) -> None:
        assert Response().type(shorthand).get_header("Content-Type") == expected


class TestSend:
    def test_str_body(self) -> None:
        res = Response().send("hello")
        assert res.sent
        assert res.body == b"hello"
        assert res.get_header("Content-Type") == "text/plain; charset=utf-8"
        assert res.get_header("Content-Length") == "5"

    def test_none_body(self) -> None:
        res = Response().send()
        assert res.body == b""
        assert res.get_header("Content-Length") == "0"

    def test_dict_body_is_json(self) -> None:
        res = Response().send({"a": 1})
        assert res.body == b'{"a":1}'
        assert res.get_header("Content-Type").startswith("application/json")

    def test_second_send_is_noop(self) -> None:
        res = Response().send("first")
        res.send("second")
        assert res.body == b"first"

    def test_mutators_after_send_are_noops(self) -> None:
        res = Response().send("x")
        res.status(500).set_header("X-Late", "1").json({"late": True})
        assert res.status_code == 200
        assert not res.has_header("X-Late")
        assert res.body == b"x"

    def test_json_indent_from_settings(self) -> None:
        app = Freya(json_spaces=2)
        res = Response(app=app).json({"a": 1})
        assert res.body == json.dumps({"a": 1}, indent=2).encode()

    def test_json_unicode(self) -> None:
        res = Response().json({"name": "Fréya"})
        assert "Fréya" in res.body.decode("utf-8")

    def test_html_and_text(self) -> None:
        assert Response().html("<b>x</b>").get_header("content-type") == "text/html; charset=utf-8"
        assert Response().text("x").get_header("content-type") == "text/plain; charset=utf-8"


class TestCookies:
    def test_flushed_on_send(self) -> None:
        res = Response()
        res.set_cookie("a", "1", CookieOptions(path="/"))
        res.set_cookie("b", "2")
        assert res.get_header("Set-Cookie") is None
        res.send("ok")
        cookies = res.get_header_values("Set-Cookie")
        assert len(cookies) == 2
        assert cookies[0].startswith("a=1")
        assert cookies[1].startswith("b=2")

    def test_same_name_last_wins(self) -> None:
        res = Response()
        res.set_cookie("a", "1").set_cookie("a", "2").send()
        cookies = res.get_header_values("Set-Cookie")
        assert len(cookies) == 1
        assert cookies[0].startswith("a=2")

    def test_clear_cookie(self) -> None:
        res = Response().clear_cookie("sid")
        cookie = res.pending_cookies["sid"]
        assert cookie.startswith("sid=;")
        assert "Max-Age=0" in cookie
        assert "Expires=Thu, 01 Jan 1970 00:00:00 GMT" in cookie


class TestBeforeSend:
    def test_hook_can_add_headers(self) -> None:
        res = Response()
        res.before_send(lambda r: r.set_header("X-Hook", str(len(r.body))))
        res.send("abc")
        assert res.get_header("X-Hook") == "3"

    def test_hook_runs_once(self) -> None:
        calls: list[int] = []
        res = Response()
        res.before_send(lambda r: calls.append(1))
        res.send("a")
        res.send("b")
        assert calls == [1]

    def test_hook_may_replace_response(self) -> None:
        res = Response()
        res.before_send(lambda r: r.status(403).text("denied"))
        res.send("original")
        assert res.status_code == 403
        assert res.body == b"denied"


class TestHeaderSafety:
    def test_line_break_rejected(self) -> None:
        with pytest.raises(ValueError, match="line break"):
            Response().set_header("X-Bad", "a\r\nSet-Cookie: x=1")

    def test_non_latin1_rejected(self) -> None:
        with pytest.raises(ValueError, match="latin-1"):
            Response().append_header("X-Name", ["ok", "名前"])

    def test_failed_set_keeps_existing_value(self) -> None:
        res = Response().set_header("X-A", "1")
        with pytest.raises(ValueError):
            res.set_header("X-A", "\n")
        assert res.get_header("X-A") == "1"

    def test_latin1_accepted(self) -> None:
        assert Response().set_header("X-Name", "café").get_header("X-Name") == "café"


class TestRedirect:
    def test_redirect(self) -> None:
        res = Response().redirect("/login")
        assert res.status_code == 302
        assert res.get_header("Location") == "/login"
        assert res.body == b""

    def test_permanent(self) -> None:
        assert Response().redirect("/new", 301).status_code == 301

    def test_location_percent_encoded(self) -> None:
        res = Response().redirect("/日本?q=a b")
        assert res.get_header("Location") == "/%E6%97%A5%E6%9C%AC?q=a%20b"

    def test_encoded_location_untouched(self) -> None:
        res = Response().redirect("https://example.com/a%20b?x=1&y=2#top")
        assert res.get_header("Location") == "https://example.com/a%20b?x=1&y=2#top"

    def test_back_uses_referer(self) -> None:
        res = make_response(headers={"Referer": "/previous"}).back()
        assert res.get_header("Location") == "/previous"

    def test_back_fallback(self) -> None:
        assert make_response().back("/home").get_header("Location") == "/home"


class TestFiles:
    def test_send_file(self, tmp_path) -> None:
        target = tmp_path / "notes.txt"
        target.write_text("hello file")
        res = Response().send_file(str(target))
        assert res.body == b"hello file"
        assert res.get_header("Content-Type") == "text/plain; charset=utf-8"
        assert res.has_header("Last-Modified")

    def test_send_file_in_root(self, tmp_path) -> None:
        (tmp_path / "a.json").write_text("{}")
        res = Response().send_file("/a.json", root=str(tmp_path))
        assert res.body == b"{}"

    def test_traversal_forbidden(self, tmp_path) -> None:
        public = tmp_path / "public"
        public.mkdir()
        (tmp_path / "secret.txt").write_text("s")
        with pytest.raises(Forbidden):
            Response().send_file("../secret.txt", root=str(public))

    def test_symlink_escape_forbidden(self, tmp_path) -> None:
        public = tmp_path / "public"
        public.mkdir()
        (tmp_path / "secret.txt").write_text("s")
        os.symlink(tmp_path / "secret.txt", public / "link.txt")
        with pytest.raises(Forbidden):
            Response().send_file("link.txt", root=str(public))

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(NotFound):
            Response().send_file(str(tmp_path / "nope.txt"))

    def test_download(self, tmp_path) -> None:
        target = tmp_path / "report.csv"
        target.write_text("a,b")
        res = Response().download(str(target), filename="export.csv")
        assert res.get_header("Content-Disposition") == 'attachment; filename="export.csv"'

    def test_inline(self, tmp_path) -> None:
        target = tmp_path / "pic.png"
        target.write_bytes(b"\x89PNG")
        res = Response().inline(str(target))
        assert res.get_header("Content-Disposition") == 'inline; filename="pic.png"'
        assert res.get_header("Content-Type") == "image/png"


    def test_download_unicode_filename(self, tmp_path) -> None:
        target = tmp_path / "data.txt"
        target.write_text("x")
        res = Response().download(str(target), filename="报告.txt")
        assert res.get_header("Content-Disposition") == (
            "attachment; filename=\"??.txt\"; filename*=UTF-8''%E6%8A%A5%E5%91%8A.txt"
        )

    def test_download_filename_escaped(self, tmp_path) -> None:
        target = tmp_path / "data.txt"
        target.write_text("x")
        res = Response().download(str(target), filename='a"\r\nSet-Cookie: x=1')
        assert res.get_header("Content-Disposition") == 'attachment; filename="a\\"Set-Cookie: x=1"'
        assert not res.has_header("Set-Cookie")


class TestFormat:
    def test_picks_accepted(self) -> None:
        res = make_response(headers={"Accept": "application/json"})
        res.format({
            "html": lambda r: r.html("<p>x</p>"),
            "json": lambda r: r.json({"x": 1}),
        })
        assert res.body == b'{"x":1}'
        assert res.get_header("Vary") == "Accept"

    def test_default(self) -> None:
        res = make_response(headers={"Accept": "image/png"})
        res.format({"json": lambda r: r.json({}), "default": lambda r: r.text("fallback")})
        assert res.body == b"fallback"

    def test_not_acceptable(self) -> None:
        res = make_response(headers={"Accept": "image/png"})
        res.format({"json": lambda r: r.json({})})
        assert res.status_code == 406


class TestCaching:
    def test_cache_flags(self) -> None:
        res = Response().cache(public=True, max_age=60, immutable=True)
        assert res.get_header("Cache-Control") == "public, max-age=60, immutable"

    def test_cache_directive(self) -> None:
        assert Response().cache("private").get_header("Cache-Control") == "private"

    def test_no_cache(self) -> None:
        assert "no-store" in Response().no_cache().get_header("Cache-Control")

    def test_etag(self) -> None:
        assert Response().etag("abc").get_header("ETag") == '"abc"'
        assert Response().etag("abc", weak=True).get_header("ETag") == 'W/"abc"'

    def test_last_modified(self) -> None:
        res = Response().last_modified(0)
        assert res.get_header("Last-Modified") == "Thu, 01 Jan 1970 00:00:00 GMT"

    def test_vary_dedupes(self) -> None:
        res = Response().vary("Accept").vary("accept", "Origin")
        assert res.get_header("Vary") == "Accept, Origin"

    def test_vary_star_absorbs(self) -> None:
        assert Response().set_header("Vary", "*").vary("Origin").get_header("Vary") == "*"

    def test_links(self) -> None:
        res = Response().links({"next": "/p/2"}).links({"last": "/p/9"})
        assert res.get_header("Link") == '</p/2>; rel="next", </p/9>; rel="last"'


class TestErrorHelpers:
    def test_error_envelope(self) -> None:
        res = Response().error(404, "Nope", "NOT_FOUND")
        assert json.loads(res.body) == {"error": {"status": 404, "message": "Nope", "code": "NOT_FOUND"}}

    def test_validation_error(self) -> None:
        res = Response().validation_error({"name": ["required"]})
        assert res.status_code == 422
        body = json.loads(res.body)
        assert body["error"]["details"] == {"name": ["required"]}

    def test_error_page(self) -> None:
        res = make_response().error_page(503, "Down <for> maintenance")
        assert res.status_code == 503
        assert b"Down &lt;for&gt; maintenance" in res.body


class TestRender:
    def test_render_merges_locals(self, tmp_path) -> None:
        (tmp_path / "hello.html").write_text("{{ greeting }}, {{ name }}!")
        app = Freya()
        app.use_templates(str(tmp_path))
        res = Response(app=app)
        res.locals["greeting"] = "Hello"
        res.render("hello", {"name": "<Ada>"})
        assert res.body == b"Hello, &lt;Ada&gt;!"
        assert res.get_header("Content-Type") == "text/html; charset=utf-8"

    def test_render_without_engine(self) -> None:
        with pytest.raises(RuntimeError):
            Response(app=Freya()).render("x")


class TestHelpers:
    def test_guess_content_type(self) -> None:
        assert guess_content_type("a.unknownext") == "application/octet-stream"
        assert guess_content_type("a.html") == "text/html; charset=utf-8"

    def test_http_date_passthrough(self) -> None:
        assert http_date("already") == "already"
