"""Tests for freya.cookies: signing, unsigning, parsing, serialization."""

import time

from freya.cookies import CookieOptions, SecureCookie, format_set_cookie, parse_cookies


class TestSecureCookie:
    def test_sign_and_unsign(self) -> None:
        sc = SecureCookie("secret-key-for-tests")
        signed = sc.sign("hello")
        assert signed.count(":") == 2
        assert sc.unsign(signed) == "hello"

    def test_value_containing_colon(self) -> None:
        sc = SecureCookie("secret-key-for-tests")
        assert sc.unsign(sc.sign("a:b")) == "a:b"

    def test_invalid_signature(self) -> None:
        sc = SecureCookie("secret-key-for-tests")
        assert sc.unsign("tampered:value:badsig") is None
        assert sc.unsign("no-separators") is None

    def test_other_key_rejected(self) -> None:
        signed = SecureCookie("secret-key-for-tests").sign("hello")
        assert SecureCookie("a-different-secret-key").unsign(signed) is None

    def test_expired_signature(self) -> None:
        sc = SecureCookie("secret-key-for-tests")
        old_ts = str(int(time.time()) - 1000)
        payload = f"{old_ts}:testval"
        signed = f"{payload}:{sc._create_signature(payload)}"

        assert sc.unsign(signed, max_age=1) is None
        assert sc.unsign(signed) == "testval"

    def test_encode_decode(self) -> None:
        sc = SecureCookie(b"secret-key-for-tests")
        data = {"user": "admin", "roles": ["editor"]}
        assert sc.decode_value(sc.encode_value(data)) == data

    def test_decode_garbage(self) -> None:
        sc = SecureCookie("secret-key-for-tests")
        assert sc.decode_value(sc.sign("%%%not-base64")) is None

    def test_generate_secret_key(self) -> None:
        assert len(SecureCookie.generate_secret_key()) >= 32


class TestParseCookies:
    def test_basic(self) -> None:
        assert parse_cookies("a=1; b=2") == {"a": "1", "b": "2"}

    def test_empty(self) -> None:
        assert parse_cookies("") == {}

    def test_quoted_and_encoded(self) -> None:
        assert parse_cookies('q="quoted"; e=a%20b; junk') == {"q": "quoted", "e": "a b"}

    def test_value_with_equals(self) -> None:
        assert parse_cookies("token=abc==") == {"token": "abc=="}


class TestFormatSetCookie:
    def test_defaults(self) -> None:
        cookie = format_set_cookie("name", "val")
        assert cookie == "name=val; Path=/; HttpOnly; SameSite=Lax"

    def test_attribute_order(self) -> None:
        opts = CookieOptions(
            max_age=3600,
            expires=0,
            path="/app",
            domain="example.com",
            secure=True,
            samesite="strict",
        )
        assert format_set_cookie("sid", "x", opts) == (
            "sid=x; Max-Age=3600; Expires=Thu, 01 Jan 1970 00:00:00 GMT; Path=/app; "
            "Domain=example.com; Secure; HttpOnly; SameSite=Strict"
        )

    def test_value_escaped(self) -> None:
        assert format_set_cookie("n", "a b;c", CookieOptions(httponly=False, samesite=None)) == (
            "n=a%20b%3Bc; Path=/"
        )

    def test_round_trip_through_header(self) -> None:
        cookie = format_set_cookie("greeting", "hello world")
        name_value = cookie.split(";", 1)[0]
        assert parse_cookies(name_value) == {"greeting": "hello world"}

    def test_with_changes(self) -> None:
        opts = CookieOptions().with_changes(secure=True)
        assert opts.secure
        assert not CookieOptions().secure
