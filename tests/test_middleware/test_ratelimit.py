"""Tests for RateLimitMiddleware and RateLimitStore."""

import json

from freya import Freya
from freya.middleware import RateLimitMiddleware, RateLimitStore
from freya.middleware.ratelimit import by_api_key

from tests.conftest import response_header

JSON = {"Accept": "application/json"}


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_app(limiter: RateLimitMiddleware) -> Freya:
    app = Freya()
    app.use(limiter)
    app.get("/", lambda req, res, next: res.text("ok"))
    app.get("/missing", lambda req, res, next: res.status(404).text("nope"))
    return app


class TestRateLimitStore:
    def test_hits_inside_window(self) -> None:
        clock = FakeClock()
        store = RateLimitStore(clock=clock)
        assert store.hit("a", 10) == (1, 1000.0)
        clock.now += 5
        assert store.hit("a", 10) == (2, 1000.0)
        assert store.count("a", 10) == 2

    def test_window_slides(self) -> None:
        clock = FakeClock()
        store = RateLimitStore(clock=clock)
        store.hit("a", 10)
        clock.now += 11
        assert store.hit("a", 10) == (1, 1011.0)

    def test_keys_are_independent(self) -> None:
        store = RateLimitStore(clock=FakeClock())
        store.hit("a", 10)
        assert store.count("b", 10) == 0

    def test_undo_and_reset(self) -> None:
        store = RateLimitStore(clock=FakeClock())
        store.hit("a", 10)
        store.hit("a", 10)
        store.undo("a")
        assert store.count("a", 10) == 1
        store.reset("a")
        assert store.count("a", 10) == 0


class TestRateLimitMiddleware:
    def test_under_limit_headers(self) -> None:
        app = make_app(RateLimitMiddleware(max_requests=3, window_seconds=60, store=RateLimitStore(clock=FakeClock())))
        ctx = app.simulate("GET", "/")
        assert ctx.status == 200
        assert response_header(ctx, "X-RateLimit-Limit") == "3"
        assert response_header(ctx, "X-RateLimit-Remaining") == "2"
        assert response_header(ctx, "RateLimit-Reset") == "60"

    def test_over_limit_429(self) -> None:
        clock = FakeClock()
        app = make_app(RateLimitMiddleware(max_requests=2, window_seconds=60, store=RateLimitStore(clock=clock)))
        app.simulate("GET", "/")
        clock.now += 20
        app.simulate("GET", "/")
        ctx = app.simulate("GET", "/", headers=JSON)

        assert ctx.status == 429
        assert response_header(ctx, "Retry-After") == "40"
        assert response_header(ctx, "X-RateLimit-Remaining") == "0"
        assert json.loads(ctx.response_body)["error"]["code"] == "RATE_LIMITED"

    def test_recovers_after_window(self) -> None:
        clock = FakeClock()
        app = make_app(RateLimitMiddleware(max_requests=1, window_seconds=10, store=RateLimitStore(clock=clock)))
        app.simulate("GET", "/")
        assert app.simulate("GET", "/").status == 429
        clock.now += 11
        assert app.simulate("GET", "/").status == 200

    def test_per_client(self) -> None:
        app = make_app(RateLimitMiddleware(max_requests=1, store=RateLimitStore(clock=FakeClock())))
        assert app.simulate("GET", "/", headers={"X-Forwarded-For": "1.1.1.1"}).status == 200
        assert app.simulate("GET", "/", headers={"X-Forwarded-For": "2.2.2.2"}).status == 200
        assert app.simulate("GET", "/", headers={"X-Forwarded-For": "1.1.1.1"}).status == 429

    def test_skip(self) -> None:
        limiter = RateLimitMiddleware(max_requests=1, skip=lambda req: req.path == "/")
        app = make_app(limiter)
        for _ in range(3):
            assert app.simulate("GET", "/").status == 200

    def test_skip_failed_requests(self) -> None:
        store = RateLimitStore(clock=FakeClock())
        app = make_app(RateLimitMiddleware(max_requests=1, store=store, skip_failed_requests=True))
        app.simulate("GET", "/missing")
        app.simulate("GET", "/missing")
        assert app.simulate("GET", "/").status == 200

    def test_headers_disabled(self) -> None:
        app = make_app(RateLimitMiddleware(legacy_headers=False, standard_headers=False))
        ctx = app.simulate("GET", "/")
        assert response_header(ctx, "X-RateLimit-Limit") is None
        assert response_header(ctx, "RateLimit-Limit") is None

    def test_by_api_key(self) -> None:
        app = make_app(by_api_key(max_requests=1, store=RateLimitStore(clock=FakeClock())))
        assert app.simulate("GET", "/", headers={"X-API-Key": "k1"}).status == 200
        assert app.simulate("GET", "/", headers={"X-API-Key": "k2"}).status == 200
        assert app.simulate("GET", "/", headers={"X-API-Key": "k1"}).status == 429
