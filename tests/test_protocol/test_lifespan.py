"""Tests for freya.lifespan: startup and shutdown hooks."""

from freya.lifespan import Lifespan


class TestLifespan:
    async def test_startup_shutdown_handlers(self) -> None:
        events: list[str] = []
        ls = Lifespan()

        @ls.on_startup
        async def start():
            events.append("started")

        @ls.on_shutdown
        async def stop():
            events.append("stopped")

        await ls.startup()
        assert events == ["started"]
        assert ls.started
        await ls.shutdown()
        assert events == ["started", "stopped"]
        assert not ls.started

    async def test_sync_handlers(self) -> None:
        ls = Lifespan()

        @ls.on_startup
        def open_pool():
            ls.state["pool"] = "open"

        await ls.startup()
        assert ls.state["pool"] == "open"

    async def test_ordering(self) -> None:
        events: list[str] = []
        ls = Lifespan()
        for name in ("a", "b"):
            ls.on_startup(lambda name=name: events.append(f"start-{name}"))
            ls.on_shutdown(lambda name=name: events.append(f"stop-{name}"))

        await ls.startup()
        await ls.shutdown()
        assert events == ["start-a", "start-b", "stop-b", "stop-a"]

    def test_decorator_returns_handler(self) -> None:
        ls = Lifespan()

        def hook() -> None: ...

        assert ls.on_startup(hook) is hook
        assert ls.on_shutdown(hook) is hook

    def test_app_state_is_lifespan_state(self) -> None:
        from freya import Freya

        app = Freya()
        app.state["db"] = "connected"
        assert app.lifespan.state["db"] == "connected"
