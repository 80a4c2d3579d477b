"""
Unit tests for the bidirectional middleware unit.
"""

import threading

import pytest

from dagwood import middleware, BidirectionalMiddleware
from dagwood.app import Application
from dagwood.http.request import HTTPRequest
from dagwood.http.response import ServerResponse
from dagwood.middleware.base import pass_through
from dagwood.testing import TestClient


class RecordingResponse(ServerResponse):
    """Response that records every real emission."""

    def __init__(self):
        super().__init__()
        self.emitted = []

    def _finish(self, chunk, encoding):
        self.emitted.append((chunk, encoding))
        return super()._finish(chunk, encoding)


def make_request(path: str = "/") -> HTTPRequest:
    return HTTPRequest(method="GET", path=path)


def noop_next():
    return None


class TestConstruction:
    """Tests for building units."""

    def test_namespace_is_prefixed(self):
        unit = middleware("auth")
        assert unit.name == "auth"
        assert unit.namespace == "_dagwood-auth"

    def test_handles_are_unique(self):
        units = [middleware("same") for _ in range(5)]
        assert len({unit.handle for unit in units}) == 5

    @pytest.mark.parametrize("name", ["", None, 42])
    def test_invalid_name(self, name):
        with pytest.raises(ValueError):
            BidirectionalMiddleware(name)

    def test_factory_returns_unit(self):
        unit = middleware("a")
        assert isinstance(unit, BidirectionalMiddleware)
        assert callable(unit)

    def test_non_callable_response_handler_is_ignored(self):
        unit = middleware("a", None, "not a function")
        assert unit.has_response_handler is False

    def test_missing_request_handler_resolves_to_pass_through(self):
        unit = middleware("a")
        assert unit._on_request is pass_through


class TestOrdering:
    """Request legs run in registration order, response legs in reverse."""

    @pytest.mark.parametrize("count", [1, 2, 3, 5])
    def test_lifo_unwind(self, count, trace, traced_unit):
        app = Application()
        names = [f"u{i}" for i in range(1, count + 1)]
        for name in names:
            app.use(traced_unit(name))
        app.use(lambda request, response, next: response.end("done"))

        result = TestClient(app).get("/")

        expected = [f"{name}.setup" for name in names]
        expected += [f"{name}.teardown" for name in reversed(names)]
        assert trace == expected
        assert result.completed
        assert result.text == "done"

    def test_scenario_a(self, hello_app, trace):
        result = TestClient(hello_app).get("/")

        assert trace == ["a.setup", "b.setup", "b.teardown", "a.teardown"]
        assert result.status_code == 200
        assert result.text == "Hello World!"

    def test_request_only_units_do_not_unwind(self, trace, traced_unit):
        def plain(request, response, next):
            trace.append("plain.setup")
            next()

        app = Application()
        app.use(traced_unit("a"))
        app.use(middleware("plain", plain))
        app.use(traced_unit("b"))
        app.use(lambda request, response, next: response.end())

        TestClient(app).get("/")

        assert trace == ["a.setup", "plain.setup", "b.setup", "b.teardown", "a.teardown"]

    def test_emission_waits_for_every_response_leg(self):
        seen = []

        def check_not_finished(request, response, next):
            seen.append(response.finished)
            next()

        app = Application()
        app.use(middleware("outer", None, check_not_finished))
        app.use(middleware("inner", None, check_not_finished))
        app.use(lambda request, response, next: response.end("x"))

        result = TestClient(app).get("/")

        assert seen == [False, False]
        assert result.completed

    def test_units_with_same_name_keep_separate_state(self, trace):
        def teardown(label):
            def handler(request, response, next):
                trace.append(label)
                next()
            return handler

        app = Application()
        app.use(middleware("dup", None, teardown("first")))
        app.use(middleware("dup", None, teardown("second")))
        app.use(lambda request, response, next: response.end())

        TestClient(app).get("/")

        assert trace == ["second", "first"]

    def test_unit_is_reused_across_requests(self, hello_app, trace):
        client = TestClient(hello_app)
        client.get("/")
        client.get("/")

        assert trace == ["a.setup", "b.setup", "b.teardown", "a.teardown"] * 2


class TestIdempotentWrap:
    """Processing the same response twice installs one interceptor."""

    def test_single_interceptor(self, trace, traced_unit):
        unit = traced_unit("a")
        request, response = make_request(), ServerResponse()

        unit(request, response, noop_next)
        unit(request, response, noop_next)

        assert len(response.emit_interceptors) == 1
        assert response.unit_state(unit.handle).is_wrapped

        response.end("x")

        assert trace == ["a.setup", "a.setup", "a.teardown"]
        assert response.body == b"x"

    def test_reuses_existing_interceptor(self, traced_unit):
        unit = traced_unit("a")
        request, response = make_request(), ServerResponse()

        unit(request, response, noop_next)
        first = response.emit_interceptors
        unit(request, response, noop_next)

        assert response.emit_interceptors == first


class TestSingleInvocation:
    """The response leg fires once no matter how often end() is called."""

    def test_later_calls_forward_with_original_arguments(self, trace, traced_unit):
        unit = traced_unit("a")
        request, response = make_request(), RecordingResponse()
        unit(request, response, noop_next)

        response.end("first")
        response.end(b"second", "latin-1")
        response.end()

        assert trace == ["a.setup", "a.teardown"]
        assert response.emitted == [
            ("first", "utf-8"),
            (b"second", "latin-1"),
            (None, "utf-8"),
        ]
        assert response.body == b"first"

    def test_end_from_inside_response_handler(self):
        calls = []

        def teardown(request, response, next):
            calls.append("teardown")
            response.end("replaced")

        unit = middleware("a", None, teardown)
        request, response = make_request(), RecordingResponse()
        unit(request, response, noop_next)

        response.end("original")

        assert calls == ["teardown"]
        assert response.emitted == [("replaced", "utf-8")]
        assert response.finished

    def test_state_transitions(self):
        observed = []

        def teardown(request, response, next):
            observed.append(response.unit_state(unit.handle).response_handler_invoked)
            next()

        unit = middleware("a", None, teardown)
        request, response = make_request(), ServerResponse()

        assert response.unit_state(unit.handle).is_wrapped is False
        unit(request, response, noop_next)
        assert response.unit_state(unit.handle).is_wrapped is True
        assert response.unit_state(unit.handle).response_handler_invoked is False

        response.end()

        assert observed == [True]
        assert response.finished


class TestDefaults:
    """Missing handlers are not errors."""

    def test_default_request_handler_continues(self):
        calls = []
        unit = middleware("a")

        result = unit(make_request(), ServerResponse(), lambda: calls.append("next") or "advanced")

        assert calls == ["next"]
        assert result == "advanced"

    def test_default_request_handler_with_response_handler(self, trace):
        def teardown(request, response, next):
            trace.append("teardown")
            next()

        app = Application()
        app.use(middleware("a", None, teardown))
        app.use(lambda request, response, next: response.end("ok"))

        result = TestClient(app).get("/")

        assert trace == ["teardown"]
        assert result.text == "ok"

    def test_no_response_handler_leaves_emit_untouched(self):
        unit = middleware("a", lambda request, response, next: next())
        response = ServerResponse()
        before = response.emit_interceptors

        unit(make_request(), response, noop_next)

        assert response.emit_interceptors == before == ()
        assert response.has_emit_interceptor(unit.handle) is False

    def test_request_handler_result_is_returned(self):
        unit = middleware("a", lambda request, response, next: "handled")
        assert unit(make_request(), ServerResponse(), noop_next) == "handled"

    def test_next_is_passed_unchanged(self):
        received = []
        unit = middleware("a", lambda request, response, next: received.append(next))

        unit(make_request(), ServerResponse(), noop_next)

        assert received == [noop_next]


class TestDeferredContinuations:
    """Continuations may be called later, from another thread."""

    def test_async_response_leg(self, trace):
        def teardown(request, response, next):
            trace.append("teardown")
            threading.Timer(0.05, next).start()

        app = Application()
        app.use(middleware("slow", None, teardown))
        app.use(lambda request, response, next: response.end("late"))

        result = TestClient(app, timeout=2.0).get("/")

        assert result.completed
        assert result.text == "late"
        assert trace == ["teardown"]

    def test_async_request_leg(self, trace):
        def setup(request, response, next):
            trace.append("setup")
            threading.Timer(0.05, next).start()

        def teardown(request, response, next):
            trace.append("teardown")
            next()

        app = Application()
        app.use(middleware("slow", setup, teardown))
        app.use(lambda request, response, next: response.end("ok"))

        result = TestClient(app, timeout=2.0).get("/")

        assert result.completed
        assert trace == ["setup", "teardown"]

    def test_response_leg_can_change_headers_before_emission(self):
        def add_header(request, response, next):
            response.set_header("X-Unwound", "yes")
            response.status_code = 202
            next()

        app = Application()
        app.use(middleware("hdr", None, add_header))
        app.use(lambda request, response, next: response.end("ok"))

        result = TestClient(app).get("/")

        assert result.status_code == 202
        assert result.get_header("X-Unwound") == "yes"


class TestStalledContinuation:
    """A response leg that never continues suspends the response."""

    def test_response_never_emitted(self, trace):
        def stall(request, response, next):
            trace.append("stalled")

        app = Application()
        app.use(middleware("stall", None, stall))
        app.use(lambda request, response, next: response.end("never sent"))

        result = TestClient(app).get("/", timeout=0.2)

        assert result.completed is False
        assert result.body == b""
        assert result.response.finished is False
        assert trace == ["stalled"]

    def test_request_leg_never_continues(self, trace):
        def stall(request, response, next):
            trace.append("stalled")

        app = Application()
        app.use(middleware("stall", stall))
        app.use(lambda request, response, next: trace.append("handler"))

        result = TestClient(app).get("/", timeout=0.2)

        assert result.completed is False
        assert trace == ["stalled"]


class TestErrorPropagation:
    """Handler exceptions propagate unchanged."""

    def test_request_handler_exception_propagates(self):
        def boom(request, response, next):
            raise ValueError("boom")

        unit = middleware("a", boom)

        with pytest.raises(ValueError, match="boom"):
            unit(make_request(), ServerResponse(), noop_next)

    def test_response_handler_exception_propagates_from_end(self):
        def boom(request, response, next):
            raise KeyError("teardown")

        unit = middleware("a", None, boom)
        response = ServerResponse()
        unit(make_request(), response, noop_next)

        with pytest.raises(KeyError):
            response.end("x")
        assert response.finished is False

    def test_application_turns_response_leg_error_into_500(self, trace, traced_unit):
        def boom(request, response, next):
            trace.append("b.teardown")
            raise RuntimeError("teardown failed")

        app = Application()
        app.use(traced_unit("a"))
        app.use(middleware("b", None, boom))
        app.use(lambda request, response, next: response.end("Hello World!"))

        result = TestClient(app).get("/")

        assert result.status_code == 500
        assert result.text == "Internal Server Error"
        assert trace == ["a.setup", "b.teardown", "a.teardown"]
