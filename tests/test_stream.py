"""Tests for eventcheck.stream -- EventHub capture layers and the Toolkit."""

from __future__ import annotations

import logging

import pytest

from eventcheck.errors import UsageError
from eventcheck.events import Event, EventType, note_event
from eventcheck.stream import Abort, EventHub, Interception, Toolkit


def _make_tools() -> tuple[EventHub, Toolkit]:
    hub = EventHub()
    return hub, Toolkit(hub)


def _types(events: object) -> list[str]:
    return [e.type.value for e in events]  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# EventHub
# ---------------------------------------------------------------------------

class TestEventHub:
    """Tests for listeners and capture layers."""

    def test_listener_receives_events(self) -> None:
        hub = EventHub()
        seen: list[Event] = []
        remove = hub.listen(seen.append)
        hub.emit(note_event("one"))
        remove()
        hub.emit(note_event("two"))
        assert [e.get("message") for e in seen] == ["one"]

    def test_intercept_isolates_outer_listeners(self) -> None:
        hub, tools = _make_tools()
        outer: list[Event] = []
        hub.listen(outer.append)
        captured = hub.intercept(lambda: (tools.ok(True, "pass"), tools.diag("xxx")))
        assert _types(captured) == ["ok", "diag"]
        assert outer == []
        assert captured.completed
        assert hub.depth == 0

    def test_layer_removed_when_body_raises(self) -> None:
        hub, tools = _make_tools()

        def body() -> None:
            tools.ok(True, "first")
            raise ZeroDivisionError

        with pytest.raises(ZeroDivisionError):
            hub.intercept(body)
        assert hub.depth == 0

    def test_nested_intercepts(self) -> None:
        hub, tools = _make_tools()
        inner: list[Interception] = []

        def body() -> None:
            tools.note("outer")
            inner.append(hub.intercept(lambda: tools.note("inner")))
            assert hub.depth == 1

        outer = hub.intercept(body)
        assert [e.get("message") for e in outer] == ["outer"]
        assert [e.get("message") for e in inner[0]] == ["inner"]

    def test_counters_restart_inside_capture(self) -> None:
        hub, tools = _make_tools()
        tools.ok(False, "outside")
        seen: list[tuple[int, int]] = []
        hub.intercept(lambda: (tools.ok(True, "in"), seen.append((hub.tests_run, hub.tests_failed))))
        assert seen == [(1, 0)]
        assert (hub.tests_run, hub.tests_failed) == (1, 1)

    def test_out_of_order_close_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        hub = EventHub()
        first = hub.grab()
        second = hub.grab()
        with caplog.at_level(logging.WARNING, logger="eventcheck.stream"):
            first.finish()
        assert "out of order" in caplog.text
        second.finish()
        assert hub.depth == 0


# ---------------------------------------------------------------------------
# Abort outcomes
# ---------------------------------------------------------------------------

class TestAbort:
    """Tests for bail_out / skip_all as captured outcomes."""

    def test_bail_out_captured(self) -> None:
        hub, tools = _make_tools()
        captured = hub.intercept(lambda: (tools.ok(True, "a"), tools.bail_out("db down"), tools.ok(True, "b")))
        assert not captured.completed
        assert captured.aborted is not None
        assert captured.aborted.get("reason") == "db down"
        assert _types(captured) == ["ok", "bail"]
        assert captured.events[-1] is captured.aborted

    def test_skip_all_captured(self) -> None:
        hub, tools = _make_tools()
        captured = hub.intercept(lambda: tools.skip_all("no network"))
        assert captured.aborted is not None
        assert dict(captured.aborted.fields) == {"max": 0, "directive": "SKIP", "reason": "no network"}

    def test_reraise(self) -> None:
        hub, tools = _make_tools()
        captured = hub.intercept(lambda: tools.bail_out("stop"))
        with pytest.raises(Abort, match="bail: stop") as info:
            captured.reraise()
        assert info.value.event is captured.aborted

    def test_reraise_after_completion_is_noop(self) -> None:
        hub, tools = _make_tools()
        hub.intercept(lambda: tools.ok(True)).reraise()

    def test_abort_outside_intercept_propagates(self) -> None:
        _, tools = _make_tools()
        with pytest.raises(Abort):
            tools.bail_out("nowhere to go")


# ---------------------------------------------------------------------------
# Toolkit
# ---------------------------------------------------------------------------

class TestToolkit:
    """Tests for the assertion tools."""

    def test_ok_failure_message_names_caller(self) -> None:
        hub, tools = _make_tools()
        captured = hub.intercept(lambda: tools.ok(0, "zero", diag="got 0"))
        event = captured.events[0]
        assert event.get("pass") is False
        assert event.provenance.file == __file__
        assert event.get("diag") == f"Failed test 'zero' at {event.provenance}.\ngot 0"

    def test_ok_returns_verdict(self) -> None:
        hub, tools = _make_tools()
        results: list[bool] = []
        hub.intercept(lambda: (results.append(tools.ok("yes")), results.append(tools.ok(""))))
        assert results == [True, False]

    def test_todo_failure_does_not_count(self) -> None:
        hub, tools = _make_tools()
        tools.ok(False, "later", todo="not written")
        assert hub.tests_failed == 0

    def test_negative_plan(self) -> None:
        _, tools = _make_tools()
        with pytest.raises(UsageError, match="plan count must be >= 0"):
            tools.plan(-1)

    def test_done_testing_emits_trailing_plan(self) -> None:
        hub, tools = _make_tools()
        results: list[bool] = []
        captured = hub.intercept(lambda: (
            tools.ok(True, "a"),
            tools.ok(False, "b"),
            results.append(tools.done_testing()),
        ))
        assert _types(captured) == ["ok", "ok", "plan", "finish"]
        assert captured.events[2].get("max") == 2
        assert (captured.events[3].get("tests_run"), captured.events[3].get("tests_failed")) == (2, 1)
        assert results == [False]

    def test_done_testing_respects_declared_plan(self) -> None:
        hub, tools = _make_tools()
        captured = hub.intercept(lambda: (tools.plan(1), tools.ok(True), tools.done_testing()))
        assert _types(captured) == ["plan", "ok", "finish"]


class TestSubtest:
    """Tests for Toolkit.subtest."""

    def test_passing_subtest_collapses_children(self) -> None:
        hub, tools = _make_tools()
        captured = hub.intercept(lambda: tools.subtest("group", lambda: (
            tools.ok(True, "one"),
            tools.ok(True, "two"),
        )))
        assert _types(captured) == ["subtest"]
        event = captured.events[0]
        assert event.get("pass") is True
        assert event.get("subevents") == 2
        assert _types(event.children) == ["ok", "ok"]

    def test_failing_child_fails_subtest(self) -> None:
        hub, tools = _make_tools()
        captured = hub.intercept(lambda: tools.subtest("group", lambda: tools.ok(False, "bad")))
        event = captured.events[0]
        assert event.get("pass") is False
        assert event.get("diag").startswith("Failed test 'group' at ")

    def test_empty_subtest_fails(self) -> None:
        hub, tools = _make_tools()
        captured = hub.intercept(lambda: tools.subtest("empty", lambda: tools.note("nothing")))
        event = captured.events[0]
        assert event.get("pass") is False
        assert "No tests run for subtest 'empty'" in event.get("diag")

    def test_skipped_subtest_passes(self) -> None:
        hub, tools = _make_tools()
        captured = hub.intercept(lambda: tools.subtest("later", lambda: tools.skip_all("not today")))
        event = captured.events[0]
        assert event.get("pass") is True
        assert event.get("skip") == "not today"

    def test_bail_in_subtest_bails_outer_run(self) -> None:
        hub, tools = _make_tools()
        captured = hub.intercept(lambda: (
            tools.subtest("group", lambda: tools.bail_out("gone")),
            tools.ok(True, "never reached"),
        ))
        assert captured.aborted is not None
        assert captured.aborted.type == EventType.BAIL
        assert _types(captured) == ["subtest", "bail"]
        assert captured.events[0].get("pass") is False


# ---------------------------------------------------------------------------
# Grab
# ---------------------------------------------------------------------------

class TestGrab:
    """Tests for Grab."""

    def test_finish_returns_events(self) -> None:
        hub, tools = _make_tools()
        grab = hub.grab()
        tools.ok(True, "pass")
        tools.note("hi")
        events = grab.finish()
        assert _types(events) == ["ok", "note"]
        assert not grab.active
        assert hub.depth == 0

    def test_finish_twice(self) -> None:
        hub = EventHub()
        grab = hub.grab()
        grab.finish()
        with pytest.raises(UsageError, match="already finished"):
            grab.finish()

    def test_context_manager(self) -> None:
        hub, tools = _make_tools()
        with hub.grab() as grab:
            tools.diag("inside")
            assert hub.depth == 1
        tools.diag("outside")
        assert _types(grab.events) == ["diag"]
        assert hub.depth == 0

    def test_context_manager_after_finish(self) -> None:
        hub, tools = _make_tools()
        with hub.grab() as grab:
            tools.note("x")
            grab.finish()
        assert len(grab.events) == 1
