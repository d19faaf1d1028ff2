"""Tests for eventcheck.formatter and the TAP formatter."""

from __future__ import annotations

import io
import logging

import pytest

from eventcheck.errors import FormatterConfigError
from eventcheck.events import bail_event, diag_event, note_event, ok_event, subtest_event
from eventcheck.formatter import (
    CaptureSink,
    Channel,
    Formatter,
    Phase,
    Result,
    StreamSink,
)
from eventcheck.tap import TapFormatter, render_events


def _make_tap() -> TapFormatter:
    tap = TapFormatter()
    tap.trap_output()
    return tap


class _Recorder(Formatter):
    """Formatter that records which hooks ran."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, object]] = []

    def _begin(self, **options: object) -> None:
        self.calls.append(("begin", options))

    def _result(self, record: object) -> None:
        self.calls.append(("result", record))

    def _end(self, **options: object) -> None:
        self.calls.append(("end", options))


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

class TestCapture:
    """Tests for trapped output."""

    def test_read_all_then_empty(self) -> None:
        tap = _make_tap()
        tap.begin(tests=3)
        tap.result(Result(passed=True, test_number=1, description="first"))
        tap.end()
        assert tap.read() == "TAP version 13\n1..3\nok 1 - first\n"
        assert tap.read() == ""

    def test_channels_read_separately(self) -> None:
        tap = _make_tap()
        tap.out("to out\n")
        tap.fail("to fail\n")
        tap.error("to err\n")
        assert tap.read("fail") == "to fail\n"
        assert tap.read(Channel.ERR) == "to err\n"
        assert tap.read("out") == "to out\n"
        assert tap.read("fail") == ""

    def test_all_keeps_emission_order(self) -> None:
        tap = _make_tap()
        tap.out("a")
        tap.fail("b")
        tap.out("c")
        assert tap.read("all") == "abc"
        assert tap.read("out") == ""

    def test_text_concatenated_without_separator(self) -> None:
        tap = _make_tap()
        tap.out("ok", 1, " - ", None)
        assert tap.read() == "ok1 - None"

    def test_read_without_trap(self) -> None:
        with pytest.raises(RuntimeError, match="trap_output"):
            TapFormatter().read()

    def test_unknown_stream(self) -> None:
        with pytest.raises(ValueError, match="Unknown output stream 'bogus'"):
            _make_tap().read("bogus")

    def test_trap_returns_sink(self) -> None:
        tap = TapFormatter()
        sink = tap.trap_output()
        assert isinstance(sink, CaptureSink)
        tap.out("x")
        assert sink.read() == "x"


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------

class TestStreamSink:
    """Tests for the process-stream sink."""

    def test_defaults_to_process_streams(self, capsys: pytest.CaptureFixture[str]) -> None:
        tap = TapFormatter()
        tap.out("visible\n")
        tap.fail("failure\n")
        tap.error("problem\n")
        captured = capsys.readouterr()
        assert captured.out == "visible\n"
        assert captured.err == "failure\nproblem\n"

    def test_injected_streams(self) -> None:
        out, fail = io.StringIO(), io.StringIO()
        tap = TapFormatter(StreamSink(out=out, fail=fail))
        tap.begin(tests=1)
        tap.result(Result(passed=False, test_number=1, diagnostics=("went wrong",)))
        assert out.getvalue() == "TAP version 13\n1..1\nnot ok 1\n"
        assert fail.getvalue() == "# went wrong\n"

    def test_redirect(self, capsys: pytest.CaptureFixture[str]) -> None:
        sink = StreamSink()
        buffer = io.StringIO()
        sink.redirect(Channel.ERR, buffer)
        sink.write(Channel.ERR, "kept")
        sink.redirect(Channel.ERR, None)
        sink.write(Channel.ERR, "printed")
        assert buffer.getvalue() == "kept"
        assert capsys.readouterr().err == "printed"


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:
    """Tests for option checking and hook delegation."""

    def test_hooks_receive_calls(self) -> None:
        recorder = _Recorder()
        record = Result(passed=True)
        recorder.begin(no_plan=True)
        recorder.result(record)
        recorder.end(tests=1)
        assert recorder.calls == [
            ("begin", {"no_plan": True}),
            ("result", record),
            ("end", {"tests": 1}),
        ]
        assert recorder.phase == Phase.FINISHED

    def test_unknown_begin_option(self) -> None:
        with pytest.raises(FormatterConfigError, match="Unknown argument plan to begin()"):
            _Recorder().begin(plan=3)

    def test_begin_takes_one_option(self) -> None:
        recorder = _Recorder()
        with pytest.raises(FormatterConfigError, match="only one pair of arguments"):
            recorder.begin(tests=3, no_plan=True)
        assert recorder.calls == []

    def test_unknown_end_option(self) -> None:
        with pytest.raises(FormatterConfigError, match="Unknown argument skip_all to end()"):
            _Recorder().end(skip_all="x")

    def test_config_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            _Recorder().begin(bogus=1)

    def test_out_of_order_calls_warn(self, caplog: pytest.LogCaptureFixture) -> None:
        recorder = _Recorder()
        with caplog.at_level(logging.WARNING, logger="eventcheck.formatter"):
            recorder.result(Result(passed=True))
            recorder.begin()
            recorder.begin()
            recorder.end()
            recorder.end()
        messages = [r.getMessage() for r in caplog.records]
        assert "result() called on a formatter that is not_started" in messages
        assert "begin() called on a formatter that is already started" in messages
        assert "end() called twice" in messages
        assert len(recorder.calls) == 5

    def test_formatter_is_abstract(self) -> None:
        with pytest.raises(TypeError):
            Formatter()  # type: ignore[abstract]


# ---------------------------------------------------------------------------
# TAP lines
# ---------------------------------------------------------------------------

class TestTapLines:
    """Tests for the lines TapFormatter writes."""

    def _line(self, result: Result) -> str:
        tap = _make_tap()
        tap.result(result)
        return tap.read("out")

    def test_pass_and_fail(self) -> None:
        assert self._line(Result(passed=True, test_number=4, description="adds")) == "ok 4 - adds\n"
        assert self._line(Result(passed=False, test_number=5, description="divides")) == "not ok 5 - divides\n"

    def test_no_number_no_description(self) -> None:
        assert self._line(Result(passed=True)) == "ok\n"

    def test_todo(self) -> None:
        line = self._line(Result(passed=False, test_number=1, description="later", reason="wip", is_todo=True))
        assert line == "not ok 1 - later # TODO wip\n"

    def test_skip_without_reason(self) -> None:
        assert self._line(Result(passed=True, test_number=2, is_skip=True)) == "ok 2 # SKIP\n"

    def test_hash_escaped_in_description(self) -> None:
        assert self._line(Result(passed=True, description="issue #12")) == "ok - issue \\#12\n"

    def test_failure_diagnostics_commented(self) -> None:
        tap = _make_tap()
        tap.result(Result(passed=False, diagnostics=("first\nsecond", "third")))
        assert tap.read("fail") == "# first\n# second\n# third\n"

    def test_passing_diagnostics_not_written(self) -> None:
        tap = _make_tap()
        tap.result(Result(passed=True, diagnostics=("quiet",)))
        assert tap.read("fail") == ""

    def test_skip_all_plan(self) -> None:
        tap = _make_tap()
        tap.begin(skip_all="no database")
        assert tap.read() == "TAP version 13\n1..0 # skip no database\n"

    def test_deferred_plan(self) -> None:
        tap = _make_tap()
        tap.begin(no_plan=True)
        tap.result(Result(passed=True, test_number=1))
        tap.end(tests=1)
        assert tap.read() == "TAP version 13\nok 1\n1..1\n"


# ---------------------------------------------------------------------------
# Events to results
# ---------------------------------------------------------------------------

class TestResultFromEvent:
    """Tests for Result.from_event."""

    def test_ok_event(self) -> None:
        event = ok_event(False, "later", messages=["why"], todo="wip")
        result = Result.from_event(event, test_number=3)
        assert result == Result(
            passed=False,
            test_number=3,
            description="later",
            reason="wip",
            is_todo=True,
            diagnostics=("why",),
        )
        assert result.type == "fail"

    def test_subtest_event(self) -> None:
        result = Result.from_event(subtest_event(True, "group", [ok_event(True)]))
        assert result.passed
        assert result.type == "pass"

    def test_other_events_rejected(self) -> None:
        with pytest.raises(ValueError, match="got 'note'"):
            Result.from_event(note_event("x"))


class TestRenderEvents:
    """Tests for render_events."""

    def test_run_rendered(self) -> None:
        tap = _make_tap()
        failed = render_events(tap, [
            ok_event(True, "first"),
            note_event("halfway"),
            ok_event(False, "second", messages=["Failed test 'second'"]),
            diag_event("extra detail"),
            ok_event(False, "third", todo="not yet"),
            bail_event("stop"),
        ])
        assert failed == 1
        assert tap.read("out") == (
            "TAP version 13\n"
            "ok 1 - first\n"
            "# halfway\n"
            "not ok 2 - second\n"
            "not ok 3 - third # TODO not yet\n"
            "Bail out!  stop\n"
            "1..3\n"
        )
        assert tap.read("fail") == "# Failed test 'second'\n# extra detail\n"
