"""Base class for rendering test results into a textual protocol.

A :class:`Formatter` is fed by a runner::

    formatter.begin(tests=3)
    for result in results:
        formatter.result(result)
    formatter.end()

``begin``, ``result`` and ``end`` validate their options and delegate to
the ``_begin``, ``_result`` and ``_end`` hooks, which is where subclasses
do the actual rendering. Do not override the public methods.

Output goes through three channels (``out``, ``fail``, ``err``) written
to an injected :class:`OutputSink`. :meth:`Formatter.trap_output` swaps
in a :class:`CaptureSink` so the rendered text can be read back, which is
how formatters are tested.
"""

from __future__ import annotations

import logging
import sys
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Self, TextIO

from eventcheck.errors import FormatterConfigError
from eventcheck.events import Event, EventType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Channels and sinks
# ---------------------------------------------------------------------------

class Channel(Enum):
    """Named output channels."""
    OUT = "out"
    FAIL = "fail"
    ERR = "err"


class OutputSink(ABC):
    """Destination for formatter output."""

    @abstractmethod
    def write(self, channel: Channel, text: str) -> None: ...


class StreamSink(OutputSink):
    """Writes each channel to a text stream.

    Unset channels resolve ``sys.stdout`` (``out``) or ``sys.stderr``
    (``fail`` and ``err``) at write time, so redirection of the process
    streams is honoured.
    """

    def __init__(
        self,
        *,
        out: TextIO | None = None,
        fail: TextIO | None = None,
        err: TextIO | None = None,
    ) -> None:
        self._streams: dict[Channel, TextIO | None] = {
            Channel.OUT: out,
            Channel.FAIL: fail,
            Channel.ERR: err,
        }

    def redirect(self, channel: Channel, stream: TextIO | None) -> None:
        """Point one channel at ``stream`` (None restores the default)."""
        self._streams[channel] = stream

    def stream_for(self, channel: Channel) -> TextIO:
        stream = self._streams[channel]
        if stream is not None:
            return stream
        return sys.stdout if channel == Channel.OUT else sys.stderr

    def write(self, channel: Channel, text: str) -> None:
        self.stream_for(channel).write(text)


class CaptureSink(OutputSink):
    """Accumulates output in memory, per channel and all together."""

    ALL = "all"

    def __init__(self) -> None:
        self._buffers: dict[str, list[str]] = {
            key: [] for key in (*(c.value for c in Channel), self.ALL)
        }

    def write(self, channel: Channel, text: str) -> None:
        self._buffers[channel.value].append(text)
        self._buffers[self.ALL].append(text)

    def read(self, stream: Channel | str = ALL) -> str:
        """Return and clear one buffer.

        Reading ``"all"`` returns everything written so far, in order, and
        clears every buffer.
        """
        key = stream.value if isinstance(stream, Channel) else stream
        if key not in self._buffers:
            valid = ", ".join(self._buffers)
            msg = f"Unknown output stream {key!r} (expected one of: {valid})"
            raise ValueError(msg)

        text = "".join(self._buffers[key])
        if key == self.ALL:
            for buffer in self._buffers.values():
                buffer.clear()
        else:
            self._buffers[key].clear()
        return text


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Result:
    """A single test outcome as handed to a formatter.

    Attributes:
        passed: Whether the test passed.
        test_number: Sequence number, if the runner numbers its tests.
        description: Test name.
        reason: Reason attached to a todo or skip.
        is_todo: The test is expected to fail.
        is_skip: The test was not run.
        diagnostics: Extra lines explaining a failure.
    """
    passed: bool
    test_number: int | None = None
    description: str = ""
    reason: str = ""
    is_todo: bool = False
    is_skip: bool = False
    diagnostics: tuple[str, ...] = ()

    @property
    def type(self) -> str:
        return "pass" if self.passed else "fail"

    @classmethod
    def from_event(cls, event: Event, test_number: int | None = None) -> Self:
        """Build a result from an ``ok`` or ``subtest`` event."""
        if event.type not in (EventType.OK, EventType.SUBTEST):
            msg = f"Only ok and subtest events become results, got '{event.type.value}'"
            raise ValueError(msg)
        todo = event.get("todo")
        skip = event.get("skip")
        reason = todo if todo is not None else skip
        return cls(
            passed=bool(event.get("pass", False)),
            test_number=test_number,
            description=str(event.get("name", "") or ""),
            reason=str(reason or ""),
            is_todo=todo is not None,
            is_skip=skip is not None,
            diagnostics=event.messages,
        )


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

class Phase(Enum):
    """Lifecycle of a formatter."""
    NOT_STARTED = "not_started"
    STARTED = "started"
    FINISHED = "finished"


def _check_options(
    phase: str,
    options: Mapping[str, object],
    allowed: frozenset[str],
) -> None:
    """Reject unknown keys and more than one option."""
    unknown = sorted(set(options) - allowed)
    if unknown:
        msg = f"Unknown argument {', '.join(unknown)} to {phase}()"
        raise FormatterConfigError(msg)
    if len(options) > 1:
        msg = f"{phase}() takes only one pair of arguments, got {', '.join(sorted(options))}"
        raise FormatterConfigError(msg)


class Formatter(ABC):
    """Template for result formatters.

    The lifecycle ``begin -> result* -> end`` is the caller's
    responsibility. Calls out of order are logged, not rejected.
    """

    BEGIN_OPTIONS = frozenset({"tests", "no_plan", "skip_all"})
    END_OPTIONS = frozenset({"tests"})

    def __init__(self, sink: OutputSink | None = None) -> None:
        self.sink: OutputSink = sink if sink is not None else StreamSink()
        self.phase = Phase.NOT_STARTED
        self._capture: CaptureSink | None = None

    # -- Lifecycle -----------------------------------------------------------

    def begin(self, **options: object) -> None:
        """Start a run.

        Accepts at most one of ``tests=<count>``, ``no_plan=True`` or
        ``skip_all=<reason>``.
        """
        _check_options("begin", options, self.BEGIN_OPTIONS)
        if self.phase != Phase.NOT_STARTED:
            logger.warning("begin() called on a formatter that is already %s", self.phase.value)
        self._begin(**options)
        self.phase = Phase.STARTED

    def result(self, record: object) -> None:
        """Render one result record."""
        if self.phase != Phase.STARTED:
            logger.warning("result() called on a formatter that is %s", self.phase.value)
        self._result(record)

    def end(self, **options: object) -> None:
        """Finish a run. ``tests=<count>`` emits a deferred plan."""
        _check_options("end", options, self.END_OPTIONS)
        if self.phase == Phase.FINISHED:
            logger.warning("end() called twice")
        self._end(**options)
        self.phase = Phase.FINISHED

    # -- Output --------------------------------------------------------------

    def out(self, *text: object) -> None:
        """Write ``text`` to the output channel, concatenated as is."""
        self._write(Channel.OUT, text)

    def fail(self, *text: object) -> None:
        """Write ``text`` to the failure channel."""
        self._write(Channel.FAIL, text)

    def error(self, *text: object) -> None:
        """Write ``text`` to the error channel."""
        self._write(Channel.ERR, text)

    def _write(self, channel: Channel, text: Sequence[object]) -> None:
        self.sink.write(channel, "".join(str(t) for t in text))

    def trap_output(self) -> CaptureSink:
        """Send all output to an in-memory buffer from now on.

        See :meth:`read` for getting it back.
        """
        self._capture = CaptureSink()
        self.sink = self._capture
        return self._capture

    def read(self, stream: Channel | str = CaptureSink.ALL) -> str:
        """Return and clear trapped output (``out``, ``fail``, ``err`` or ``all``)."""
        if self._capture is None:
            msg = "read() needs trap_output() to be called first"
            raise RuntimeError(msg)
        return self._capture.read(stream)

    # -- Hooks ---------------------------------------------------------------

    @abstractmethod
    def _begin(self, **options: object) -> None: ...

    @abstractmethod
    def _result(self, record: object) -> None: ...

    @abstractmethod
    def _end(self, **options: object) -> None: ...
