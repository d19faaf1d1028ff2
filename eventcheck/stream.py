"""In-process event producer: an event hub plus the tools that feed it.

:class:`EventHub` delivers events to listeners. Capture works in layers:
:meth:`EventHub.intercept` and :meth:`EventHub.grab` push a fresh layer so
that events emitted while it is active reach only the capturing listener,
and counters (tests run, tests failed, plan seen) restart inside it.

:class:`Toolkit` is the assertion side: ``ok``, ``note``, ``diag``,
``plan``, ``subtest`` and friends each emit one :class:`~eventcheck.events.Event`
carrying the caller's file and line.

Usage::

    hub = EventHub()
    tools = Toolkit(hub)

    result = hub.intercept(lambda: (
        tools.ok(True, "pass"),
        tools.ok(False, "fail"),
        tools.diag("xxx"),
    ))
    assert [e.type.value for e in result.events] == ["ok", "ok", "diag"]
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from types import TracebackType

from eventcheck.errors import UsageError
from eventcheck.events import (
    Event,
    EventType,
    Provenance,
    bail_event,
    caller_provenance,
    diag_event,
    finish_event,
    note_event,
    ok_event,
    plan_event,
    subtest_event,
)

logger = logging.getLogger(__name__)

Listener = Callable[[Event], None]

_RESULT_TYPES = (EventType.OK, EventType.SUBTEST)


# ---------------------------------------------------------------------------
# Abort
# ---------------------------------------------------------------------------

class Abort(Exception):
    """Early termination of a run, carrying the event that caused it.

    Raised after a bail-out or skip-all event has been emitted. Inside
    :meth:`EventHub.intercept` it is captured as an outcome; anywhere else
    it propagates like any other exception.
    """

    def __init__(self, event: Event) -> None:
        reason = event.get("reason", "")
        super().__init__(f"{event.type.value}: {reason}" if reason else event.type.value)
        self.event = event


# ---------------------------------------------------------------------------
# Interception
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Interception:
    """The outcome of :meth:`EventHub.intercept`.

    Attributes:
        events: Every event emitted while the body ran, in order. When the
            body aborted, the terminal event is the last one here too.
        aborted: The terminal event if the body raised :class:`Abort`,
            otherwise ``None``.
    """
    events: tuple[Event, ...]
    aborted: Event | None = None

    @property
    def completed(self) -> bool:
        """True if the body returned normally."""
        return self.aborted is None

    def reraise(self) -> None:
        """Re-raise the captured abort, if there was one."""
        if self.aborted is not None:
            raise Abort(self.aborted)

    def __iter__(self) -> Iterator[Event]:
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)


# ---------------------------------------------------------------------------
# EventHub
# ---------------------------------------------------------------------------

@dataclass
class _Layer:
    listeners: list[Listener] = field(default_factory=list)
    tests_run: int = 0
    tests_failed: int = 0
    planned: bool = False


class EventHub:
    """Delivers emitted events to the listeners of the innermost layer."""

    def __init__(self) -> None:
        self._layers: list[_Layer] = [_Layer()]

    @property
    def depth(self) -> int:
        """Number of active capture layers (0 at top level)."""
        return len(self._layers) - 1

    @property
    def tests_run(self) -> int:
        return self._layers[-1].tests_run

    @property
    def tests_failed(self) -> int:
        return self._layers[-1].tests_failed

    @property
    def planned(self) -> bool:
        return self._layers[-1].planned

    def listen(self, listener: Listener) -> Callable[[], None]:
        """Add a listener to the current layer.

        Returns:
            A zero-argument callable that removes the listener again.
        """
        layer = self._layers[-1]
        layer.listeners.append(listener)

        def remove() -> None:
            if listener in layer.listeners:
                layer.listeners.remove(listener)

        return remove

    def emit(self, event: Event) -> None:
        """Record ``event`` against the current layer and notify its listeners."""
        layer = self._layers[-1]
        if event.type in _RESULT_TYPES:
            layer.tests_run += 1
            if not event.get("effective_pass", False):
                layer.tests_failed += 1
        elif event.type == EventType.PLAN:
            layer.planned = True

        logger.debug("emit %s at depth %d (%s)", event.type.value, self.depth, event.provenance)
        for listener in list(layer.listeners):
            listener(event)

    def intercept(self, body: Callable[[], object]) -> Interception:
        """Run ``body`` and collect every event it emits.

        The capture layer is removed however ``body`` exits. An
        :class:`Abort` raised by ``body`` is captured in the result; any
        other exception propagates.
        """
        events: list[Event] = []
        layer = self._push()
        layer.listeners.append(events.append)
        aborted: Event | None = None
        try:
            body()
        except Abort as exc:
            aborted = exc.event
            logger.debug("intercept captured abort: %s", exc)
        finally:
            self._pop(layer)
        return Interception(events=tuple(events), aborted=aborted)

    def grab(self) -> Grab:
        """Start capturing events until :meth:`Grab.finish` is called."""
        return Grab(self)

    def _push(self) -> _Layer:
        layer = _Layer()
        self._layers.append(layer)
        return layer

    def _pop(self, layer: _Layer) -> None:
        if self._layers[-1] is not layer:
            logger.warning("Capture layers closed out of order (depth %d)", self.depth)
        if layer in self._layers:
            self._layers.remove(layer)


# ---------------------------------------------------------------------------
# Grab
# ---------------------------------------------------------------------------

class Grab:
    """Capture events without wrapping the code in a function.

    Usage::

        grab = hub.grab()
        tools.ok(True, "pass")
        events = grab.finish()

    or as a context manager, after which :attr:`events` holds the capture.
    """

    def __init__(self, hub: EventHub) -> None:
        self._hub = hub
        self._events: list[Event] = []
        self._layer: _Layer | None = hub._push()
        self._layer.listeners.append(self._events.append)

    @property
    def active(self) -> bool:
        return self._layer is not None

    @property
    def events(self) -> list[Event]:
        """Events captured so far."""
        return list(self._events)

    def finish(self) -> list[Event]:
        """Stop capturing and return the captured events."""
        if self._layer is None:
            msg = "Grab.finish() called on a grab that already finished"
            raise UsageError(msg)
        self._hub._pop(self._layer)
        self._layer = None
        return list(self._events)

    def __enter__(self) -> Grab:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._layer is not None:
            self.finish()


# ---------------------------------------------------------------------------
# Toolkit
# ---------------------------------------------------------------------------

class Toolkit:
    """Assertion tools that emit events into an :class:`EventHub`."""

    def __init__(self, hub: EventHub | None = None) -> None:
        self.hub = hub if hub is not None else EventHub()

    def ok(
        self,
        passed: object,
        name: str = "",
        *,
        diag: str | Sequence[str] = (),
        todo: str | None = None,
        skip: str | None = None,
        provenance: Provenance | None = None,
    ) -> bool:
        """Emit an assertion result.

        Args:
            passed: Truthiness decides pass or fail.
            name: Test name.
            diag: Extra diagnostic lines attached to the result.
            todo: Reason, if the test is expected to fail.
            skip: Reason, if the test was skipped.
            provenance: Where the result is reported from. Defaults to the
                caller; helpers built on ``ok`` pass their own caller's.

        Returns:
            ``bool(passed)``.
        """
        if provenance is None:
            provenance = caller_provenance()
        messages = [diag] if isinstance(diag, str) else list(diag)
        if not passed:
            label = f"Failed test '{name}'" if name else "Failed test"
            messages.insert(0, f"{label} at {provenance}.")
        self.hub.emit(ok_event(
            bool(passed),
            name,
            messages=messages,
            todo=todo,
            skip=skip,
            provenance=provenance,
        ))
        return bool(passed)

    def note(self, message: str) -> None:
        self.hub.emit(note_event(message, provenance=caller_provenance()))

    def diag(self, message: str) -> None:
        self.hub.emit(diag_event(message, provenance=caller_provenance()))

    def plan(self, count: int) -> None:
        """Declare how many tests will run."""
        if count < 0:
            msg = f"plan count must be >= 0, got {count}"
            raise UsageError(msg)
        self.hub.emit(plan_event(count, provenance=caller_provenance()))

    def skip_all(self, reason: str) -> None:
        """Declare the whole run skipped and stop it."""
        event = plan_event(0, directive="SKIP", reason=reason, provenance=caller_provenance())
        self.hub.emit(event)
        raise Abort(event)

    def bail_out(self, reason: str) -> None:
        """Give up on the run entirely."""
        event = bail_event(reason, provenance=caller_provenance())
        self.hub.emit(event)
        raise Abort(event)

    def done_testing(self) -> bool:
        """Emit a trailing plan (if none was declared) and the finish event.

        Returns:
            True if no test in the current layer failed.
        """
        provenance = caller_provenance()
        if not self.hub.planned:
            self.hub.emit(plan_event(self.hub.tests_run, provenance=provenance))
        self.hub.emit(finish_event(
            self.hub.tests_run,
            self.hub.tests_failed,
            provenance=provenance,
        ))
        return self.hub.tests_failed == 0

    def subtest(self, name: str, body: Callable[[], object]) -> bool:
        """Run ``body`` as a nested group reported as a single event.

        A subtest that runs no tests fails, unless it skipped itself with
        :meth:`skip_all`. A bail out inside the body bails the outer run
        too: the subtest event is emitted, then the bail event is repeated
        in the outer layer and :class:`Abort` is raised again.

        Returns:
            True if the subtest passed.
        """
        provenance = caller_provenance()
        captured = self.hub.intercept(body)
        children = captured.events
        aborted = captured.aborted

        skip: str | None = None
        if aborted is not None and aborted.type == EventType.PLAN:
            skip = str(aborted.get("reason", ""))

        ran = sum(1 for e in children if e.type in _RESULT_TYPES)
        failed = sum(
            1 for e in children
            if e.type in _RESULT_TYPES and not e.get("effective_pass", False)
        )
        bailed = aborted is not None and aborted.type == EventType.BAIL
        passed = failed == 0 and not bailed and (ran > 0 or skip is not None)

        messages: list[str] = []
        if not passed:
            messages.append(f"Failed test '{name}' at {provenance}.")
            if ran == 0 and skip is None and not bailed:
                messages.append(f"No tests run for subtest '{name}'")

        self.hub.emit(subtest_event(
            passed,
            name,
            children,
            messages=messages,
            skip=skip,
            provenance=provenance,
        ))
        if bailed:
            self.hub.emit(aborted)  # type: ignore[arg-type]
            captured.reraise()
        return passed
