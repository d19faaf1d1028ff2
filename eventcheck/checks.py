"""Checks engine: describe an expected event sequence and compare a run to it.

A check is declared with a block that receives a :class:`CheckBuilder`::

    checks = check(lambda c: (
        c.event("ok", {"pass": True, "name": "pass"}),
        c.event("ok", {"pass": False, "diag": re.compile(r"^Failed test ")}),
        c.event("diag", message="xxx"),
        c.directive("end"),
    ))

    result = checks.run(events)
    if not result.passed:
        print(result.summary())

Expectations are evaluated in declaration order against a single forward
cursor into the actual events. Event expectations compare the type and
then only the fields they list. Directives steer the cursor:

- ``skip`` (count): consume that many events without looking at them.
- ``seek`` (bool): while on, events of the wrong type are passed over
  until one of the expected type turns up.
- ``end``: no events may remain.
- a callable ``handler(state, events, arg)``: anything else; it may move
  the cursor forward or rewrite the remaining events.

Every failure is recorded and evaluation carries on, so one run reports
all the divergences it can find. Each diagnostic names the line that
declared the failing expectation and, where one is involved, the line
that emitted the actual event.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from eventcheck.errors import UsageError
from eventcheck.events import Event, EventType, Provenance, caller_provenance
from eventcheck.matchers import MISSING, Matcher, as_matcher
from eventcheck.stream import Grab, Interception

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Expectation records
# ---------------------------------------------------------------------------

class DirectiveName(Enum):
    """Built-in directives."""
    SKIP = "skip"
    SEEK = "seek"
    END = "end"


@dataclass(frozen=True)
class EventExpectation:
    """Expect the next event to have ``type`` and to satisfy ``fields``.

    Fields not listed in ``fields`` are not compared.
    """
    type: EventType
    fields: Mapping[str, Matcher]
    provenance: Provenance

    def describe(self) -> str:
        return f"'{self.type.value}' declared at {self.provenance}"


@dataclass(frozen=True)
class Directive:
    """A control step: a built-in ``name`` or a custom ``handler``."""
    name: DirectiveName | None
    handler: DirectiveHandler | None
    arg: object
    provenance: Provenance

    @property
    def label(self) -> str:
        if self.name is not None:
            return self.name.value
        return getattr(self.handler, "__name__", "custom")

    def describe(self) -> str:
        return f"directive '{self.label}' declared at {self.provenance}"


Expectation = EventExpectation | Directive


# ---------------------------------------------------------------------------
# CheckState
# ---------------------------------------------------------------------------

class CheckState:
    """Mutable evaluation state handed to custom directive handlers.

    ``events`` is a working copy of the actual events; handlers may remove
    or replace entries at or after :attr:`cursor`. The cursor itself only
    moves forward.
    """

    def __init__(self, events: Iterable[Event], *, seek: bool = False) -> None:
        self.events: list[Event] = list(events)
        self.seek = seek
        self._cursor = 0

    @property
    def cursor(self) -> int:
        return self._cursor

    @cursor.setter
    def cursor(self, value: int) -> None:
        if value < self._cursor:
            msg = f"cursor cannot move backwards (from {self._cursor} to {value})"
            raise UsageError(msg)
        self._cursor = min(value, len(self.events))

    @property
    def exhausted(self) -> bool:
        return self._cursor >= len(self.events)

    @property
    def current(self) -> Event | None:
        """The event under the cursor, or None at the end."""
        if self.exhausted:
            return None
        return self.events[self._cursor]

    @property
    def remaining(self) -> list[Event]:
        """Events not consumed yet."""
        return self.events[self._cursor:]

    def advance(self, count: int = 1) -> None:
        self.cursor = self._cursor + count

    def discard(self, predicate: Callable[[Event], bool]) -> int:
        """Remove not-yet-consumed events for which ``predicate`` is true.

        Returns:
            The number of events removed.
        """
        kept = [e for e in self.remaining if not predicate(e)]
        removed = len(self.events) - self._cursor - len(kept)
        self.events[self._cursor:] = kept
        return removed


DirectiveHandler = Callable[[CheckState, list[Event], object], object]


# ---------------------------------------------------------------------------
# CheckResult
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CheckResult:
    """Verdict and diagnostic trace of one :meth:`Checks.run`."""
    passed: bool
    diagnostics: tuple[str, ...] = ()
    events_examined: int = 0
    events_consumed: int = 0

    def summary(self) -> str:
        """Multi-line human-readable report."""
        status = "PASS" if self.passed else "FAIL"
        lines = [
            f"[{status}] {self.events_consumed}/{self.events_examined} event(s) consumed",
        ]
        lines.extend(f"  {d}" for d in self.diagnostics)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dict for JSON storage."""
        return {
            "passed": self.passed,
            "diagnostics": list(self.diagnostics),
            "events_examined": self.events_examined,
            "events_consumed": self.events_consumed,
        }


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Checks:
    """An ordered, fully built expectation sequence."""
    expectations: tuple[Expectation, ...] = ()
    provenance: Provenance = field(default_factory=Provenance)

    def __len__(self) -> int:
        return len(self.expectations)

    def run(self, events: Iterable[Event], *, seek: bool = False) -> CheckResult:
        """Evaluate the expectations against ``events``.

        Args:
            events: The actual events, in emission order. Not modified.
            seek: Initial lenient mode; ``seek`` directives toggle it.

        Returns:
            A :class:`CheckResult`. Exceptions raised by custom directive
            handlers propagate and abort the run.
        """
        state = CheckState(events, seek=seek)
        total = len(state.events)
        passed = True
        diagnostics: list[str] = []

        for item in self.expectations:
            if isinstance(item, Directive):
                ok, diag = self._run_directive(item, state)
            else:
                ok, diag = self._check_event(item, state)
            if not ok:
                passed = False
            diagnostics.extend(diag)

        if not passed:
            diagnostics.insert(0, f"Checks built at {self.provenance} did not match")

        logger.debug(
            "Checks from %s: %s (%d expectation(s), %d/%d event(s) consumed)",
            self.provenance,
            "pass" if passed else "fail",
            len(self.expectations),
            state.cursor,
            total,
        )
        return CheckResult(
            passed=passed,
            diagnostics=tuple(diagnostics),
            events_examined=total,
            events_consumed=state.cursor,
        )

    # -- Event expectations --------------------------------------------------

    def _check_event(
        self,
        want: EventExpectation,
        state: CheckState,
    ) -> tuple[bool, list[str]]:
        """Match one event expectation at the cursor."""
        skipped = 0
        if state.seek:
            while not state.exhausted and state.current.type != want.type:  # type: ignore[union-attr]
                state.advance()
                skipped += 1

        got = state.current
        if got is None:
            reason = f"No more events, expected {want.describe()}"
            if skipped:
                reason += f" (seek passed over {skipped} event(s))"
            return False, [reason]

        position = state.cursor
        if got.type != want.type:
            return False, [
                f"Wrong event type at position {position}: got '{got.type.value}' "
                f"emitted at {got.provenance}, expected {want.describe()}"
            ]

        problems: list[str] = []
        for name, matcher in want.fields.items():
            ok, diag = matcher.evaluate(name, got.fields.get(name, MISSING))
            if not ok:
                problems.extend(diag)
        state.advance()

        if not problems:
            return True, []
        header = (
            f"Event '{got.type.value}' at position {position} emitted at "
            f"{got.provenance} does not match check declared at {want.provenance}:"
        )
        return False, [header, *(f"  {p}" for p in problems)]

    # -- Directives ----------------------------------------------------------

    def _run_directive(
        self,
        directive: Directive,
        state: CheckState,
    ) -> tuple[bool, list[str]]:
        if directive.name == DirectiveName.SKIP:
            return self._skip(directive, state)
        if directive.name == DirectiveName.SEEK:
            state.seek = bool(directive.arg)
            return True, []
        if directive.name == DirectiveName.END:
            return self._end(directive, state)
        return self._custom(directive, state)

    @staticmethod
    def _skip(directive: Directive, state: CheckState) -> tuple[bool, list[str]]:
        count = int(directive.arg)  # type: ignore[call-overload]
        left = len(state.events) - state.cursor
        if count > left:
            return False, [
                f"Cannot skip {count} event(s) at position {state.cursor}, only "
                f"{left} remain ({directive.describe()})"
            ]
        state.advance(count)
        return True, []

    @staticmethod
    def _end(directive: Directive, state: CheckState) -> tuple[bool, list[str]]:
        extras = state.remaining
        if not extras:
            return True, []
        start = state.cursor
        diagnostics = [
            f"Unexpected extra event '{e.type.value}' at position {start + i} "
            f"emitted at {e.provenance} (end declared at {directive.provenance})"
            for i, e in enumerate(extras)
        ]
        state.advance(len(extras))
        return False, diagnostics

    @staticmethod
    def _custom(directive: Directive, state: CheckState) -> tuple[bool, list[str]]:
        outcome = directive.handler(state, state.events, directive.arg)  # type: ignore[misc]
        if outcome is None:
            return True, []
        verdict = outcome
        diag: list[str] = []
        if isinstance(outcome, tuple):
            verdict, *rest = outcome
            for item in rest:
                if isinstance(item, (list, tuple)):
                    diag.extend(str(d) for d in item)
                else:
                    diag.append(str(item))
        if verdict:
            return True, diag
        if not diag:
            return False, [f"{directive.describe()} failed"]
        return False, [f"{directive.describe()} failed:", *(f"  {d}" for d in diag)]


# ---------------------------------------------------------------------------
# CheckBuilder / check()
# ---------------------------------------------------------------------------

class CheckBuilder:
    """Collects expectations while a :func:`check` block runs.

    The builder only accepts calls while its block is running; afterwards
    it is closed and every method raises :class:`UsageError`.
    """

    def __init__(self, provenance: Provenance) -> None:
        self.provenance = provenance
        self._items: list[Expectation] = []
        self._open = True

    @property
    def populated(self) -> bool:
        """True once at least one expectation was recorded."""
        return bool(self._items)

    def event(
        self,
        type: EventType | str,
        fields: Mapping[str, object] | None = None,
        /,
        **more: object,
    ) -> None:
        """Expect an event of ``type`` whose listed fields match.

        Fields can be given as a mapping, as keywords, or both (use the
        mapping for names that are not identifiers, such as ``pass``).
        An empty set of fields acknowledges the event without checking it.
        """
        self._require_open("event")
        try:
            event_type = EventType.coerce(type)
        except ValueError as exc:
            raise UsageError(str(exc)) from None
        if fields is not None and not isinstance(fields, Mapping):
            msg = f"event() takes a type followed by a mapping of fields, got {type!r} and {fields!r}"
            raise UsageError(msg)

        wanted: dict[str, object] = dict(fields or {})
        wanted.update(more)
        self._items.append(EventExpectation(
            type=event_type,
            fields={name: as_matcher(value) for name, value in wanted.items()},
            provenance=caller_provenance(),
        ))

    def directive(self, directive: str | DirectiveHandler, *args: object) -> None:
        """Add a directive: a built-in name or a handler callable.

        ``skip`` and ``seek`` take exactly one argument, ``end`` takes none,
        and handlers take at most one, passed through as ``arg``.
        """
        self._require_open("directive")
        if not directive:
            msg = "No directive specified"
            raise UsageError(msg)
        if len(args) > 1:
            msg = f"directive() takes at most one argument, got {len(args)}"
            raise UsageError(msg)
        arg = args[0] if args else None
        provenance = caller_provenance()

        if callable(directive):
            self._items.append(Directive(
                name=None, handler=directive, arg=arg, provenance=provenance,
            ))
            return
        if not isinstance(directive, str):
            msg = "directives must be a predefined name or a callable"
            raise UsageError(msg)

        try:
            name = DirectiveName(directive)
        except ValueError:
            valid = ", ".join(d.value for d in DirectiveName)
            msg = f"Unknown directive '{directive}' (expected one of: {valid}, or a callable)"
            raise UsageError(msg) from None

        if name != DirectiveName.END and not args:
            msg = f"Directive '{directive}' requires exactly 1 argument"
            raise UsageError(msg)
        if name == DirectiveName.END and args:
            msg = "Directive 'end' takes no argument"
            raise UsageError(msg)
        if name == DirectiveName.SKIP and not (
            isinstance(arg, int) and not isinstance(arg, bool) and arg >= 0
        ):
            msg = f"Directive 'skip' needs a non-negative integer count, got {arg!r}"
            raise UsageError(msg)

        self._items.append(Directive(name=name, handler=None, arg=arg, provenance=provenance))

    def build(self) -> Checks:
        """Close the builder and return what it collected."""
        self._open = False
        return Checks(expectations=tuple(self._items), provenance=self.provenance)

    def _require_open(self, what: str) -> None:
        if not self._open:
            msg = f"{what}() cannot be used outside of a check block"
            raise UsageError(msg)


def check(block: Callable[[CheckBuilder], object]) -> Checks:
    """Build a :class:`Checks` by running ``block`` with a fresh builder.

    ``event()`` and ``directive()`` return None, so a block that only
    calls them returns nothing useful. If the block returns a value
    anyway it probably built an expectation and forgot to register it:
    that is logged as a warning when other expectations were recorded
    and is an error when none were.
    """
    code = getattr(block, "__code__", None)
    if code is not None:
        provenance = Provenance(
            package=str(getattr(block, "__module__", None) or "?"),
            file=code.co_filename,
            line=code.co_firstlineno,
        )
    else:
        provenance = caller_provenance()

    builder = CheckBuilder(provenance)
    try:
        returned = block(builder)
    finally:
        checks = builder.build()

    if not _is_empty(returned):
        if checks.expectations:
            logger.warning(
                "Block passed to check() at %s returned %r; "
                "did you forget to call event() or directive()?",
                provenance,
                returned,
            )
        else:
            msg = (
                f"No expectations were recorded by the block passed to check() at "
                f"{provenance}, but it returned {returned!r}; "
                f"did you forget to call event() or directive()?"
            )
            raise UsageError(msg)
    return checks


def _is_empty(value: object) -> bool:
    """None, or a collection containing only Nones (lambda tuple blocks)."""
    if value is None:
        return True
    if isinstance(value, (tuple, list)):
        return all(v is None for v in value)
    return False


# ---------------------------------------------------------------------------
# Built-in custom directives
# ---------------------------------------------------------------------------

def drop_events(state: CheckState, events: list[Event], arg: object) -> None:
    """Directive handler: remove remaining events of the given type(s).

    Usage::

        c.directive(drop_events, "diag")
        c.directive(drop_events, ["note", "diag"])
    """
    if not arg:
        msg = "drop_events needs an event type or a list of types"
        raise UsageError(msg)
    raw = [arg] if isinstance(arg, (str, EventType)) else list(arg)  # type: ignore[call-overload]
    try:
        types = {EventType.coerce(t) for t in raw}
    except ValueError as exc:
        raise UsageError(str(exc)) from None
    removed = state.discard(lambda e: e.type in types)
    logger.debug("drop_events removed %d event(s) of %s", removed, sorted(t.value for t in types))


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

def _collect(events: object) -> list[Event]:
    """Normalize the accepted event containers to a list."""
    if isinstance(events, Grab):
        return events.finish() if events.active else events.events
    if isinstance(events, Interception):
        return list(events.events)
    if isinstance(events, Sequence) and not isinstance(events, (str, bytes)):
        if not all(isinstance(e, Event) for e in events):
            msg = "events must contain only Event records"
            raise UsageError(msg)
        return list(events)
    msg = f"{events!r} is not a valid set of events"
    raise UsageError(msg)


def run_checks(events: object, checks: Checks) -> CheckResult:
    """Validate inputs, normalize ``events`` and run ``checks`` against them."""
    if events is None:
        msg = "Did not get any events"
        raise UsageError(msg)
    if checks is None:
        msg = "Did not get any checks"
        raise UsageError(msg)
    if not isinstance(checks, Checks):
        msg = f"checks must be a Checks instance (built with check()), got {type(checks).__name__}"
        raise UsageError(msg)
    return checks.run(_collect(events))


def events_are(
    events: object,
    checks: Checks,
    name: str = "",
    *,
    tools: object | None = None,
) -> bool:
    """Run ``checks`` against ``events`` and report one pass/fail result.

    Args:
        events: A list of events, an :class:`~eventcheck.stream.Interception`,
            or a :class:`~eventcheck.stream.Grab` (finished if still active).
        checks: Built with :func:`check`.
        name: Name of the reported result.
        tools: A :class:`~eventcheck.stream.Toolkit`; when given the verdict
            is emitted through ``tools.ok`` with the diagnostics attached.

    Returns:
        The verdict.
    """
    provenance = caller_provenance()
    result = run_checks(events, checks)
    if tools is not None:
        tools.ok(  # type: ignore[attr-defined]
            result.passed,
            name,
            diag=list(result.diagnostics),
            provenance=provenance,
        )
    logger.info(
        "events_are %r: %s (%d diagnostic line(s))",
        name,
        "passed" if result.passed else "failed",
        len(result.diagnostics),
    )
    return result.passed


def assert_events(events: object, checks: Checks) -> CheckResult:
    """Like :func:`events_are` but raise ``AssertionError`` on failure.

    Meant for plain pytest test functions.
    """
    result = run_checks(events, checks)
    if not result.passed:
        raise AssertionError("\n".join(result.diagnostics))
    return result
