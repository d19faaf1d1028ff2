"""Field matchers used by event expectations.

Each expected field value is turned into a :class:`Matcher` once, when the
expectation is declared. The shape of the value decides the kind:

- a :class:`Matcher` is used as is,
- a compiled regular expression becomes a pattern match,
- a list or tuple of compiled regular expressions must all match,
- any other callable is a predicate ``(field_name, actual) -> (bool, diag...)``,
- everything else is compared for equality.

Patterns use ``re.search`` semantics: anchor them yourself if you need to.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel type for a field the actual event does not carry."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<missing>"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

PredicateResult = bool | tuple[object, ...]
FieldPredicate = Callable[[str, object], PredicateResult]


# ---------------------------------------------------------------------------
# MatchKind / Matcher
# ---------------------------------------------------------------------------

class MatchKind(Enum):
    """The kinds of field matcher."""
    EXACT = "exact"
    PATTERN = "pattern"
    ALL_PATTERNS = "all_patterns"
    PREDICATE = "predicate"


@dataclass(frozen=True)
class Matcher:
    """A single expected-field-value check.

    Only the attribute relevant to ``kind`` is set: ``value`` for EXACT,
    ``patterns`` for PATTERN (one entry) and ALL_PATTERNS, ``predicate``
    for PREDICATE.
    """
    kind: MatchKind
    value: object = None
    patterns: tuple[re.Pattern[str], ...] = ()
    predicate: FieldPredicate | None = None

    def describe(self) -> str:
        """Short human-readable form used in diagnostics."""
        if self.kind == MatchKind.EXACT:
            return repr(self.value)
        if self.kind in (MatchKind.PATTERN, MatchKind.ALL_PATTERNS):
            return " and ".join(f"/{p.pattern}/" for p in self.patterns)
        name = getattr(self.predicate, "__name__", "predicate")
        return f"<{name}>"

    def evaluate(self, field_name: str, actual: object) -> tuple[bool, list[str]]:
        """Check ``actual`` against this matcher.

        ``actual`` is :data:`MISSING` when the event has no such field;
        only predicates get a chance to accept that.

        Returns:
            ``(ok, diagnostics)``. Diagnostics are empty on success.
        """
        if self.kind == MatchKind.PREDICATE:
            ok, diag = _run_predicate(self.predicate, field_name, actual)  # type: ignore[arg-type]
            if not ok and not diag:
                diag = [f"field '{field_name}': {actual!r} rejected by {self.describe()}"]
            return ok, diag

        if actual is MISSING:
            return False, [f"field '{field_name}' is missing, expected {self.describe()}"]

        if self.kind == MatchKind.EXACT:
            if _scalars_equal(self.value, actual):
                return True, []
            return False, [
                f"field '{field_name}': expected {self.value!r}, got {actual!r}"
            ]

        text = _as_text(actual)
        diagnostics: list[str] = []
        for pattern in self.patterns:
            if pattern.search(text) is None:
                diagnostics.append(
                    f"field '{field_name}': {text!r} does not match /{pattern.pattern}/"
                )
        return not diagnostics, diagnostics


# -- Matcher constructor functions -------------------------------------------

def exact(value: object) -> Matcher:
    """Match by equality (numbers compare numerically)."""
    return Matcher(kind=MatchKind.EXACT, value=value)


def pattern(regex: str | re.Pattern[str]) -> Matcher:
    """Match the actual value, as text, against one regular expression."""
    return Matcher(kind=MatchKind.PATTERN, patterns=(re.compile(regex),))


def all_of(*regexes: str | re.Pattern[str]) -> Matcher:
    """Every regular expression must match the actual value."""
    if not regexes:
        msg = "all_of() needs at least one pattern"
        raise ValueError(msg)
    return Matcher(
        kind=MatchKind.ALL_PATTERNS,
        patterns=tuple(re.compile(r) for r in regexes),
    )


def predicate(fn: FieldPredicate) -> Matcher:
    """Validate the field with a custom function.

    ``fn(field_name, actual)`` returns a bool, or a tuple whose first item
    is the verdict and whose remaining items are diagnostic strings.
    """
    if not callable(fn):
        msg = f"predicate() needs a callable, got {type(fn).__name__}"
        raise TypeError(msg)
    return Matcher(kind=MatchKind.PREDICATE, predicate=fn)


def absent() -> Matcher:
    """The field must not be present on the event."""
    def field_absent(field_name: str, actual: object) -> tuple[object, ...]:
        if actual is MISSING:
            return (True,)
        return (False, f"field '{field_name}' should be absent, got {actual!r}")

    return predicate(field_absent)


def as_matcher(expected: object) -> Matcher:
    """Infer the matcher kind from the shape of an expected value."""
    if isinstance(expected, Matcher):
        return expected
    if isinstance(expected, re.Pattern):
        return Matcher(kind=MatchKind.PATTERN, patterns=(expected,))
    if (
        isinstance(expected, (list, tuple))
        and expected
        and all(isinstance(p, re.Pattern) for p in expected)
    ):
        return Matcher(kind=MatchKind.ALL_PATTERNS, patterns=tuple(expected))
    if callable(expected):
        return predicate(expected)  # type: ignore[arg-type]
    return exact(expected)


def evaluate(field_name: str, expected: object, actual: object) -> tuple[bool, list[str]]:
    """Evaluate one expected value against one actual field value."""
    return as_matcher(expected).evaluate(field_name, actual)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _scalars_equal(expected: object, actual: object) -> bool:
    """Numbers compare numerically, booleans only equal booleans."""
    if _is_number(expected) and _is_number(actual):
        return expected == actual
    if isinstance(expected, bool) or isinstance(actual, bool):
        return isinstance(expected, bool) and isinstance(actual, bool) and expected is actual
    return expected == actual


def _as_text(value: object) -> str:
    if value is None:
        return ""
    return str(value)


def _run_predicate(
    fn: FieldPredicate,
    field_name: str,
    actual: object,
) -> tuple[bool, list[str]]:
    """Call a predicate and normalize what it returns."""
    outcome = fn(field_name, actual)
    if isinstance(outcome, tuple):
        if not outcome:
            msg = f"predicate for field '{field_name}' returned an empty tuple"
            raise TypeError(msg)
        verdict, *diag = outcome
        return bool(verdict), [str(d) for d in _flatten(diag)]
    return bool(outcome), []


def _flatten(items: Sequence[object]) -> list[object]:
    """Allow predicates to return ``(ok, [diag, ...])`` as well as ``(ok, diag, ...)``."""
    flat: list[object] = []
    for item in items:
        if isinstance(item, (list, tuple)):
            flat.extend(item)
        else:
            flat.append(item)
    return flat
