"""Event records observed while a test run executes.

An :class:`Event` is the public, stable projection of one thing a test
tool did: an assertion result, a note or diagnostic, a plan, a subtest,
a bail out, or the final summary. Events are what the checks engine in
:mod:`eventcheck.checks` compares against.

Summary fields per type
-----------------------
- ``ok``: ``name``, ``pass``, ``effective_pass``, ``todo``, ``skip``, ``diag``
- ``note`` / ``diag``: ``message``
- ``plan``: ``max``, ``directive``, ``reason``
- ``bail``: ``reason``
- ``finish``: ``tests_run``, ``tests_failed``
- ``subtest``: the ``ok`` fields plus ``subevents``

Provenance (package, file, line of the emitting call) travels with every
event but is never part of ``fields`` and is never matched against.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Self

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# EventType
# ---------------------------------------------------------------------------

class EventType(Enum):
    """Discriminator for event records."""
    OK = "ok"
    NOTE = "note"
    DIAG = "diag"
    PLAN = "plan"
    SUBTEST = "subtest"
    BAIL = "bail"
    FINISH = "finish"

    @classmethod
    def coerce(cls, value: EventType | str) -> EventType:
        """Accept either an ``EventType`` or its string value."""
        if isinstance(value, EventType):
            return value
        try:
            return cls(str(value))
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            msg = f"Unknown event type {value!r} (expected one of: {valid})"
            raise ValueError(msg) from None


# ---------------------------------------------------------------------------
# Provenance
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Provenance:
    """Where something was emitted or declared.

    Attributes:
        package: Module name (``__name__``) of the calling code.
        file: Source file of the calling code.
        line: Line number of the call.
    """
    package: str = "?"
    file: str = "?"
    line: int = 0

    def __str__(self) -> str:
        return f"{self.file} line {self.line}"

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dict for JSON storage."""
        return {"package": self.package, "file": self.file, "line": self.line}

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Self:
        """Deserialize from a plain dict."""
        return cls(
            package=str(data.get("package", "?")),
            file=str(data.get("file", "?")),
            line=int(data.get("line", 0)),  # type: ignore[arg-type]
        )


def caller_provenance(depth: int = 1) -> Provenance:
    """Return the provenance of a frame above the caller.

    ``depth=1`` is the caller of the function that calls this one, which
    is what a public API entry point wants to record.
    """
    frame = sys._getframe(depth + 1)
    return Provenance(
        package=str(frame.f_globals.get("__name__", "?")),
        file=frame.f_code.co_filename,
        line=frame.f_lineno,
    )


# ---------------------------------------------------------------------------
# Event
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Event:
    """One observed unit of test activity.

    ``fields`` is stored as a read-only mapping; ``messages`` holds the
    structured diagnostic lines attached to ``ok`` and ``subtest`` events
    (``fields["diag"]`` is the same text joined by newlines); ``children``
    holds the events captured inside a subtest.
    """
    type: EventType
    fields: Mapping[str, object] = field(default_factory=dict)
    provenance: Provenance = field(default_factory=Provenance)
    messages: tuple[str, ...] = ()
    children: tuple[Event, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", EventType.coerce(self.type))
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "children", tuple(self.children))

    def get(self, name: str, default: object = None) -> object:
        """Shorthand for ``event.fields.get(name, default)``."""
        return self.fields.get(name, default)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dict for JSON storage."""
        result: dict[str, object] = {
            "type": self.type.value,
            "fields": dict(self.fields),
            "provenance": self.provenance.to_dict(),
        }
        if self.messages:
            result["messages"] = list(self.messages)
        if self.children:
            result["children"] = [c.to_dict() for c in self.children]
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Self:
        """Deserialize from a plain dict."""
        raw_fields = data.get("fields", {})
        fields: dict[str, object] = {}
        if isinstance(raw_fields, dict):
            fields = dict(raw_fields)

        raw_prov = data.get("provenance", {})
        provenance = Provenance()
        if isinstance(raw_prov, dict):
            provenance = Provenance.from_dict(raw_prov)

        raw_messages = data.get("messages", [])
        messages: list[str] = []
        if isinstance(raw_messages, list):
            messages = [str(m) for m in raw_messages]

        raw_children = data.get("children", [])
        children: list[Event] = []
        if isinstance(raw_children, list):
            children = [Event.from_dict(c) for c in raw_children]  # type: ignore[arg-type]

        return cls(
            type=EventType.coerce(str(data.get("type", ""))),
            fields=fields,
            provenance=provenance,
            messages=tuple(messages),
            children=tuple(children),
        )

    def to_json(self, indent: int | None = 2) -> str:
        """Serialize to a JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> Self:
        """Deserialize from a JSON string."""
        data: dict[str, object] = json.loads(json_str)
        return cls.from_dict(data)


# -- Event constructor functions ---------------------------------------------

def _ok_fields(
    passed: bool,
    name: str,
    messages: Sequence[str],
    todo: str | None,
    skip: str | None,
) -> dict[str, object]:
    return {
        "name": name,
        "pass": bool(passed),
        "effective_pass": bool(passed) or todo is not None or skip is not None,
        "todo": todo,
        "skip": skip,
        "diag": "\n".join(messages),
    }


def ok_event(
    passed: bool,
    name: str = "",
    *,
    messages: Sequence[str] = (),
    todo: str | None = None,
    skip: str | None = None,
    provenance: Provenance | None = None,
) -> Event:
    """Create an assertion result event."""
    return Event(
        type=EventType.OK,
        fields=_ok_fields(passed, name, messages, todo, skip),
        provenance=provenance or Provenance(),
        messages=tuple(messages),
    )


def note_event(message: str, *, provenance: Provenance | None = None) -> Event:
    """Create a note event (informational output)."""
    return Event(
        type=EventType.NOTE,
        fields={"message": message},
        provenance=provenance or Provenance(),
    )


def diag_event(message: str, *, provenance: Provenance | None = None) -> Event:
    """Create a diagnostic event (failure-channel output)."""
    return Event(
        type=EventType.DIAG,
        fields={"message": message},
        provenance=provenance or Provenance(),
    )


def plan_event(
    count: int,
    *,
    directive: str = "",
    reason: str = "",
    provenance: Provenance | None = None,
) -> Event:
    """Create a plan event. ``directive`` is ``"SKIP"`` for a skip_all plan."""
    return Event(
        type=EventType.PLAN,
        fields={"max": count, "directive": directive, "reason": reason},
        provenance=provenance or Provenance(),
    )


def bail_event(reason: str, *, provenance: Provenance | None = None) -> Event:
    """Create a bail-out event."""
    return Event(
        type=EventType.BAIL,
        fields={"reason": reason},
        provenance=provenance or Provenance(),
    )


def finish_event(
    tests_run: int,
    tests_failed: int,
    *,
    provenance: Provenance | None = None,
) -> Event:
    """Create the end-of-run summary event."""
    return Event(
        type=EventType.FINISH,
        fields={"tests_run": tests_run, "tests_failed": tests_failed},
        provenance=provenance or Provenance(),
    )


def subtest_event(
    passed: bool,
    name: str,
    children: Sequence[Event],
    *,
    messages: Sequence[str] = (),
    todo: str | None = None,
    skip: str | None = None,
    provenance: Provenance | None = None,
) -> Event:
    """Create a subtest event wrapping the events captured inside it.

    The children are carried along but the event is matched as one opaque
    record; ``subevents`` is the only summary of what happened inside.
    """
    fields = _ok_fields(passed, name, messages, todo, skip)
    fields["subevents"] = len(children)
    return Event(
        type=EventType.SUBTEST,
        fields=fields,
        provenance=provenance or Provenance(),
        messages=tuple(messages),
        children=tuple(children),
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def save_events(path: str | Path, events: Iterable[Event]) -> None:
    """Save an event sequence to a JSON file for later replay.

    Creates parent directories if they don't exist.
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    payload = [e.to_dict() for e in events]
    p.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    logger.debug("Saved %d event(s) to %s", len(payload), p)


def load_events(path: str | Path) -> list[Event]:
    """Load an event sequence saved by :func:`save_events`.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a JSON list of events.
    """
    p = Path(path)
    if not p.exists():
        msg = f"Event log not found: {p}"
        raise FileNotFoundError(msg)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid event log JSON: {exc}") from exc
    if not isinstance(data, list):
        msg = f"event log must be a JSON list, got {type(data).__name__}"
        raise ValueError(msg)
    return [Event.from_dict(item) for item in data]
