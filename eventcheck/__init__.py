"""eventcheck -- validate the events your test tools produce.

Provides event records, an in-process event hub for capturing them, a
declarative checks engine for asserting on captured sequences, and a
formatter base class with a TAP version 13 implementation.
"""

__version__ = "0.1.0"

# Re-export key types for convenience.
from eventcheck.checks import (
    CheckBuilder,
    CheckResult,
    Checks,
    CheckState,
    assert_events,
    check,
    drop_events,
    events_are,
)
from eventcheck.errors import EventCheckError, FormatterConfigError, UsageError
from eventcheck.events import Event, EventType, Provenance, load_events, save_events
from eventcheck.formatter import CaptureSink, Channel, Formatter, Result, StreamSink
from eventcheck.matchers import MISSING, absent, all_of, exact, pattern, predicate
from eventcheck.stream import Abort, EventHub, Grab, Interception, Toolkit
from eventcheck.tap import TapFormatter

__all__ = [
    "MISSING",
    "Abort",
    "CaptureSink",
    "Channel",
    "CheckBuilder",
    "CheckResult",
    "CheckState",
    "Checks",
    "Event",
    "EventCheckError",
    "EventHub",
    "EventType",
    "Formatter",
    "FormatterConfigError",
    "Grab",
    "Interception",
    "Provenance",
    "Result",
    "StreamSink",
    "TapFormatter",
    "Toolkit",
    "UsageError",
    "absent",
    "all_of",
    "assert_events",
    "check",
    "drop_events",
    "events_are",
    "exact",
    "load_events",
    "pattern",
    "predicate",
    "save_events",
]
