"""Render results as TAP version 13.

Usage::

    tap = TapFormatter()
    tap.begin(tests=2)
    tap.result(Result(passed=True, test_number=1, description="adds"))
    tap.result(Result(passed=False, test_number=2, description="divides"))
    tap.end()

produces::

    TAP version 13
    1..2
    ok 1 - adds
    not ok 2 - divides

Diagnostics of failing results go to the failure channel as ``#``
comment lines.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from eventcheck.events import Event, EventType
from eventcheck.formatter import Formatter, Result

logger = logging.getLogger(__name__)


class TapFormatter(Formatter):
    """Formatter for the Test Anything Protocol, version 13."""

    def _begin(self, **options: object) -> None:
        self.out("TAP version 13\n")
        if "tests" in options:
            self.out(f"1..{options['tests']}\n")
        elif "skip_all" in options:
            self.out(f"1..0 # skip {options['skip_all']}\n")

    def _result(self, record: object) -> None:
        result: Result = record  # type: ignore[assignment]
        line = "" if result.passed else "not "
        line += "ok"
        if result.test_number is not None:
            line += f" {result.test_number}"
        if result.description:
            line += f" - {_escape(result.description)}"

        directives = []
        if result.is_todo:
            directives.append("TODO")
        if result.is_skip:
            directives.append("SKIP")
        if directives:
            line += f" # {' '.join(directives)} {result.reason}".rstrip()
        self.out(line, "\n")

        if not result.passed:
            for diag in result.diagnostics:
                for text in diag.splitlines():
                    self.fail("# ", text, "\n")

    def _end(self, **options: object) -> None:
        if "tests" in options:
            self.out(f"1..{options['tests']}\n")


def _escape(description: str) -> str:
    """Escape ``#`` so a name is not read as a directive."""
    return description.replace("\\", "\\\\").replace("#", "\\#")


def render_events(formatter: Formatter, events: Iterable[Event]) -> int:
    """Render the result events of a run through ``formatter``.

    ``ok`` and ``subtest`` events become numbered results, notes go to the
    output channel and diags to the failure channel as comments. The plan
    is emitted at the end, once the count is known.

    Returns:
        The number of failing results.
    """
    formatter.begin(no_plan=True)
    number = 0
    failed = 0
    for event in events:
        if event.type in (EventType.OK, EventType.SUBTEST):
            number += 1
            result = Result.from_event(event, test_number=number)
            if not event.get("effective_pass", False):
                failed += 1
            formatter.result(result)
        elif event.type == EventType.NOTE:
            formatter.out("# ", event.get("message", ""), "\n")
        elif event.type == EventType.DIAG:
            formatter.fail("# ", event.get("message", ""), "\n")
        elif event.type == EventType.BAIL:
            formatter.out("Bail out!  ", event.get("reason", ""), "\n")
    formatter.end(tests=number)
    logger.info("Rendered %d result(s), %d failed", number, failed)
    return failed
