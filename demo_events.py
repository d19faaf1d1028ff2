#!/usr/bin/env python3
"""eventcheck demo -- capture, check, render, replay.

Flow:
  Phase 1: Capture  -- run a small suite through a Toolkit and intercept
                       every event it emits
  Phase 2: Check    -- compare the capture against a declared expectation
                       sequence, once correct and once deliberately wrong
  Phase 3: Render   -- print the captured results as TAP version 13
  Phase 4: Replay   -- save the run to JSON, load it back, check it again

Uses print() for the demo output (not logging) since this is a
user-facing script.
"""

from __future__ import annotations

import logging
import re
import sys
import tempfile
from pathlib import Path

from eventcheck.checks import CheckBuilder, CheckResult, Checks, check, drop_events
from eventcheck.events import load_events, save_events
from eventcheck.stream import EventHub, Interception, Toolkit
from eventcheck.tap import TapFormatter, render_events

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Phase 1: the run under inspection
# ---------------------------------------------------------------------------

def run_suite(tools: Toolkit) -> None:
    """A tiny suite with a pass, a todo failure, a note and a subtest."""
    tools.ok(1 + 1 == 2, "addition")
    tools.note("checking division next")
    tools.ok(7 // 2 == 3.5, "true division", todo="integer division on purpose")
    tools.subtest("strings", lambda: (
        tools.ok("abc".upper() == "ABC", "upper"),
        tools.ok("a,b".split(",") == ["a", "b"], "split"),
    ))
    tools.done_testing()


def capture() -> Interception:
    hub = EventHub()
    tools = Toolkit(hub)
    captured = hub.intercept(lambda: run_suite(tools))
    print(f"  Captured {len(captured)} event(s): "
          + ", ".join(e.type.value for e in captured))
    return captured


# ---------------------------------------------------------------------------
# Phase 2: expectations
# ---------------------------------------------------------------------------

def expected_run(c: CheckBuilder) -> None:
    c.directive(drop_events, "note")
    c.event("ok", {"name": "addition", "pass": True})
    c.event("ok", {"name": "true division", "pass": False, "todo": re.compile("integer")})
    c.event("subtest", {"name": "strings", "pass": True, "subevents": 2})
    c.event("plan", max=3)
    c.event("finish", tests_run=3, tests_failed=0)
    c.directive("end")


def wrong_run(c: CheckBuilder) -> None:
    c.event("ok", {"name": "addition"})
    c.event("ok", {"name": "subtraction"})
    c.directive("seek", True)
    c.event("bail")


def print_result(label: str, result: CheckResult) -> None:
    print(f"\n  {label}")
    for line in result.summary().splitlines():
        print(f"    {line}")


# ---------------------------------------------------------------------------
# Phase 4: replay
# ---------------------------------------------------------------------------

def replay(captured: Interception, checks: Checks) -> bool:
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "run.json"
        save_events(path, captured.events)
        restored = load_events(path)
    print(f"  Saved and reloaded {len(restored)} event(s)")
    result = checks.run(restored)
    print_result("Replayed run:", result)
    return result.passed


def main() -> int:
    """Run the demo."""
    print("=" * 70)
    print("  EVENTCHECK -- capture, check, render, replay")
    print("=" * 70)

    print("\n--- Phase 1: Capture ---")
    captured = capture()
    if not captured.completed:
        print(f"ERROR: run aborted early ({captured.aborted})")
        return 1

    print("\n--- Phase 2: Check ---")
    checks = check(expected_run)
    good = checks.run(captured.events)
    print_result("Expected sequence:", good)
    bad = check(wrong_run).run(captured.events)
    print_result("Deliberately wrong sequence:", bad)

    print("\n--- Phase 3: Render ---\n")
    failed = render_events(TapFormatter(), captured.events)

    print("\n--- Phase 4: Replay ---")
    replayed = replay(captured, checks)

    print("\n" + "=" * 70)
    print("  Demo complete.")
    print("=" * 70)

    if not good.passed or bad.passed:
        print("  EXIT: checks did not behave as expected.")
        return 1
    if failed:
        print(f"  EXIT: {failed} result(s) failed.")
        return 1
    if not replayed:
        print("  EXIT: replayed run did not match.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
