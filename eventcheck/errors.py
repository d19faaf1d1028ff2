"""Exception types raised by eventcheck.

Match failures are never raised; they are returned as diagnostics on a
:class:`~eventcheck.checks.CheckResult`. The exceptions here cover misuse
of the API itself.
"""

from __future__ import annotations


class EventCheckError(Exception):
    """Base class for all eventcheck errors."""


class UsageError(EventCheckError, ValueError):
    """The checks DSL or reporting API was called incorrectly."""


class FormatterConfigError(EventCheckError, ValueError):
    """A formatter lifecycle phase got conflicting or unknown options."""
