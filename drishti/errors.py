# -*- coding: utf-8 -*-

"""

Exception hierarchy for drishti.

Every error raised on purpose by the package derives from ``DrishtiError`` and
also from the closest builtin, so callers may catch either.

"""

from __future__ import annotations


class DrishtiError(Exception):
    """Base class for all drishti errors."""


class UsageError(DrishtiError, ValueError):
    """Invalid arguments: raised before any I/O or heavy computation."""


class UnknownKeyError(UsageError, KeyError):
    """A variable key or unit symbol that is not recognized."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class MissingDataError(DrishtiError, FileNotFoundError):
    """Absent snapshot, metadata file or physics component."""


class ShardReadError(DrishtiError, OSError):
    """A truncated or malformed binary shard. Never retried."""


class EmptySelectionError(DrishtiError, ValueError):
    """A reduction that is undefined on zero rows (e.g. a weighted mean)."""
