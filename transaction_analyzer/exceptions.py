"""
Exception types raised by the analysis core.

Degenerate input (empty text, empty patterns, empty strings) is never an
error.  Only caller bugs and explicit cancellation surface as exceptions.
"""

from __future__ import annotations


class PreconditionViolation(ValueError):
    """A caller broke a documented precondition.

    Raised for empty merge groups, weights that do not sum to 1,
    non-positive chunk sizes and unknown strategy / algorithm names.
    The core never silently corrects these.
    """


class OperationCancelled(RuntimeError):
    """A ``CancellationToken`` was set before the work finished."""
