# goctx_rewrite/errors.py
"""
Error types raised by the rewrite pipeline.

Hierarchy:
──────────
┌─────────────────────────────────────────────────────────────────────────────┐
│  RewriteError (base)                                                        │
│  ├── UnparsableInputError     - the front end could not parse the file      │
│  ├── UnresolvedTypeError      - a binding's kind cannot be determined       │
│  ├── UnrecognizedLaunchError  - a ``go`` statement of unknown shape         │
│  ├── MutationConflictError    - two edits claim overlapping source ranges   │
│  ├── InvalidOutputError       - the rewritten file no longer parses         │
│  └── InternalError            - rewriter bugs (should never happen)         │
└─────────────────────────────────────────────────────────────────────────────┘

Every error carries a :class:`~goctx_rewrite.diagnostics.SourceLocation` so
the driver can turn it into a per-file notice.  Errors are fatal for the file
being processed only; the driver continues with the next file.
"""

from __future__ import annotations

from typing import Optional

from goctx_rewrite.diagnostics import SourceLocation

__all__ = [
    "RewriteError",
    "UnparsableInputError",
    "UnresolvedTypeError",
    "UnrecognizedLaunchError",
    "MutationConflictError",
    "InvalidOutputError",
    "InternalError",
]


class RewriteError(Exception):
    """Base exception for all rewrite failures."""

    error_id: str = "rewriteError"

    def __init__(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location or SourceLocation()
        self.cause = cause

    def to_gcc_format(self) -> str:
        """Format as ``file:line: error: message [id]``."""
        return f"{self.location}: error: {self.message} [{self.error_id}]"

    def __str__(self) -> str:
        if self.location.file or self.location.line:
            return f"{self.location}: {self.message}"
        return self.message


class UnparsableInputError(RewriteError):
    """The source unit could not be parsed; the file is left as read."""

    error_id = "unparsableInput"


class UnresolvedTypeError(RewriteError):
    """A binding's kind cannot be determined from the available type information.

    The type oracle raises this internally; the scope walker treats it as
    "no binding" rather than guessing.
    """

    error_id = "unresolvedType"


class UnrecognizedLaunchError(RewriteError):
    """A ``go`` statement whose body the transformer does not understand."""

    error_id = "unrecognizedLaunch"


class MutationConflictError(RewriteError):
    """Two recorded edits overlap in the source."""

    error_id = "mutationConflict"


class InvalidOutputError(RewriteError):
    """The serialized result no longer parses; nothing is written."""

    error_id = "invalidOutput"


class InternalError(RewriteError):
    """Rewriter invariant violated."""

    error_id = "internalError"
