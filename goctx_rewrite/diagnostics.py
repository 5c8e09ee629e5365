"""
goctx_rewrite.diagnostics
=========================

The notice model: one human-readable record per replacement, instrumentation
or per-file failure, plus the suppression manager and the per-file reporter.

Notices are *data*.  The command line prints them; the library never writes
them to a stream itself (operator chatter goes through :mod:`logging`).

Public API
----------
    SourceLocation      - ``file:line:column``
    NoticeSeverity      - information / warning / error
    NoticeKind          - what the notice describes
    Notice              - one record
    SuppressionManager  - ``// goctx:ignore`` line suppressions
    NoticeReporter      - collects the notices of one file
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Set, Tuple


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — NOTICE MODEL
# ═════════════════════════════════════════════════════════════════════════

class NoticeSeverity(Enum):
    """Notice severity levels."""
    ERROR = "error"
    WARNING = "warning"
    INFORMATION = "information"


class NoticeKind(Enum):
    """What a notice reports."""
    REPLACED = "replaced"          # placeholder → concrete binding
    RENAMED = "renamed"            # primary reference → derived name
    INSTRUMENTED = "instrumented"  # derived resource + span added to a body
    PROMOTED = "promoted"          # named launch wrapped in an inline body
    IMPORTED = "imported"          # import added for instrumentation
    SKIPPED = "skipped"            # launch left unchanged on purpose
    ERROR = "error"                # per-file failure


@dataclass(frozen=True)
class SourceLocation:
    """A specific point in source code."""
    file: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


@dataclass(frozen=True)
class Notice:
    """
    A single rewrite notice.

    Attributes
    ----------
    kind        : NoticeKind
    location    : where the original form starts
    original    : source text before the change ("" for pure insertions)
    replacement : source text after the change
    message     : free text, used by SKIPPED / ERROR notices
    severity    : NoticeSeverity
    """
    kind: NoticeKind
    location: SourceLocation
    original: str = ""
    replacement: str = ""
    message: str = ""
    severity: NoticeSeverity = NoticeSeverity.INFORMATION

    @property
    def is_error(self) -> bool:
        return self.severity == NoticeSeverity.ERROR

    def describe(self) -> str:
        if self.kind in (NoticeKind.REPLACED, NoticeKind.RENAMED):
            return f"{self.kind.value} {self.original} with {self.replacement}"
        if self.kind == NoticeKind.PROMOTED:
            return f"wrapped {self.original} in a detached body"
        if self.kind == NoticeKind.INSTRUMENTED:
            return f"instrumented detached body with {self.replacement}"
        if self.kind == NoticeKind.IMPORTED:
            return f"imported {self.replacement}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.location.file,
            "linenr": self.location.line,
            "column": self.location.column,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "original": self.original,
            "replacement": self.replacement,
            "message": self.describe(),
        }

    def to_json_str(self) -> str:
        """Single-line JSON string."""
        return json.dumps(self.to_dict())

    def to_gcc_format(self) -> str:
        """GCC-style string: file:line:col: severity: message [kind]."""
        return (f"{self.location}: {self.severity.value}: "
                f"{self.describe()} [{self.kind.value}]")

    def __str__(self) -> str:
        return f"{self.location.file}:{self.location.line} → {self.describe()}"


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — SUPPRESSION MANAGER
# ═════════════════════════════════════════════════════════════════════════

class SuppressionManager:
    """
    Line suppressions taken from ``// goctx:ignore`` comments.

    A marker comment suppresses every rewrite starting on its own line or on
    the line that follows it.

    >>> sm = SuppressionManager("goctx:ignore")
    >>> sm.load_comments([(4, "// goctx:ignore")])
    >>> sm.is_suppressed(5)
    True
    """

    def __init__(self, marker: str = "goctx:ignore") -> None:
        self.marker = marker
        self._lines: Set[int] = set()

    def load_comments(self, comments: Iterable[Tuple[int, str]]) -> None:
        """Register ``(line, text)`` comment pairs that carry the marker."""
        if not self.marker:
            return
        for line, text in comments:
            if self.marker in text:
                self._lines.add(line)

    def is_suppressed(self, line: int) -> bool:
        return line in self._lines or (line - 1) in self._lines


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — REPORTER
# ═════════════════════════════════════════════════════════════════════════

class NoticeReporter:
    """Collects the notices produced while rewriting one file."""

    def __init__(self, file: str = "") -> None:
        self.file = file
        self._notices: List[Notice] = []

    @property
    def notices(self) -> List[Notice]:
        return list(self._notices)

    @property
    def error_count(self) -> int:
        return sum(1 for n in self._notices if n.is_error)

    def emit(
        self,
        kind: NoticeKind,
        line: int,
        original: str = "",
        replacement: str = "",
        *,
        column: int = 0,
        message: str = "",
        severity: NoticeSeverity = NoticeSeverity.INFORMATION,
    ) -> Notice:
        notice = Notice(
            kind=kind,
            location=SourceLocation(file=self.file, line=line, column=column),
            original=original,
            replacement=replacement,
            message=message,
            severity=severity,
        )
        self._notices.append(notice)
        return notice

    def warn(self, line: int, message: str) -> Notice:
        return self.emit(NoticeKind.SKIPPED, line, message=message,
                         severity=NoticeSeverity.WARNING)

    def error(self, line: int, message: str) -> Notice:
        return self.emit(NoticeKind.ERROR, line, message=message,
                         severity=NoticeSeverity.ERROR)

    def discard_changes(self) -> None:
        """Drop change notices, keeping warnings and errors.

        Used when a file's edits are rejected as a whole.
        """
        self._notices = [
            n for n in self._notices
            if n.severity != NoticeSeverity.INFORMATION
        ]


__all__ = [
    "Notice",
    "NoticeKind",
    "NoticeReporter",
    "NoticeSeverity",
    "SourceLocation",
    "SuppressionManager",
]
