"""
goctx_rewrite.mutator
=====================

Structural edits on a parsed Go file.

Edits are recorded against tree nodes (replace a node, insert before or
after a node) while the tree is walked, and serialized once at the end.
Positions come from the nodes themselves, so no recorded position ever has
to be shifted when text is inserted elsewhere, and text outside the edited
nodes (comments, string literals, formatting) is copied through untouched.

Invariants
----------
* Two replacements never overlap, and an insertion never falls strictly
  inside a replaced node; violations raise :class:`MutationConflictError`.
* Insertions at the same point keep the order in which they were recorded.
* :meth:`TreeMutator.validate` re-parses the output; a result that does not
  parse raises :class:`InvalidOutputError` and nothing is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from tree_sitter import Node, Tree

from goctx_rewrite.diagnostics import SourceLocation
from goctx_rewrite.errors import (
    InvalidOutputError,
    MutationConflictError,
    UnparsableInputError,
)
from goctx_rewrite.go_ast import line_of, parse_go

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Edit:
    """Replace ``source[start:end]`` with *text* (``start == end`` inserts)."""
    start: int
    end: int
    text: str
    order: int
    line: int = 0
    label: str = ""

    @property
    def is_insertion(self) -> bool:
        return self.start == self.end


def splice(source: bytes, edits: Iterable[Edit], start: int = 0,
           end: Optional[int] = None) -> bytes:
    """Apply non-conflicting *edits* to ``source[start:end]``."""
    if end is None:
        end = len(source)
    pieces: List[bytes] = []
    cursor = start
    for edit in sorted(edits, key=lambda e: (e.start, not e.is_insertion, e.order)):
        if edit.start < cursor:
            continue
        pieces.append(source[cursor:edit.start])
        pieces.append(edit.text.encode("utf-8"))
        cursor = edit.end
    pieces.append(source[cursor:end])
    return b"".join(pieces)


def render_node(source: bytes, node: Node,
                replacements: Iterable[Tuple[Node, str]]) -> str:
    """Text of *node* with the given descendant nodes replaced."""
    edits = [
        Edit(n.start_byte, n.end_byte, text, i)
        for i, (n, text) in enumerate(replacements)
    ]
    return splice(source, edits, node.start_byte, node.end_byte).decode("utf-8")


class TreeMutator:
    """Collects edits for one source unit and serializes them once."""

    def __init__(self, source: bytes, filename: str = "<memory>") -> None:
        self.source = source
        self.filename = filename
        self._edits: List[Edit] = []

    @property
    def edits(self) -> List[Edit]:
        return list(self._edits)

    def __len__(self) -> int:
        return len(self._edits)

    def _add(self, start: int, end: int, text: str, line: int, label: str) -> Edit:
        edit = Edit(start, end, text, len(self._edits), line, label)
        self._edits.append(edit)
        return edit

    def replace(self, node: Node, text: str, label: str = "") -> Edit:
        return self._add(node.start_byte, node.end_byte, text, line_of(node), label)

    def insert_before(self, node: Node, text: str, label: str = "") -> Edit:
        return self._add(node.start_byte, node.start_byte, text, line_of(node), label)

    def insert_after(self, node: Node, text: str, label: str = "") -> Edit:
        return self._add(node.end_byte, node.end_byte, text, line_of(node), label)

    def check_conflicts(self) -> None:
        replacements = sorted(
            (e for e in self._edits if not e.is_insertion),
            key=lambda e: (e.start, e.end),
        )
        for prev, cur in zip(replacements, replacements[1:]):
            if cur.start < prev.end:
                raise MutationConflictError(
                    f"overlapping edits {prev.label or 'replace'} and "
                    f"{cur.label or 'replace'}",
                    SourceLocation(file=self.filename, line=cur.line),
                )
        for ins in (e for e in self._edits if e.is_insertion):
            for rep in replacements:
                if rep.start < ins.start < rep.end:
                    raise MutationConflictError(
                        f"insertion {ins.label or ''} inside a replaced node",
                        SourceLocation(file=self.filename, line=ins.line),
                    )

    def apply(self) -> bytes:
        """Serialize the source with every recorded edit applied."""
        if not self._edits:
            return self.source
        self.check_conflicts()
        _log.debug("%s: applying %d edit(s)", self.filename, len(self._edits))
        return splice(self.source, self._edits)

    def validate(self, output: bytes) -> Tree:
        """Re-parse *output*; reject it if it no longer parses."""
        try:
            return parse_go(output, self.filename)
        except UnparsableInputError as exc:
            raise InvalidOutputError(
                "rewritten source does not parse; file left unchanged",
                exc.location,
                cause=exc,
            ) from exc
