"""
goctx_rewrite.scope
===================

Lexical scope tracking for the rewrite walk.

A :class:`ScopeStack` holds one :class:`ScopeFrame` per Go block or function
being walked.  Frames are copy-on-push: a new frame starts with a copy of the
frame it inherits from, may override names for the rest of its extent, and
on pop the parent captured at push time becomes current again with its map
exactly as it was.  Nothing is ever "cleared" on scope exit, which is what
makes an outer ``ctx`` visible again after an inner block that shadowed it.

A name can also be bound to ``None``: an explicit "no binding" that hides an
outer binding (a parameter ``ctx int``, or a declaration whose type cannot be
determined).

Usage::

    stack = ScopeStack()
    with stack.frame(inherit=None, owner="func main"):
        stack.bind("ctx", BindingKind.VALUE, pos=10)
        with stack.frame(owner="block"):
            stack.bind("ctx", BindingKind.POINTER, pos=40)
            assert stack.resolve("ctx").kind is BindingKind.POINTER
        assert stack.resolve("ctx").kind is BindingKind.VALUE
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from goctx_rewrite.bindings import Binding, BindingKind
from goctx_rewrite.errors import InternalError

_log = logging.getLogger(__name__)

# Marker for "inherit from the current frame" in push(); None means empty.
_CURRENT = object()


@dataclass
class ScopeFrame:
    """One lexical frame."""
    bindings: Dict[str, Optional[Binding]] = field(default_factory=dict)
    parent: Optional["ScopeFrame"] = None
    owner: str = ""
    depth: int = 0

    def visible(self) -> List[Binding]:
        return [b for b in self.bindings.values() if b is not None]


class ScopeStack:
    """Stack of :class:`ScopeFrame` with exact restoration on pop."""

    def __init__(self) -> None:
        self._root = ScopeFrame(owner="<file>")
        self._current = self._root

    # ----- frames -----------------------------------------------------------

    @property
    def current(self) -> ScopeFrame:
        return self._current

    @property
    def depth(self) -> int:
        return self._current.depth

    def push(self, inherit=_CURRENT, owner: str = "") -> ScopeFrame:
        """Enter a frame whose bindings copy *inherit* (default: current).

        ``inherit=None`` starts empty; that is used for a function's
        outermost frame before its parameters are bound.
        """
        source = self._current if inherit is _CURRENT else inherit
        frame = ScopeFrame(
            bindings=dict(source.bindings) if source is not None else {},
            parent=self._current,
            owner=owner,
            depth=self._current.depth + 1,
        )
        self._current = frame
        return frame

    def pop(self) -> ScopeFrame:
        """Leave the current frame, making its parent current again."""
        frame = self._current
        if frame.parent is None:
            raise InternalError("attempt to pop the file-level scope frame")
        self._current = frame.parent
        return frame

    @contextmanager
    def frame(self, inherit=_CURRENT, owner: str = "") -> Iterator[ScopeFrame]:
        pushed = self.push(inherit, owner)
        try:
            yield pushed
        finally:
            if self._current is not pushed:
                raise InternalError(
                    f"unbalanced scope frames: expected {pushed.owner!r}, "
                    f"found {self._current.owner!r}"
                )
            self.pop()

    # ----- bindings ---------------------------------------------------------

    def bind(
        self,
        name: str,
        kind: BindingKind,
        pos: int,
        *,
        line: int = 0,
        accessor: str = "",
    ) -> Binding:
        """Set or override *name* in the current frame only."""
        binding = Binding(name=name, kind=kind, visible_from=pos,
                          line=line, accessor=accessor)
        self._current.bindings[name] = binding
        _log.debug("bind %s in %s", binding, self._current.owner)
        return binding

    def install(self, binding: Binding) -> Binding:
        """Put a prepared binding (e.g. a derived one) in the current frame."""
        self._current.bindings[binding.name] = binding
        _log.debug("install %s in %s", binding, self._current.owner)
        return binding

    def unbind(self, name: str) -> None:
        """Hide *name* for the rest of the current frame."""
        self._current.bindings[name] = None

    def resolve(self, name: str, at: Optional[int] = None) -> Optional[Binding]:
        """Binding of *name* in the current frame, if visible at *at*."""
        binding = self._current.bindings.get(name)
        if binding is None or not binding.is_visible_at(at):
            return None
        return binding

    def resolve_kind(
        self, kind: BindingKind, at: Optional[int] = None
    ) -> Optional[Binding]:
        """Most recently declared visible binding of *kind*."""
        best: Optional[Binding] = None
        for binding in self._current.visible():
            if binding.kind is not kind or not binding.is_visible_at(at):
                continue
            if best is None or binding.visible_from >= best.visible_from:
                best = binding
        return best

    def is_tracked(self, name: str) -> bool:
        """True if *name* currently maps to a binding (not hidden)."""
        return self._current.bindings.get(name) is not None
