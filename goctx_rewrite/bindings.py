"""
goctx_rewrite.bindings
======================

The binding model: one named resource binding visible from a point in the
tree onward.

Kinds
-----
``VALUE``
    The name is directly substitutable (``ctx``).
``POINTER``
    The name must be dereferenced at the substitution site (``*ctx``).
``ACCESSOR``
    The resource is obtained by calling a zero-argument method on the named
    object (``r.Context()``).

A binding created for a detached launch body carries an ``alias``: the
derived name that replaces both placeholders and bare references inside the
body.  ``origin`` records the kind of the enclosing binding the derived
resource was made from (``None`` when it came from an accessor), which
decides how ``ctx`` and ``*ctx`` are rewritten inside the body.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class BindingKind(enum.Enum):
    """How a bound name yields the resource."""

    VALUE    = "value"
    POINTER  = "pointer"
    ACCESSOR = "accessor"


@dataclass(frozen=True)
class Binding:
    """A named resource binding.

    Attributes
    ----------
    name : str
        The bound identifier.
    kind : BindingKind
    visible_from : int
        Byte offset from which the binding is in effect.
    line : int
        1-based line of the declaration (for notices and logs).
    accessor : str
        Method name for ``ACCESSOR`` bindings.
    alias : str or None
        Derived name substituted inside a detached launch body.
    origin : BindingKind or None
        Kind of the binding the alias was derived from.
    """

    name: str
    kind: BindingKind
    visible_from: int = 0
    line: int = 0
    accessor: str = ""
    alias: Optional[str] = None
    origin: Optional[BindingKind] = None

    def is_visible_at(self, pos: Optional[int]) -> bool:
        return pos is None or pos >= self.visible_from

    @property
    def is_derived(self) -> bool:
        return self.alias is not None

    def substitution(self) -> str:
        """The expression that replaces a placeholder."""
        if self.alias is not None:
            return self.alias
        if self.kind is BindingKind.VALUE:
            return self.name
        if self.kind is BindingKind.POINTER:
            return f"*{self.name}"
        return f"{self.name}.{self.accessor}()"

    def derive(self, alias: str, visible_from: int, line: int = 0) -> "Binding":
        """A VALUE binding of the same name that substitutes *alias*."""
        if self.alias is not None:
            origin: Optional[BindingKind] = BindingKind.VALUE
        elif self.kind is BindingKind.ACCESSOR:
            origin = None
        else:
            origin = self.kind
        return Binding(
            name=self.name,
            kind=BindingKind.VALUE,
            visible_from=visible_from,
            line=line,
            alias=alias,
            origin=origin,
        )

    def __str__(self) -> str:
        suffix = f" as {self.alias}" if self.alias else ""
        return f"{self.name}:{self.kind.value}@{self.line}{suffix}"
