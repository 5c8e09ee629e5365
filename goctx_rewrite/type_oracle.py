"""
goctx_rewrite/type_oracle.py
════════════════════════════

Syntactic type resolution for resource bindings.

The rewriter has no Go type checker; this oracle answers the one question
it needs ("is this name a context, a pointer to one, or an object with a
``Context()`` accessor?") from declared types and the shape of initializer
expressions.

Two outcomes are kept apart:

  * ``None``: the type is known and is not a resource (``ctx int``,
    ``ctx := 42``).  The name simply hides any outer binding.

  * :class:`UnresolvedTypeError`: the type cannot be determined from the
    syntax (``ctx := makeContext()``).  The walker treats it as "no
    binding" as well, but reports it, because a real context may be hidden
    from the rewriter there.
"""

from __future__ import annotations

from typing import List, Optional

from tree_sitter import Node

from goctx_rewrite.bindings import BindingKind
from goctx_rewrite.config import CONTEXT_CONSTRUCTORS, RewriteConfig
from goctx_rewrite.diagnostics import SourceLocation
from goctx_rewrite.errors import UnresolvedTypeError
from goctx_rewrite.go_ast import (
    ExprShape,
    ImportTable,
    call_arguments,
    classify_expr,
    line_of,
    node_text,
    selector_parts,
)
from goctx_rewrite.scope import ScopeStack

# Initializers whose type is plainly not a context.
_NON_RESOURCE_EXPRS = frozenset({
    "int_literal",
    "float_literal",
    "imaginary_literal",
    "rune_literal",
    "interpreted_string_literal",
    "raw_string_literal",
    "true",
    "false",
    "nil",
    "composite_literal",
    "func_literal",
    "binary_expression",
})


class TypeOracle:
    """Answers binding-kind questions for one file."""

    def __init__(self, imports: ImportTable, config: RewriteConfig,
                 filename: str = "") -> None:
        self.config = config
        self.filename = filename
        self.context_pkg = imports.local_name(config.context_package)
        self.http_pkg = imports.local_name(config.http_package)

    # ----- declared types ---------------------------------------------------

    def _is_qualified(self, node: Node, package: Optional[str], name: str) -> bool:
        if package is None or node.type != "qualified_type":
            return False
        return (node_text(node.child_by_field_name("package")) == package
                and node_text(node.child_by_field_name("name")) == name)

    def kind_of_type(self, type_node: Optional[Node]) -> Optional[BindingKind]:
        """Kind for a declared type, ``None`` if it is not a resource type."""
        if type_node is None:
            return None
        while type_node.type == "parenthesized_type":
            inner = type_node.named_children
            if not inner:
                return None
            type_node = inner[0]
        cfg = self.config
        if type_node.type == "pointer_type":
            inner = type_node.named_children
            if not inner:
                return None
            target = inner[0]
            if self._is_qualified(target, self.context_pkg, cfg.primary_type):
                return BindingKind.POINTER
            if self._is_qualified(target, self.http_pkg, cfg.request_type):
                return BindingKind.ACCESSOR
            return None
        if self._is_qualified(type_node, self.context_pkg, cfg.primary_type):
            return BindingKind.VALUE
        if self._is_qualified(type_node, self.http_pkg, cfg.request_type):
            return BindingKind.ACCESSOR
        return None

    # ----- initializers -----------------------------------------------------

    def _unresolved(self, node: Node) -> UnresolvedTypeError:
        return UnresolvedTypeError(
            f"cannot determine the type of {node_text(node)!r}",
            SourceLocation(file=self.filename, line=line_of(node)),
        )

    def is_context_call(self, call: Node) -> bool:
        """``context.Background()``, ``context.WithCancel(...)``, ..."""
        package, name = selector_parts(call)
        return (self.context_pkg is not None and package == self.context_pkg
                and name in CONTEXT_CONSTRUCTORS)

    def kind_of_value(self, expr: Node, scopes: ScopeStack) -> Optional[BindingKind]:
        """Kind of the value *expr* evaluates to.

        Raises :class:`UnresolvedTypeError` when the syntax does not tell.
        """
        shape, node = classify_expr(expr)
        if shape is ExprShape.IDENTIFIER:
            binding = scopes.resolve(node_text(node))
            if binding is None:
                if node_text(node) == "nil":
                    return None
                raise self._unresolved(node)
            if binding.kind is BindingKind.ACCESSOR:
                return None
            return binding.kind
        if shape is ExprShape.ADDRESS_OF:
            inner = self.kind_of_value(node, scopes)
            return BindingKind.POINTER if inner is BindingKind.VALUE else None
        if shape is ExprShape.DEREF:
            if node.type == "identifier":
                binding = scopes.resolve(node_text(node))
                if binding is not None and binding.kind is BindingKind.POINTER:
                    return BindingKind.VALUE
            raise self._unresolved(expr)
        if shape is ExprShape.CALL:
            if self.is_context_call(node):
                return BindingKind.VALUE
            package, name = selector_parts(node)
            if (package and name == self.config.secondary_accessor
                    and not call_arguments(node)):
                return BindingKind.VALUE
            raise self._unresolved(node)
        if node.type == "type_assertion_expression":
            return self.kind_of_type(node.child_by_field_name("type"))
        if node.type in _NON_RESOURCE_EXPRS:
            return None
        raise self._unresolved(node)

    def kind_for_position(
        self,
        index: int,
        lhs_count: int,
        values: List[Node],
        scopes: ScopeStack,
    ) -> Optional[BindingKind]:
        """Kind of the *index*-th name of ``a, b := values...``."""
        if len(values) == lhs_count:
            return self.kind_of_value(values[index], scopes)
        if len(values) == 1:
            shape, call = classify_expr(values[0])
            # ctx, cancel := context.WithCancel(parent)
            if shape is ExprShape.CALL and self.is_context_call(call):
                return BindingKind.VALUE if index == 0 else None
            raise self._unresolved(values[0])
        return None
