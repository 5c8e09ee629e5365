"""
goctx_rewrite.launch
====================

Instrumentation of detached launches (``go`` statements).

A goroutine outlives the request that started it, so the context it uses
must not be cancelled with the caller's.  Each launch whose body refers to
the primary resource gets a derived context at the top of its body::

    go func() {
        detachedCtx := context.WithoutCancel(ctx)
        detachedCtx, span := otel.Tracer("goctx-rewrite").Start(detachedCtx, "detached work")
        defer span.End()
        ...                         // ctx and placeholders now use detachedCtx
    }()

A launch of a named function is promoted to an inline wrapper that
forwards to it, so the callee itself is left as written::

    go worker(ctx, job)   →   go func() {
                                  detachedCtx := ...
                                  ...
                                  worker(detachedCtx, job)
                              }()

A body that already opens with the marker declaration is recognized and
not instrumented again.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from tree_sitter import Node

from goctx_rewrite.bindings import Binding, BindingKind
from goctx_rewrite.callgraph import instrumentation_prefix, launch_call, launch_callee
from goctx_rewrite.diagnostics import NoticeKind, SourceLocation
from goctx_rewrite.errors import UnrecognizedLaunchError
from goctx_rewrite.go_ast import (
    STRING_NODES,
    block_statements,
    call_arguments,
    is_keyed_element_key,
    iter_preorder,
    line_indent,
    line_of,
    named_child_list,
    node_text,
    unwrap_parens,
)
from goctx_rewrite.mutator import render_node

if TYPE_CHECKING:
    from goctx_rewrite.walker import ScopeWalker

_log = logging.getLogger(__name__)

# Operands whose evaluation has no effect and reads no mutable state.
_CONSTANT_NODES = frozenset({
    "int_literal",
    "float_literal",
    "imaginary_literal",
    "rune_literal",
    "interpreted_string_literal",
    "raw_string_literal",
    "true",
    "false",
    "nil",
    "iota",
})


def _names(node: Optional[Node]) -> List[Node]:
    if node is None:
        return []
    return named_child_list(node) if node.type == "expression_list" else [node]


class LaunchTransformer:
    """Rewrites ``go`` statements met by a :class:`ScopeWalker`."""

    def __init__(self, walker: "ScopeWalker") -> None:
        self.walker = walker
        self.config = walker.config
        self.primary = walker.config.primary_name
        # import path -> None, insertion ordered
        self._required: Dict[str, None] = {}

    # ═════════════════════════════════════════════════════════════════════
    #  Dispatch
    # ═════════════════════════════════════════════════════════════════════

    def visit(self, stmt: Node) -> None:
        w = self.walker
        call = launch_call(stmt)
        if call is None:
            self._unrecognized(stmt, "go statement does not launch a call")
            return
        callee = launch_callee(call)
        if self.config.skip_launch_bodies:
            # arguments are still evaluated by the launching goroutine
            for arg in call_arguments(call):
                w.visit_expr(arg)
            return
        if not self.config.instrument_launches:
            w.visit_expr(call)
            return
        if callee is not None and callee.type == "func_literal":
            self._inline(stmt, call, callee)
        elif callee is not None and callee.type in ("identifier", "selector_expression"):
            self._named(stmt, call, callee)
        else:
            kind = callee.type if callee is not None else "expression"
            self._unrecognized(stmt, f"cannot instrument a launch of a {kind}")

    def _unrecognized(self, stmt: Node, message: str) -> None:
        line = line_of(stmt)
        _log.info("%s", UnrecognizedLaunchError(
            message, SourceLocation(file=self.walker.filename, line=line)))
        self.walker.reporter.warn(line, f"{message}; left unchanged")

    # ═════════════════════════════════════════════════════════════════════
    #  Inline launches
    # ═════════════════════════════════════════════════════════════════════

    def _inline(self, stmt: Node, call: Node, literal: Node) -> None:
        w = self.walker
        for arg in call_arguments(call):
            w.visit_expr(arg)

        body = literal.child_by_field_name("body")
        if w.declares_primary(literal.child_by_field_name("parameters")):
            w.reporter.warn(
                line_of(stmt),
                f"launched function takes {self.primary} as a parameter; not instrumented",
            )
            w.visit_function_literal(literal)
            return

        prefix = instrumentation_prefix(body, self.config)
        if prefix:
            _log.debug("%s:%d: launch already instrumented",
                       w.filename, line_of(stmt))
            marker = Binding(
                name=self.primary,
                kind=BindingKind.VALUE,
                visible_from=prefix[0].end_byte,
                line=line_of(prefix[0]),
                alias=self.config.derived_name,
            )
            w.visit_function_literal(literal, derived=marker,
                                     skip_statements=len(prefix))
            return

        if not w.references_primary(body):
            w.visit_function_literal(literal)
            return

        source = self._source_at(stmt)
        lines = self._instrumentation(source) if source is not None else None
        if lines is None or w.suppressions.is_suppressed(line_of(stmt)):
            w.visit_function_literal(literal)
            return
        # params and body share one block in Go
        clash = self._reserved_use([literal.child_by_field_name("parameters"),
                                    literal.child_by_field_name("result"), body])
        if clash is not None:
            self._unrecognized(stmt, f"launched function already uses {clash}")
            return

        brace = body.children[0]
        indent = self._body_indent(stmt, body)
        text = "\n" + "\n".join(indent + line for line in lines)
        if not self._line_ends_after(brace):
            text += "\n" + indent
        w.mutator.insert_after(brace, text, label="instrumentation")
        self._require_imports()
        w.reporter.emit(NoticeKind.INSTRUMENTED, line_of(stmt),
                        replacement=lines[0],
                        message=f"detached from {source.substitution()}")
        w.visit_function_literal(
            literal, derived=self._derive(source, brace.end_byte, line_of(stmt)))

    # ═════════════════════════════════════════════════════════════════════
    #  Named launches
    # ═════════════════════════════════════════════════════════════════════

    def _named(self, stmt: Node, call: Node, callee: Node) -> None:
        w = self.walker
        args = call_arguments(call)
        identity = w.callgraph.resolve_callee(callee)
        skipped = w.callgraph.is_skipped(identity)
        if not skipped and not any(w.references_primary(a) for a in args):
            for arg in args:
                w.visit_expr(arg)
            return

        source = self._source_at(stmt)
        lines = self._instrumentation(source) if source is not None else None
        if lines is None or w.suppressions.is_suppressed(line_of(stmt)):
            for arg in args:
                w.visit_expr(arg)
            return
        # the wrapper evaluates arguments in the new goroutine
        if not all(self._deferrable(a) for a in args):
            self._unrecognized(stmt, "launch arguments have effects that cannot be deferred")
            return
        clash = self._reserved_use(args)
        if clash is not None:
            self._unrecognized(stmt, f"launch arguments already use {clash}")
            return

        derived = self._derive(source, stmt.start_byte, line_of(stmt))
        forwarded = self._forwarded_call(call, callee, derived)
        indent = line_indent(w.source, stmt)
        inner = indent + self.config.indent
        wrapper = "\n".join(
            ["go func() {"]
            + [inner + line for line in lines]
            + [inner + forwarded, indent + "}()"]
        )
        w.mutator.replace(stmt, wrapper, label="launch wrapper")
        self._require_imports()
        line = line_of(stmt)
        w.reporter.emit(NoticeKind.PROMOTED, line, node_text(call), forwarded,
                        message="launch wrapped in a detached closure")
        w.reporter.emit(NoticeKind.INSTRUMENTED, line, replacement=lines[0],
                        message=f"detached from {source.substitution()}")

    def _forwarded_call(self, call: Node, callee: Node, derived: Binding) -> str:
        """The launched call, with its arguments pointed at *derived*."""
        w = self.walker
        replacements: List[Tuple[Node, str]] = []
        arguments = call.child_by_field_name("arguments")
        self._collect_forwarding(arguments, derived, replacements)
        type_args = call.child_by_field_name("type_arguments")
        return (node_text(callee)
                + (node_text(type_args) if type_args is not None else "")
                + render_node(w.source, arguments, replacements))

    def _collect_forwarding(self, node: Optional[Node], derived: Binding,
                            out: List[Tuple[Node, str]]) -> None:
        if node is None or node.type in STRING_NODES or node.type == "comment":
            return
        w = self.walker
        alias = derived.alias
        if node.type == "call_expression" and w.is_placeholder(node):
            out.append((node, alias))
            return
        if node.type == "func_literal" and self._redeclares_primary(node):
            return
        if node.type == "unary_expression" and derived.origin is BindingKind.POINTER:
            operand = node.child_by_field_name("operand")
            if (node_text(node.child_by_field_name("operator")) == "*"
                    and operand is not None and operand.type == "identifier"
                    and node_text(operand) == self.primary):
                out.append((node, alias))
                return
        if (node.type == "identifier" and node_text(node) == self.primary
                and derived.origin is not None and not is_keyed_element_key(node)):
            out.append((node, f"&{alias}" if derived.origin is BindingKind.POINTER
                        else alias))
            return
        for child in node.named_children:
            self._collect_forwarding(child, derived, out)

    # ═════════════════════════════════════════════════════════════════════
    #  Shape checks
    # ═════════════════════════════════════════════════════════════════════

    def _deferrable(self, node: Node) -> bool:
        """True if *node* may be evaluated inside the wrapper instead."""
        node = unwrap_parens(node)
        if node.type in _CONSTANT_NODES or node.type in ("identifier", "func_literal"):
            return True
        if node.type == "selector_expression":
            return self._deferrable(node.child_by_field_name("operand"))
        if node.type == "unary_expression":
            operand = node.child_by_field_name("operand")
            return (node_text(node.child_by_field_name("operator")) in ("&", "*")
                    and operand is not None
                    and unwrap_parens(operand).type == "identifier")
        if node.type == "call_expression":
            return self.walker.is_placeholder(node) or self._is_accessor_call(node)
        return False

    def _is_accessor_call(self, call: Node) -> bool:
        fn = call.child_by_field_name("function")
        if fn is None or fn.type != "selector_expression" or call_arguments(call):
            return False
        operand = fn.child_by_field_name("operand")
        return (operand is not None and operand.type == "identifier"
                and node_text(fn.child_by_field_name("field"))
                == self.config.secondary_accessor)

    def _reserved_use(self, nodes: List[Optional[Node]]) -> Optional[str]:
        """A name the instrumentation declares that *nodes* already mention."""
        reserved = (self.config.derived_name, self.config.span_name)
        for node in nodes:
            for n in iter_preorder(node):
                if n.type == "identifier" and node_text(n) in reserved:
                    return node_text(n)
        return None

    def _redeclares_primary(self, literal: Node) -> bool:
        """True if *literal* binds the primary name anywhere inside it."""
        for n in iter_preorder(literal):
            if n.type == "parameter_list":
                if self.walker.declares_primary(n):
                    return True
                continue
            names: List[Node] = []
            if n.type in ("var_spec", "const_spec"):
                names = n.children_by_field_name("name")
            elif n.type == "type_switch_statement":
                for alias in n.children_by_field_name("alias"):
                    names.extend(_names(alias))
            elif n.type == "short_var_declaration" or (
                    n.type in ("range_clause", "receive_statement")
                    and any(c.type == ":=" for c in n.children)):
                names = _names(n.child_by_field_name("left"))
            if any(node_text(name) == self.primary for name in names):
                return True
        return False

    # ═════════════════════════════════════════════════════════════════════
    #  Instrumentation text
    # ═════════════════════════════════════════════════════════════════════

    def _source_at(self, stmt: Node) -> Optional[Binding]:
        w = self.walker
        source = w.resolver.resolve(w.scopes, stmt.start_byte)
        if source is None:
            _log.debug("%s:%d: no resource in scope for launch; not instrumented",
                       w.filename, line_of(stmt))
        return source

    def _derive(self, source: Binding, pos: int, line: int) -> Binding:
        if source.name == self.primary and source.kind is not BindingKind.ACCESSOR:
            return source.derive(self.config.derived_name, pos, line)
        return Binding(
            name=self.primary,
            kind=BindingKind.VALUE,
            visible_from=pos,
            line=line,
            alias=self.config.derived_name,
        )

    def _package_ref(self, path: str, default: str) -> Optional[str]:
        """Local name to qualify *path* with, ``None`` if it cannot be named."""
        imports = self.walker.imports
        if not imports.has(path):
            return default
        return imports.local_name(path)

    def _tracer(self) -> Optional[str]:
        cfg = self.config
        local = self._package_ref(cfg.tracer_import, cfg.tracer_package)
        if local is None:
            return None
        _, dot, rest = cfg.tracer_expr.partition(".")
        return f"{local}.{rest}" if dot else cfg.tracer_expr

    def _instrumentation(self, source: Binding) -> Optional[List[str]]:
        cfg = self.config
        context_pkg = self._package_ref(cfg.context_package, "context")
        tracer = self._tracer()
        if context_pkg is None or tracer is None:
            _log.info("%s: context or tracer package is dot or blank imported; "
                      "launches not instrumented", self.walker.filename)
            return None
        d, s = cfg.derived_name, cfg.span_name
        return [
            f"{d} := {context_pkg}.{cfg.decouple_func}({source.substitution()})",
            f'{d}, {s} := {tracer}.Start({d}, "{cfg.span_label}")',
            f"defer {s}.{cfg.span_end}()",
        ]

    def _body_indent(self, stmt: Node, body: Node) -> str:
        statements = block_statements(body)
        if statements and line_of(statements[0]) != line_of(body):
            return line_indent(self.walker.source, statements[0])
        return line_indent(self.walker.source, stmt) + self.config.indent

    def _line_ends_after(self, node: Node) -> bool:
        source = self.walker.source
        pos = node.end_byte
        while pos < len(source) and source[pos:pos + 1] in (b" ", b"\t"):
            pos += 1
        return pos >= len(source) or source[pos:pos + 1] in (b"\n", b"\r")

    # ═════════════════════════════════════════════════════════════════════
    #  Imports
    # ═════════════════════════════════════════════════════════════════════

    def _require_imports(self) -> None:
        for path in (self.config.context_package, self.config.tracer_import):
            if not self.walker.imports.has(path):
                self._required[path] = None

    def finish(self) -> None:
        """Add the imports the recorded instrumentation needs."""
        if not self._required:
            return
        w = self.walker
        indent = self.config.indent
        missing = list(self._required)
        declarations = w.imports.declarations
        if declarations:
            last = declarations[-1]
            spec_list = next(
                (c for c in last.named_children if c.type == "import_spec_list"), None)
            if spec_list is not None:
                close = spec_list.children[-1]
                text = "".join(f'{indent}"{path}"\n' for path in missing)
                if w.source[:close.start_byte].rstrip(b" \t")[-1:] != b"\n":
                    text = "\n" + text
                w.mutator.insert_before(close, text, label="import")
            else:
                text = "".join(f'\nimport "{path}"' for path in missing)
                w.mutator.insert_after(last, text, label="import")
            line = line_of(last)
        elif w.imports.package_clause is not None:
            specs = "".join(f'{indent}"{path}"\n' for path in missing)
            w.mutator.insert_after(w.imports.package_clause,
                                   f"\n\nimport (\n{specs})", label="import")
            line = line_of(w.imports.package_clause)
        else:
            return
        for path in missing:
            w.reporter.emit(NoticeKind.IMPORTED, line, replacement=f'"{path}"')
