"""
goctx_rewrite.walker
====================

The scope-aware walk over one Go file.

:class:`ScopeWalker` visits every function declaration (and, inside them,
every function literal), pushing a scope frame for each block the way Go
scopes it:

    func / method      frame(inherit=None) + receiver, params, named results
    func literal       frame(inherit=current) + params, named results
    block              frame
    if / for / switch  frame around the header, plus one per block / case
    select case        frame per communication case

Declarations bind names after their statement (``ctx := ...`` is visible
from the next statement on); parameters bind before the body.  Placeholder
calls are handed to :class:`~goctx_rewrite.resolver.PlaceholderResolver`;
``go`` statements are intercepted by
:class:`~goctx_rewrite.launch.LaunchTransformer` before their bodies are
visited.  Functions in the skip set are not visited at all.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from tree_sitter import Node, Tree

from goctx_rewrite.bindings import Binding, BindingKind
from goctx_rewrite.callgraph import build_callgraph
from goctx_rewrite.config import RewriteConfig
from goctx_rewrite.diagnostics import NoticeKind, NoticeReporter, SuppressionManager
from goctx_rewrite.errors import UnresolvedTypeError
from goctx_rewrite.go_ast import (
    CASE_NODES,
    STRING_NODES,
    FunctionIdentity,
    block_statements,
    case_statements,
    collect_imports,
    column_of,
    function_identity,
    is_keyed_element_key,
    is_placeholder_call,
    iter_comments,
    iter_preorder,
    line_of,
    named_child_list,
    node_text,
    span_of,
)
from goctx_rewrite.launch import LaunchTransformer
from goctx_rewrite.mutator import TreeMutator
from goctx_rewrite.resolver import PlaceholderResolver
from goctx_rewrite.scope import ScopeStack
from goctx_rewrite.type_oracle import TypeOracle

_log = logging.getLogger(__name__)

# Subtrees that name types or fields and never evaluate the primary name.
_OPAQUE_NODES = frozenset({
    "comment",
    "parameter_list",
    "function_type",
    "struct_type",
    "interface_type",
    "type_declaration",
})


def _has_token(node: Node, token: str) -> bool:
    return any(child.type == token for child in node.children)


class ScopeWalker:
    """Walks one parsed file and records its rewrites."""

    def __init__(
        self,
        tree: Tree,
        source: bytes,
        config: RewriteConfig,
        reporter: NoticeReporter,
        mutator: TreeMutator,
        filename: str = "<memory>",
    ) -> None:
        self.root = tree.root_node
        self.source = source
        self.config = config
        self.reporter = reporter
        self.mutator = mutator
        self.filename = filename
        self.primary = config.primary_name

        self.imports = collect_imports(self.root)
        self.context_pkg = self.imports.local_name(config.context_package)
        self.oracle = TypeOracle(self.imports, config, filename)
        self.scopes = ScopeStack()
        self.resolver = PlaceholderResolver(config)
        self.callgraph = build_callgraph(self.root, config, self.imports)
        self.suppressions = SuppressionManager(config.suppress_marker)
        self.suppressions.load_comments(iter_comments(self.root))
        self.launches = LaunchTransformer(self)

        # > 0 while visiting the initializer of a primary-resource declaration
        self._initializer_depth = 0

        self._statement_handlers: Dict[str, Callable[[Node], None]] = {
            "block": self.visit_block,
            "short_var_declaration": self.visit_short_var_declaration,
            "assignment_statement": self.visit_assignment_statement,
            "var_declaration": self.visit_var_declaration,
            "const_declaration": self._ignore,
            "type_declaration": self._ignore,
            "if_statement": self.visit_if_statement,
            "for_statement": self.visit_for_statement,
            "expression_switch_statement": self.visit_expression_switch,
            "type_switch_statement": self.visit_type_switch,
            "select_statement": self.visit_select_statement,
            "labeled_statement": self.visit_labeled_statement,
            "go_statement": self.launches.visit,
        }

    # ═════════════════════════════════════════════════════════════════════
    #  Entry point
    # ═════════════════════════════════════════════════════════════════════

    def run(self) -> None:
        for child in self.root.named_children:
            if child.type in ("function_declaration", "method_declaration"):
                self.visit_function_declaration(child)
        self.launches.finish()

    # ═════════════════════════════════════════════════════════════════════
    #  Functions
    # ═════════════════════════════════════════════════════════════════════

    def skips_function(self, identity: Optional[FunctionIdentity]) -> bool:
        cfg = self.config
        if not (cfg.instrument_launches or cfg.skip_launch_bodies):
            return False
        return self.callgraph.is_skipped(identity)

    def visit_function_declaration(self, decl: Node) -> None:
        identity = function_identity(decl)
        body = decl.child_by_field_name("body")
        if body is None:
            return
        if self.skips_function(identity):
            _log.debug("%s: %s only runs detached; left to its launch sites",
                       self.filename, identity)
            return
        with self.scopes.frame(inherit=None, owner=f"func {identity}"):
            self.bind_parameters(decl.child_by_field_name("receiver"))
            self.bind_parameters(decl.child_by_field_name("parameters"))
            self.bind_parameters(decl.child_by_field_name("result"))
            self.visit_statements(block_statements(body))

    def visit_function_literal(
        self,
        literal: Node,
        derived: Optional[Binding] = None,
        skip_statements: int = 0,
    ) -> None:
        """Visit a closure; *derived* pre-binds the primary name in its frame."""
        saved = self._initializer_depth
        self._initializer_depth = 0
        try:
            with self.scopes.frame(owner="func literal"):
                self.bind_parameters(literal.child_by_field_name("parameters"))
                self.bind_parameters(literal.child_by_field_name("result"))
                if derived is not None:
                    self.scopes.install(derived)
                statements = block_statements(literal.child_by_field_name("body"))
                self.visit_statements(statements[skip_statements:])
        finally:
            self._initializer_depth = saved

    def declares_primary(self, params: Optional[Node]) -> bool:
        if params is None or params.type != "parameter_list":
            return False
        for decl in named_child_list(params):
            for name in decl.children_by_field_name("name"):
                if node_text(name) == self.primary:
                    return True
        return False

    def bind_parameters(self, params: Optional[Node]) -> None:
        if params is None or params.type != "parameter_list":
            return
        for decl in named_child_list(params):
            if decl.type == "parameter_declaration":
                kind = self.oracle.kind_of_type(decl.child_by_field_name("type"))
            elif decl.type == "variadic_parameter_declaration":
                kind = None
            else:
                continue
            for name in decl.children_by_field_name("name"):
                self.declare(name, kind)

    # ═════════════════════════════════════════════════════════════════════
    #  Declarations
    # ═════════════════════════════════════════════════════════════════════

    def declare(self, name_node: Node, kind: Optional[BindingKind],
                pos: Optional[int] = None) -> None:
        """Bind a declared name, or hide it when it is not a resource."""
        name = node_text(name_node)
        if name == "_":
            return
        if kind is None:
            if name == self.primary or self.scopes.is_tracked(name):
                self.scopes.unbind(name)
            return
        accessor = self.config.secondary_accessor if kind is BindingKind.ACCESSOR else ""
        self.scopes.bind(
            name, kind,
            pos if pos is not None else name_node.end_byte,
            line=line_of(name_node),
            accessor=accessor,
        )

    def declare_untyped(self, name_node: Node) -> None:
        """A declaration whose type the syntax never states (range, receive)."""
        name = node_text(name_node)
        if name == self.primary:
            self._report_unresolved(UnresolvedTypeError(
                f"cannot determine the type of {name!r}",
            ), name_node)
        self.declare(name_node, None)

    def _report_unresolved(self, exc: UnresolvedTypeError, node: Node) -> None:
        line = exc.location.line or line_of(node)
        _log.info("%s:%d: %s", self.filename, line, exc.message)
        self.reporter.warn(line, f"{exc.message}; {self.primary} treated as unbound here")

    def _declare_from_values(self, names: List[Node], values: List[Node],
                             pos: int) -> None:
        kinds: List[Optional[BindingKind]] = []
        for index, name_node in enumerate(names):
            name = node_text(name_node)
            if name != self.primary and not self.scopes.is_tracked(name):
                kinds.append(None)
                continue
            try:
                kinds.append(self.oracle.kind_for_position(
                    index, len(names), values, self.scopes))
            except UnresolvedTypeError as exc:
                if name == self.primary:
                    self._report_unresolved(exc, name_node)
                kinds.append(None)
        for name_node, kind in zip(names, kinds):
            self.declare(name_node, kind, pos)

    def _visit_initializer(self, values: List[Node], declares_primary: bool) -> None:
        if declares_primary:
            self._initializer_depth += 1
        try:
            for value in values:
                self.visit_expr(value)
        finally:
            if declares_primary:
                self._initializer_depth -= 1

    def visit_short_var_declaration(self, node: Node) -> None:
        names = named_child_list(node.child_by_field_name("left"))
        values = named_child_list(node.child_by_field_name("right"))
        declares_primary = any(node_text(n) == self.primary for n in names)
        self._visit_initializer(values, declares_primary)
        self._declare_from_values(names, values, node.end_byte)

    def visit_var_declaration(self, node: Node) -> None:
        specs: List[Node] = []
        for child in named_child_list(node):
            if child.type == "var_spec_list":
                specs.extend(c for c in named_child_list(child) if c.type == "var_spec")
            elif child.type == "var_spec":
                specs.append(child)
        for spec in specs:
            names = spec.children_by_field_name("name")
            type_node = spec.child_by_field_name("type")
            values = named_child_list(spec.child_by_field_name("value"))
            declares_primary = any(node_text(n) == self.primary for n in names)
            self._visit_initializer(values, declares_primary)
            if type_node is not None:
                kind = self.oracle.kind_of_type(type_node)
                for name_node in names:
                    self.declare(name_node, kind, spec.end_byte)
            elif values:
                self._declare_from_values(names, values, spec.end_byte)

    def visit_assignment_statement(self, node: Node) -> None:
        targets = named_child_list(node.child_by_field_name("left"))
        values = named_child_list(node.child_by_field_name("right"))
        for value in values:
            self.visit_expr(value)
        for target in targets:
            if target.type == "identifier":
                self.rename_reference(target, assign=True)
            else:
                self.visit_expr(target)
        if node_text(node.child_by_field_name("operator")) != "=":
            return
        for index, target in enumerate(targets):
            if (target.type != "identifier" or node_text(target) != self.primary
                    or self.scopes.is_tracked(self.primary)):
                continue
            try:
                kind = self.oracle.kind_for_position(
                    index, len(targets), values, self.scopes)
            except UnresolvedTypeError:
                continue
            if kind is not None:
                self.declare(target, kind, node.end_byte)

    # ═════════════════════════════════════════════════════════════════════
    #  Statements
    # ═════════════════════════════════════════════════════════════════════

    def _ignore(self, node: Node) -> None:
        return None

    def visit_statements(self, statements: List[Node]) -> None:
        for stmt in statements:
            self.visit_statement(stmt)

    def visit_statement(self, node: Node) -> None:
        handler = self._statement_handlers.get(node.type)
        if handler is not None:
            handler(node)
        else:
            self.visit_expr(node)

    def visit_block(self, node: Node) -> None:
        with self.scopes.frame(owner="block"):
            self.visit_statements(block_statements(node))

    def _visit_optional_statement(self, node: Optional[Node]) -> None:
        if node is not None:
            self.visit_statement(node)

    def _visit_optional_expr(self, node: Optional[Node]) -> None:
        if node is not None:
            self.visit_expr(node)

    def visit_if_statement(self, node: Node) -> None:
        with self.scopes.frame(owner="if"):
            self._visit_optional_statement(node.child_by_field_name("initializer"))
            self._visit_optional_expr(node.child_by_field_name("condition"))
            consequence = node.child_by_field_name("consequence")
            if consequence is not None:
                self.visit_block(consequence)
            self._visit_optional_statement(node.child_by_field_name("alternative"))

    def visit_for_statement(self, node: Node) -> None:
        body = node.child_by_field_name("body")
        with self.scopes.frame(owner="for"):
            for child in named_child_list(node):
                if body is not None and span_of(child) == span_of(body):
                    continue
                if child.type == "for_clause":
                    self._visit_optional_statement(child.child_by_field_name("initializer"))
                    self._visit_optional_expr(child.child_by_field_name("condition"))
                    self._visit_optional_statement(child.child_by_field_name("update"))
                elif child.type == "range_clause":
                    self._visit_optional_expr(child.child_by_field_name("right"))
                    self._bind_or_assign(child)
                else:
                    self.visit_expr(child)
            if body is not None:
                self.visit_block(body)

    def _bind_or_assign(self, clause: Node) -> None:
        """Left side of a range clause or receive statement."""
        left = clause.child_by_field_name("left")
        if left is None:
            return
        names = named_child_list(left) if left.type == "expression_list" else [left]
        if _has_token(clause, ":="):
            for name_node in names:
                if name_node.type == "identifier":
                    self.declare_untyped(name_node)
        else:
            for target in names:
                if target.type == "identifier":
                    self.rename_reference(target, assign=True)
                else:
                    self.visit_expr(target)

    def visit_expression_switch(self, node: Node) -> None:
        with self.scopes.frame(owner="switch"):
            self._visit_optional_statement(node.child_by_field_name("initializer"))
            self._visit_optional_expr(node.child_by_field_name("value"))
            for case in named_child_list(node):
                if case.type not in CASE_NODES:
                    continue
                with self.scopes.frame(owner="case"):
                    for value in case.children_by_field_name("value"):
                        self.visit_expr(value)
                    self.visit_statements(case_statements(case))

    def visit_type_switch(self, node: Node) -> None:
        aliases: List[Node] = []
        for alias in node.children_by_field_name("alias"):
            aliases.extend(named_child_list(alias) if alias.type == "expression_list"
                           else [alias])
        with self.scopes.frame(owner="type switch"):
            self._visit_optional_statement(node.child_by_field_name("initializer"))
            self._visit_optional_expr(node.child_by_field_name("value"))
            for case in named_child_list(node):
                if case.type not in CASE_NODES:
                    continue
                with self.scopes.frame(owner="case"):
                    types = case.children_by_field_name("type")
                    kind = self.oracle.kind_of_type(types[0]) if len(types) == 1 else None
                    for alias in aliases:
                        self.declare(alias, kind, case.start_byte)
                    self.visit_statements(case_statements(case))

    def visit_select_statement(self, node: Node) -> None:
        for case in named_child_list(node):
            if case.type not in CASE_NODES:
                continue
            with self.scopes.frame(owner="select case"):
                comm = case.child_by_field_name("communication")
                if comm is not None and comm.type == "receive_statement":
                    self._visit_optional_expr(comm.child_by_field_name("right"))
                    self._bind_or_assign(comm)
                elif comm is not None:
                    self.visit_expr(comm)
                self.visit_statements(case_statements(case))

    def visit_labeled_statement(self, node: Node) -> None:
        for child in named_child_list(node):
            if child.type != "label_name":
                self.visit_statement(child)

    # ═════════════════════════════════════════════════════════════════════
    #  Expressions
    # ═════════════════════════════════════════════════════════════════════

    def visit_expr(self, node: Node) -> None:
        kind = node.type
        if kind in STRING_NODES or kind in _OPAQUE_NODES:
            return
        if kind == "call_expression" and self.is_placeholder(node):
            self.resolve_placeholder(node)
            return
        if kind == "func_literal":
            self.visit_function_literal(node)
            return
        if kind == "identifier":
            self.rename_reference(node)
            return
        if kind == "unary_expression" and self.rename_dereference(node):
            return
        if kind in self._statement_handlers:
            self.visit_statement(node)
            return
        for child in node.named_children:
            self.visit_expr(child)

    def is_placeholder(self, node: Node) -> bool:
        return is_placeholder_call(node, self.context_pkg, self.config.placeholders)

    def references_primary(self, node: Optional[Node]) -> bool:
        """True if *node* contains a placeholder or a bare primary reference."""
        for n in iter_preorder(node):
            if n.type == "call_expression" and self.is_placeholder(n):
                return True
            if (n.type == "identifier" and node_text(n) == self.primary
                    and not is_keyed_element_key(n)):
                return True
        return False

    def resolve_placeholder(self, call: Node) -> None:
        if self._initializer_depth:
            return
        binding = self.resolver.resolve(self.scopes, call.start_byte)
        if binding is None:
            return
        line = line_of(call)
        if self.suppressions.is_suppressed(line):
            _log.debug("%s:%d: placeholder suppressed", self.filename, line)
            return
        text = binding.substitution()
        self.mutator.replace(call, text, label="placeholder")
        self.reporter.emit(NoticeKind.REPLACED, line, node_text(call), text,
                           column=column_of(call))

    def _derived_for(self, node: Node) -> Optional[Binding]:
        binding = self.scopes.resolve(self.primary, node.start_byte)
        if binding is None or binding.alias is None or binding.origin is None:
            return None
        return binding

    def rename_reference(self, ident: Node, assign: bool = False) -> None:
        """Point a bare primary reference inside a launch body at the derived name."""
        if node_text(ident) != self.primary or is_keyed_element_key(ident):
            return
        binding = self._derived_for(ident)
        if binding is None:
            return
        if binding.origin is BindingKind.POINTER:
            if assign:
                return
            text = f"&{binding.alias}"
        else:
            text = binding.alias
        self._rename(ident, text)

    def rename_dereference(self, unary: Node) -> bool:
        """``*ctx`` of a pointer primary becomes the derived value."""
        if node_text(unary.child_by_field_name("operator")) != "*":
            return False
        operand = unary.child_by_field_name("operand")
        if operand is None or operand.type != "identifier":
            return False
        if node_text(operand) != self.primary:
            return False
        binding = self._derived_for(operand)
        if binding is None or binding.origin is not BindingKind.POINTER:
            return False
        self._rename(unary, binding.alias)
        return True

    def _rename(self, node: Node, text: str) -> None:
        line = line_of(node)
        if self.suppressions.is_suppressed(line):
            return
        self.mutator.replace(node, text, label="rename")
        self.reporter.emit(NoticeKind.RENAMED, line, node_text(node), text,
                           column=column_of(node))
