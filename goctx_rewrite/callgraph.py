"""
goctx_rewrite.callgraph
=======================

Launch sites and the skip set.

The call graph here is deliberately small: nodes are the functions and
methods declared in one Go file, and each *use* of a function is classified
by how it is invoked.

Use kinds
---------
``LAUNCH``
    The function is the callee of a ``go`` statement, or the forwarded call
    of a detached wrapper this tool produced earlier (a ``go func() {...}()``
    whose body starts with the derived-resource marker and ends by calling
    the function).
``SYNC``
    Any other call, and any reference to the function as a value
    (``http.HandleFunc("/", handler)``, ``f := worker``).

A function enters the skip set iff it has at least one LAUNCH use and no
SYNC use.  Such a function only ever runs detached; its body is handled by
the launch transformer's wrapping and must not be rewritten from its own
declaration scope.

Public API
----------
    UseKind         - LAUNCH / SYNC
    FunctionUse     - one use of a declared function
    LaunchSite      - one ``go`` statement
    CallGraph       - declared functions, uses, launches, skip set
    build_callgraph - build from a parsed file
    launch_call     - the call a ``go`` statement launches
    marker_statement - derived-resource marker at the top of a body
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

from tree_sitter import Node

from goctx_rewrite.config import RewriteConfig
from goctx_rewrite.go_ast import (
    FunctionIdentity,
    ImportTable,
    block_statements,
    collect_imports,
    function_identity,
    iter_function_declarations,
    iter_preorder,
    line_of,
    named_child_list,
    node_text,
    span_of,
    unwrap_parens,
)

_log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Use kinds
# ---------------------------------------------------------------------------

class UseKind(enum.Enum):
    """How a declared function is used at one site."""

    LAUNCH = "launch"
    SYNC   = "sync"


@dataclass(frozen=True)
class FunctionUse:
    identity: FunctionIdentity
    kind: UseKind
    line: int


@dataclass
class LaunchSite:
    """A ``go`` statement.

    Attributes
    ----------
    statement : the ``go_statement`` node
    call : the launched ``call_expression``, ``None`` if the shape is unknown
    is_inline : the callee is a function literal
    """
    statement: Node
    call: Optional[Node]
    is_inline: bool = False

    @property
    def line(self) -> int:
        return line_of(self.statement)


# ---------------------------------------------------------------------------
# Launch shapes
# ---------------------------------------------------------------------------

def launch_call(statement: Node) -> Optional[Node]:
    """The call a ``go`` statement launches, ``None`` for other shapes."""
    inner = named_child_list(statement)
    if not inner:
        return None
    expr = unwrap_parens(inner[0])
    return expr if expr.type == "call_expression" else None


def launch_callee(call: Node) -> Optional[Node]:
    fn = call.child_by_field_name("function")
    return unwrap_parens(fn) if fn is not None else None


def marker_statement(body: Optional[Node], config: RewriteConfig) -> Optional[Node]:
    """The ``<derived> := ...`` declaration opening *body*, if present."""
    statements = block_statements(body)
    if not statements:
        return None
    first = statements[0]
    if first.type != "short_var_declaration":
        return None
    left = named_child_list(first.child_by_field_name("left"))
    if len(left) == 1 and node_text(left[0]) == config.derived_name:
        return first
    return None


def instrumentation_prefix(body: Optional[Node], config: RewriteConfig) -> List[Node]:
    """Marker, span start and deferred span end at the top of *body*."""
    statements = block_statements(body)
    if marker_statement(body, config) is None:
        return []
    prefix = [statements[0]]
    for stmt in statements[1:3]:
        text = node_text(stmt)
        if stmt.type == "short_var_declaration" and config.span_name in text:
            prefix.append(stmt)
        elif stmt.type == "defer_statement" and text.startswith(
                f"defer {config.span_name}."):
            prefix.append(stmt)
        else:
            break
    return prefix


def forwarded_call(literal: Node, config: RewriteConfig) -> Optional[Node]:
    """The call a detached wrapper forwards to, if *literal* is one."""
    body = literal.child_by_field_name("body")
    if marker_statement(body, config) is None:
        return None
    statements = block_statements(body)
    last = statements[-1]
    if last.type != "expression_statement":
        return None
    inner = named_child_list(last)
    if inner and inner[0].type == "call_expression":
        return inner[0]
    return None


# ---------------------------------------------------------------------------
# CallGraph
# ---------------------------------------------------------------------------

@dataclass
class CallGraph:
    """Functions declared in one file and how each is used."""
    functions: Dict[FunctionIdentity, Node] = field(default_factory=dict)
    uses: Dict[FunctionIdentity, List[FunctionUse]] = field(
        default_factory=lambda: defaultdict(list)
    )
    launches: List[LaunchSite] = field(default_factory=list)
    imports: ImportTable = field(default_factory=ImportTable)
    _methods_by_name: Dict[str, List[FunctionIdentity]] = field(
        default_factory=lambda: defaultdict(list)
    )
    _skip: Optional[FrozenSet[FunctionIdentity]] = None

    def add_function(self, identity: FunctionIdentity, decl: Node) -> None:
        self.functions[identity] = decl
        if identity.receiver is not None:
            self._methods_by_name[identity.name].append(identity)

    def resolve_callee(self, callee: Optional[Node]) -> Optional[FunctionIdentity]:
        """Static identity of a callee expression, if declared in this file."""
        if callee is None:
            return None
        if callee.type == "identifier":
            identity = FunctionIdentity(node_text(callee))
            return identity if identity in self.functions else None
        if callee.type == "selector_expression":
            operand = unwrap_parens(callee.child_by_field_name("operand"))
            if operand.type == "identifier" and self.imports.is_package(node_text(operand)):
                return None
            name = node_text(callee.child_by_field_name("field"))
            candidates = self._methods_by_name.get(name, [])
            if len(candidates) == 1:
                return candidates[0]
        return None

    @property
    def skip_set(self) -> FrozenSet[FunctionIdentity]:
        if self._skip is None:
            skip = set()
            for identity, uses in self.uses.items():
                kinds = {u.kind for u in uses}
                if kinds == {UseKind.LAUNCH}:
                    skip.add(identity)
            self._skip = frozenset(skip)
        return self._skip

    def is_skipped(self, identity: Optional[FunctionIdentity]) -> bool:
        return identity is not None and identity in self.skip_set

    def uses_of(self, identity: FunctionIdentity) -> List[FunctionUse]:
        return list(self.uses.get(identity, []))


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def _launched_callees(root: Node, config: RewriteConfig, graph: CallGraph) -> Dict:
    """Spans of callee expressions invoked detached."""
    launched: Dict = {}
    for node in iter_preorder(root):
        if node.type != "go_statement":
            continue
        call = launch_call(node)
        site = LaunchSite(statement=node, call=call)
        graph.launches.append(site)
        if call is None:
            continue
        callee = launch_callee(call)
        if callee is None:
            continue
        if callee.type == "func_literal":
            site.is_inline = True
            forwarded = forwarded_call(callee, config)
            if forwarded is not None:
                inner = launch_callee(forwarded)
                if inner is not None:
                    launched[span_of(inner)] = inner
            continue
        launched[span_of(callee)] = callee
    return launched


def build_callgraph(root: Node, config: RewriteConfig,
                    imports: Optional[ImportTable] = None) -> CallGraph:
    """Collect declared functions, launch sites and classified uses.

    A selector whose operand names an imported package is external and is
    never resolved to a method declared here.
    """
    graph = CallGraph(imports=imports if imports is not None else collect_imports(root))
    declaration_names = set()
    for decl in iter_function_declarations(root):
        identity = function_identity(decl)
        if identity is not None:
            graph.add_function(identity, decl)
            name = decl.child_by_field_name("name")
            if name is not None:
                declaration_names.add(span_of(name))

    launched = _launched_callees(root, config, graph)

    for node in iter_preorder(root):
        if node.type not in ("identifier", "selector_expression"):
            continue
        if node.type == "identifier":
            if span_of(node) in declaration_names:
                continue
            parent = node.parent
            # the operand of a selector is resolved with the selector
            if (parent is not None and parent.type == "selector_expression"
                    and span_of(parent.child_by_field_name("operand") or parent)
                    == span_of(node)):
                continue
        identity = graph.resolve_callee(node)
        if identity is None:
            continue
        kind = UseKind.LAUNCH if span_of(node) in launched else UseKind.SYNC
        graph.uses[identity].append(FunctionUse(identity, kind, line_of(node)))

    if graph.skip_set:
        _log.debug("skip set: %s", ", ".join(sorted(map(str, graph.skip_set))))
    return graph
