#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
goctx_rewrite/go_ast.py
═══════════════════════

Go syntax-tree front end and traversal utilities.

The tree itself is produced by tree-sitter with the tree-sitter-go grammar.
This module wraps it with the handful of queries the rewriter needs:

    ┌─────────────────────────────────────────────────────────────────┐
    │  Parsing                                                        │
    │    • parse_go — parse bytes, reject trees with syntax errors    │
    ├─────────────────────────────────────────────────────────────────┤
    │  Traversal                                                      │
    │    • Pre-order iteration                                        │
    │    • Statement lists (visible or hidden statement_list)         │
    │    • Comment enumeration                                        │
    ├─────────────────────────────────────────────────────────────────┤
    │  Classification                                                 │
    │    • ExprShape: identifier / deref / address-of / call /        │
    │      selector / other                                           │
    │    • Placeholder call recognition                               │
    │    • Import table (local names of imported packages)            │
    │    • Function identities                                        │
    ├─────────────────────────────────────────────────────────────────┤
    │  Structural Utilities                                           │
    │    • Node text, line numbers, line indentation                  │
    │    • Call-name stringification (``a.b.c``)                      │
    └─────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────
1. **Non-invasive**: never edits nodes; edits are recorded by
   :mod:`goctx_rewrite.mutator` and applied in one final serialization.

2. **Structural**: placeholders are recognised as ``call_expression`` nodes,
   so text inside comments and string literals can never match.

3. **Grammar-version tolerant**: tree-sitter-go has exposed statement lists
   both as a hidden rule and as a visible ``statement_list`` node; helpers
   flatten either form.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

import tree_sitter_go as tsgo
from tree_sitter import Language, Node, Parser, Tree

from goctx_rewrite.diagnostics import SourceLocation
from goctx_rewrite.errors import UnparsableInputError

GO_LANGUAGE = Language(tsgo.language())
_parser = Parser(GO_LANGUAGE)


# ═══════════════════════════════════════════════════════════════════════════
#  CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════

CASE_NODES = frozenset({
    "expression_case",
    "type_case",
    "communication_case",
    "default_case",
})

# Field names that hold the head of a case clause rather than its statements.
_CASE_HEAD_FIELDS = ("value", "type", "communication")

STRING_NODES = frozenset({
    "interpreted_string_literal",
    "raw_string_literal",
    "rune_literal",
})


# ═══════════════════════════════════════════════════════════════════════════
#  PARSING
# ═══════════════════════════════════════════════════════════════════════════

def parse_go(source: bytes, filename: str = "<memory>") -> Tree:
    """Parse Go source, raising :class:`UnparsableInputError` on syntax errors.

    Go source is UTF-8; any other byte sequence is rejected as unparsable.
    """
    try:
        source.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise UnparsableInputError(
            "source is not valid UTF-8",
            SourceLocation(file=filename, line=source.count(b"\n", 0, exc.start) + 1),
            cause=exc,
        ) from exc
    tree = _parser.parse(source)
    if tree.root_node.has_error:
        bad = first_error(tree.root_node)
        line = line_of(bad) if bad is not None else 0
        raise UnparsableInputError(
            "syntax error in Go source",
            SourceLocation(file=filename, line=line),
        )
    return tree


def first_error(node: Node) -> Optional[Node]:
    """Return the first ERROR or MISSING node under *node* (pre-order)."""
    for n in iter_preorder(node):
        if n.type == "ERROR" or n.is_missing:
            return n
    return None


# ═══════════════════════════════════════════════════════════════════════════
#  TRAVERSAL
# ═══════════════════════════════════════════════════════════════════════════

def iter_preorder(node: Optional[Node]) -> Iterator[Node]:
    """Yield *node* and all its descendants in pre-order."""
    if node is None:
        return
    stack = [node]
    while stack:
        n = stack.pop()
        yield n
        stack.extend(reversed(n.children))


def iter_comments(root: Node) -> Iterator[Tuple[int, str]]:
    """Yield ``(line, text)`` for every comment in the tree."""
    for n in iter_preorder(root):
        if n.type == "comment":
            yield line_of(n), node_text(n)


def _flatten_statements(nodes: List[Node]) -> List[Node]:
    out: List[Node] = []
    for child in nodes:
        if child.type == "statement_list":
            out.extend(c for c in child.named_children if c.type != "comment")
        elif child.type != "comment":
            out.append(child)
    return out


def block_statements(block: Optional[Node]) -> List[Node]:
    """The statements of a ``block`` node, in source order."""
    if block is None:
        return []
    return _flatten_statements(block.named_children)


def case_statements(case: Node) -> List[Node]:
    """The statements of a switch/select case clause."""
    head = set()
    for name in _CASE_HEAD_FIELDS:
        for child in case.children_by_field_name(name):
            head.add(span_of(child))
    rest = [c for c in case.named_children if span_of(c) not in head]
    return _flatten_statements(rest)


def named_child_list(node: Optional[Node]) -> List[Node]:
    """Named children, comments excluded."""
    if node is None:
        return []
    return [c for c in node.named_children if c.type != "comment"]


# ═══════════════════════════════════════════════════════════════════════════
#  STRUCTURAL UTILITIES
# ═══════════════════════════════════════════════════════════════════════════

def node_text(node: Optional[Node]) -> str:
    """Source text of a node as a string."""
    if node is None:
        return ""
    return node.text.decode("utf-8")


def span_of(node: Node) -> Tuple[int, int]:
    """Byte span; used as node identity across re-fetched wrapper objects."""
    return node.start_byte, node.end_byte


def line_of(node: Node) -> int:
    """1-based line number of the node's start."""
    return node.start_point[0] + 1


def column_of(node: Node) -> int:
    """1-based column of the node's start."""
    return node.start_point[1] + 1


def line_indent(source: bytes, node: Node) -> str:
    """Leading whitespace of the line on which *node* starts."""
    start = source.rfind(b"\n", 0, node.start_byte) + 1
    end = start
    while end < len(source) and source[end:end + 1] in (b" ", b"\t"):
        end += 1
    return source[start:end].decode("utf-8")


def unwrap_parens(node: Node) -> Node:
    while node.type == "parenthesized_expression":
        inner = named_child_list(node)
        if not inner:
            break
        node = inner[0]
    return node


def expr_to_string(node: Optional[Node]) -> str:
    """``a``, ``a.b``, ``a.b.c`` for identifier/selector chains, else ``""``."""
    if node is None:
        return ""
    if node.type in ("identifier", "field_identifier", "package_identifier"):
        return node_text(node)
    if node.type == "selector_expression":
        left = expr_to_string(node.child_by_field_name("operand"))
        right = node_text(node.child_by_field_name("field"))
        return f"{left}.{right}" if left else ""
    return ""


def call_arguments(call: Node) -> List[Node]:
    return named_child_list(call.child_by_field_name("arguments"))


def is_keyed_element_key(ident: Node) -> bool:
    """True for the key position of ``T{key: value}`` composite literals."""
    parent = ident.parent
    if parent is None:
        return False
    if parent.type == "literal_element":
        holder = parent.parent
        if holder is not None and holder.type == "keyed_element":
            keys = named_child_list(holder)
            return bool(keys) and span_of(keys[0]) == span_of(parent)
        return False
    if parent.type == "keyed_element":
        keys = named_child_list(parent)
        return bool(keys) and span_of(keys[0]) == span_of(ident)
    return False


# ═══════════════════════════════════════════════════════════════════════════
#  EXPRESSION SHAPES
# ═══════════════════════════════════════════════════════════════════════════

class ExprShape(enum.Enum):
    """The closed set of expression shapes the rewriter distinguishes."""

    IDENTIFIER = "identifier"   # ctx
    DEREF      = "deref"        # *ctx
    ADDRESS_OF = "address-of"   # &ctx
    CALL       = "call"         # f(...), pkg.F(...), r.Context()
    SELECTOR   = "selector"     # a.b
    OTHER      = "other"


def classify_expr(node: Node) -> Tuple[ExprShape, Node]:
    """Classify *node* (parentheses removed).

    Returns the shape and the node it applies to; for DEREF and ADDRESS_OF
    the second element is the operand.
    """
    node = unwrap_parens(node)
    kind = node.type
    if kind == "identifier":
        return ExprShape.IDENTIFIER, node
    if kind == "unary_expression":
        op = node_text(node.child_by_field_name("operator"))
        operand = node.child_by_field_name("operand")
        if operand is not None:
            if op == "*":
                return ExprShape.DEREF, unwrap_parens(operand)
            if op == "&":
                return ExprShape.ADDRESS_OF, unwrap_parens(operand)
        return ExprShape.OTHER, node
    if kind == "call_expression":
        return ExprShape.CALL, node
    if kind == "selector_expression":
        return ExprShape.SELECTOR, node
    return ExprShape.OTHER, node


def selector_parts(call: Node) -> Tuple[str, str]:
    """For ``x.f(...)`` return ``("x", "f")``; ``("", name)`` for ``f(...)``."""
    fn = call.child_by_field_name("function")
    if fn is None:
        return "", ""
    fn = unwrap_parens(fn)
    if fn.type == "identifier":
        return "", node_text(fn)
    if fn.type == "selector_expression":
        operand = unwrap_parens(fn.child_by_field_name("operand"))
        return expr_to_string(operand), node_text(fn.child_by_field_name("field"))
    return "", ""


def is_placeholder_call(node: Node, package: Optional[str],
                        names: Tuple[str, ...]) -> bool:
    """``<package>.<name>()`` with zero arguments, matched structurally."""
    if package is None or node.type != "call_expression":
        return False
    if node.child_by_field_name("type_arguments") is not None:
        return False
    fn = node.child_by_field_name("function")
    if fn is None or fn.type != "selector_expression":
        return False
    operand = fn.child_by_field_name("operand")
    if operand is None or operand.type != "identifier":
        return False
    if node_text(operand) != package:
        return False
    if node_text(fn.child_by_field_name("field")) not in names:
        return False
    return not call_arguments(node)


# ═══════════════════════════════════════════════════════════════════════════
#  IMPORTS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ImportTable:
    """Local names of the packages a file imports."""
    names: Dict[str, Optional[str]] = field(default_factory=dict)
    declarations: List[Node] = field(default_factory=list)
    package_clause: Optional[Node] = None

    def local_name(self, path: str) -> Optional[str]:
        """Name through which *path* is referenced, ``None`` if unusable."""
        return self.names.get(path)

    def has(self, path: str) -> bool:
        return path in self.names

    def is_package(self, name: str) -> bool:
        """True if *name* is the local name of an imported package."""
        return name in self.names.values()


def _default_package_name(path: str) -> str:
    last = path.rstrip("/").rsplit("/", 1)[-1]
    # gopkg.in/yaml.v3 → yaml ; example.com/mod/v2 → mod
    if "." in last:
        last = last.split(".", 1)[0]
    if len(last) >= 2 and last[0] == "v" and last[1:].isdigit():
        parts = path.rstrip("/").rsplit("/", 2)
        if len(parts) >= 2:
            last = parts[-2]
    return last.replace("-", "_")


def collect_imports(root: Node) -> ImportTable:
    table = ImportTable()
    for child in root.named_children:
        if child.type == "package_clause":
            table.package_clause = child
        elif child.type == "import_declaration":
            table.declarations.append(child)
            for spec in iter_preorder(child):
                if spec.type != "import_spec":
                    continue
                path = node_text(spec.child_by_field_name("path")).strip("`\"")
                alias = spec.child_by_field_name("name")
                if alias is None:
                    table.names[path] = _default_package_name(path)
                elif alias.type in ("dot", "blank_identifier"):
                    table.names[path] = None
                else:
                    table.names[path] = node_text(alias)
    return table


# ═══════════════════════════════════════════════════════════════════════════
#  FUNCTION IDENTITIES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FunctionIdentity:
    """Static identity of a function or method declared in the file."""
    name: str
    receiver: Optional[str] = None

    def __str__(self) -> str:
        if self.receiver:
            return f"({self.receiver}).{self.name}"
        return self.name


def _receiver_type(decl: Node) -> str:
    recv = decl.child_by_field_name("receiver")
    for param in named_child_list(recv):
        typ = param.child_by_field_name("type")
        if typ is not None:
            return node_text(typ)
    return "?"


def function_identity(decl: Node) -> Optional[FunctionIdentity]:
    """Identity of a function or method declaration, else ``None``."""
    name = node_text(decl.child_by_field_name("name"))
    if decl.type == "function_declaration":
        return FunctionIdentity(name)
    if decl.type == "method_declaration":
        return FunctionIdentity(name, _receiver_type(decl))
    return None


def iter_function_declarations(root: Node) -> Iterator[Node]:
    for child in root.named_children:
        if child.type in ("function_declaration", "method_declaration"):
            yield child


def find_function(root: Node, name: str) -> Optional[Node]:
    """First top-level function or method named *name*."""
    for decl in iter_function_declarations(root):
        if node_text(decl.child_by_field_name("name")) == name:
            return decl
    return None


def iter_calls(node: Optional[Node]) -> Iterator[Node]:
    for n in iter_preorder(node):
        if n.type == "call_expression":
            yield n


__all__ = [
    "GO_LANGUAGE",
    "ExprShape",
    "FunctionIdentity",
    "ImportTable",
    "block_statements",
    "call_arguments",
    "case_statements",
    "classify_expr",
    "collect_imports",
    "column_of",
    "expr_to_string",
    "find_function",
    "first_error",
    "function_identity",
    "is_keyed_element_key",
    "is_placeholder_call",
    "iter_calls",
    "iter_comments",
    "iter_function_declarations",
    "iter_preorder",
    "line_indent",
    "line_of",
    "named_child_list",
    "node_text",
    "parse_go",
    "selector_parts",
    "span_of",
    "unwrap_parens",
]
