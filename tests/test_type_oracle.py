# tests/test_type_oracle.py
"""
Tests for syntactic binding-kind resolution.
"""

import pytest

from goctx_rewrite.bindings import BindingKind
from goctx_rewrite.config import RewriteConfig
from goctx_rewrite.errors import UnresolvedTypeError
from goctx_rewrite.go_ast import (
    block_statements, collect_imports, find_function, named_child_list,
)
from goctx_rewrite.scope import ScopeStack
from goctx_rewrite.type_oracle import TypeOracle
from tests.conftest import parse_root

HEADER = 'package main\n\nimport (\n\tc "context"\n\t"net/http"\n)\n\n'


def _oracle(root):
    return TypeOracle(collect_imports(root), RewriteConfig(), "test.go")


def _param_types(src):
    root = parse_root(HEADER + src)
    decl = find_function(root, "f")
    params = decl.child_by_field_name("parameters")
    return _oracle(root), [d.child_by_field_name("type")
                           for d in named_child_list(params)]


def _value(expr, scopes=None):
    """Kind of ``x := <expr>`` inside ``func f()``."""
    root = parse_root(HEADER + "func f() {\n\tx := " + expr + "\n}\n")
    decl = find_function(root, "f")
    body = decl.child_by_field_name("body")
    stmt = block_statements(body)[0]
    value = named_child_list(stmt.child_by_field_name("right"))[0]
    return _oracle(root).kind_of_value(value, scopes or ScopeStack())


class TestDeclaredTypes:

    @pytest.mark.parametrize("decl,expected", [
        ("a c.Context", BindingKind.VALUE),
        ("a *c.Context", BindingKind.POINTER),
        ("a *http.Request", BindingKind.ACCESSOR),
        ("a http.Request", BindingKind.ACCESSOR),
        ("a context.Context", None),
        ("a int", None),
        ("a *http.Client", None),
    ])
    def test_kind_of_type(self, decl, expected):
        oracle, types = _param_types("func f(" + decl + ") {}\n")
        assert oracle.kind_of_type(types[0]) is expected


class TestInitializers:

    def test_context_constructor(self):
        assert _value("c.WithTimeout(p, 1)") is BindingKind.VALUE

    def test_request_accessor(self):
        assert _value("r.Context()") is BindingKind.VALUE

    def test_literal(self):
        assert _value("42") is None

    def test_unknown_call(self):
        with pytest.raises(UnresolvedTypeError):
            _value("makeContext()")

    def test_unknown_identifier(self):
        with pytest.raises(UnresolvedTypeError):
            _value("other")

    def test_address_of_value(self):
        scopes = ScopeStack()
        scopes.bind("base", BindingKind.VALUE, 0)
        assert _value("&base", scopes) is BindingKind.POINTER

    def test_deref_of_pointer(self):
        scopes = ScopeStack()
        scopes.bind("p", BindingKind.POINTER, 0)
        assert _value("*p", scopes) is BindingKind.VALUE

    def test_type_assertion(self):
        assert _value("v.(c.Context)") is BindingKind.VALUE
