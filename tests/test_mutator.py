# tests/test_mutator.py
"""
Tests for node-anchored edits: splicing, conflicts, and re-parse validation.
"""

import pytest

from goctx_rewrite.errors import InvalidOutputError, MutationConflictError
from goctx_rewrite.go_ast import find_function, iter_calls, parse_go
from goctx_rewrite.mutator import Edit, TreeMutator, render_node, splice
from tests.conftest import go

SOURCE = go("""
    package main

    func f() {
    	a(b(1))
    }
""")


@pytest.fixture
def calls():
    data = SOURCE.encode()
    root = parse_go(data).root_node
    body = find_function(root, "f").child_by_field_name("body")
    outer, inner = list(iter_calls(body))
    return data, outer, inner


class TestSplice:

    def test_insertions_keep_recorded_order(self):
        edits = [Edit(1, 1, "x", 0), Edit(1, 1, "y", 1)]
        assert splice(b"ab", edits) == b"axyb"

    def test_insertion_before_replacement_at_same_point(self):
        edits = [Edit(0, 1, "Z", 0), Edit(0, 0, "<", 1)]
        assert splice(b"ab", edits) == b"<Zb"

    def test_slice(self):
        assert splice(b"abcdef", [Edit(2, 3, "C", 0)], 1, 4) == b"bCd"


class TestTreeMutator:

    def test_no_edits_returns_source(self, calls):
        data, _, _ = calls
        assert TreeMutator(data).apply() is data

    def test_replace_and_insert(self, calls):
        data, outer, inner = calls
        m = TreeMutator(data)
        m.replace(inner, "c()")
        m.insert_before(outer, "defer ")
        assert b"\tdefer a(c())\n" in m.apply()
        assert len(m) == 2

    def test_overlapping_replacements_conflict(self, calls):
        data, outer, inner = calls
        m = TreeMutator(data, "f.go")
        m.replace(outer, "x()")
        m.replace(inner, "y()")
        with pytest.raises(MutationConflictError) as info:
            m.apply()
        assert info.value.location.file == "f.go"

    def test_insertion_inside_replacement_conflicts(self, calls):
        data, outer, inner = calls
        m = TreeMutator(data)
        m.replace(outer, "x()")
        m.insert_before(inner, "z")
        with pytest.raises(MutationConflictError):
            m.check_conflicts()

    def test_validate_rejects_broken_output(self, calls):
        data, outer, _ = calls
        m = TreeMutator(data)
        m.replace(outer, "a(")
        with pytest.raises(InvalidOutputError):
            m.validate(m.apply())

    def test_render_node(self, calls):
        data, outer, inner = calls
        assert render_node(data, outer, [(inner, "b(2)")]) == "a(b(2))"
