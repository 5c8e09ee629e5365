# tests/test_callgraph.py
"""
Tests for launch-site discovery and the skip set.
"""

from goctx_rewrite.callgraph import (
    UseKind, build_callgraph, instrumentation_prefix, marker_statement,
)
from goctx_rewrite.config import RewriteConfig
from goctx_rewrite.go_ast import FunctionIdentity, block_statements, find_function
from tests.conftest import NAMED_LAUNCH_REWRITTEN, go, parse_root

SOURCE = go("""
    package main

    type S struct{}

    func (s *S) loop() {}

    func launchedOnly() {}

    func both() {}

    func syncOnly() {}

    func asValue() {}

    func main() {
    	s := &S{}
    	go s.loop()
    	go launchedOnly()
    	both()
    	go both()
    	syncOnly()
    	register(asValue)
    	go func() {
    		tick()
    	}()
    }
""")


def _graph(src=SOURCE):
    return build_callgraph(parse_root(src), RewriteConfig())


class TestSkipSet:

    def test_launch_only_functions(self):
        skip = _graph().skip_set
        assert FunctionIdentity("launchedOnly") in skip
        assert FunctionIdentity("loop", "*S") in skip

    def test_sync_uses_exclude(self):
        skip = _graph().skip_set
        assert FunctionIdentity("both") not in skip
        assert FunctionIdentity("syncOnly") not in skip
        assert FunctionIdentity("asValue") not in skip

    def test_unused_function_is_not_skipped(self):
        assert not _graph().is_skipped(FunctionIdentity("main"))

    def test_use_kinds(self):
        uses = _graph().uses_of(FunctionIdentity("both"))
        assert sorted(u.kind.value for u in uses) == ["launch", "sync"]

    def test_launch_sites(self):
        graph = _graph()
        assert len(graph.launches) == 4
        inline = [site for site in graph.launches if site.is_inline]
        assert len(inline) == 1
        assert inline[0].line == 23

    def test_wrapper_forward_counts_as_launch(self):
        graph = _graph(NAMED_LAUNCH_REWRITTEN)
        uses = graph.uses_of(FunctionIdentity("worker"))
        assert [u.kind for u in uses] == [UseKind.LAUNCH]
        assert graph.is_skipped(FunctionIdentity("worker"))

    def test_ambiguous_method_is_not_resolved(self):
        src = go("""
            package main

            type A struct{}
            type B struct{}

            func (a A) run() {}
            func (b B) run() {}

            func main() {
            	go x.run()
            }
        """)
        assert _graph(src).skip_set == frozenset()

    def test_package_qualified_callee_is_external(self):
        src = go("""
            package main

            import (
            	"context"

            	srv "example.com/server"
            )

            type S struct{}

            func (s *S) Serve(ctx context.Context) {}

            func main() {
            	go srv.Serve(context.TODO())
            }
        """)
        graph = _graph(src)
        assert graph.uses_of(FunctionIdentity("Serve", "*S")) == []
        assert graph.skip_set == frozenset()

    def test_receiver_selector_still_resolves(self):
        src = go("""
            package main

            import "example.com/server"

            type S struct{}

            func (s *S) Serve() {}

            func main() {
            	s := &S{}
            	go s.Serve()
            	server.Run()
            }
        """)
        assert _graph(src).skip_set == frozenset({FunctionIdentity("Serve", "*S")})


class TestMarker:

    def test_marker_and_prefix(self):
        root = parse_root(NAMED_LAUNCH_REWRITTEN)
        handle = find_function(root, "handle")
        go_stmt = block_statements(handle.child_by_field_name("body"))[0]
        literal = go_stmt.named_children[0].child_by_field_name("function")
        body = literal.child_by_field_name("body")
        config = RewriteConfig()
        assert marker_statement(body, config) is not None
        assert len(instrumentation_prefix(body, config)) == 3

    def test_no_marker(self):
        root = parse_root(SOURCE)
        body = find_function(root, "main").child_by_field_name("body")
        assert marker_statement(body, RewriteConfig()) is None
