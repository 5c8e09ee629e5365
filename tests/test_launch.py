# tests/test_launch.py
"""
Detached launches: instrumentation of ``go`` statements, promotion of named
launches, the skip set, and idempotence.
"""

import pytest

from goctx_rewrite.diagnostics import NoticeKind, NoticeSeverity
from tests.conftest import (
    INLINE_LAUNCH, INLINE_LAUNCH_REWRITTEN,
    NAMED_LAUNCH, NAMED_LAUNCH_REWRITTEN,
    go, rewrite, rewrite_result,
)

PREFIX = (
    "detachedCtx := context.WithoutCancel({source})\n"
    "{indent}detachedCtx, span := otel.Tracer(\"goctx-rewrite\").Start(detachedCtx, \"detached work\")\n"
    "{indent}defer span.End()\n"
)


def prefix(source: str, indent: str = "\t\t") -> str:
    return indent + PREFIX.format(source=source, indent=indent)


class TestInlineLaunch:

    def test_inline_body_is_instrumented(self):
        assert rewrite(INLINE_LAUNCH) == INLINE_LAUNCH_REWRITTEN

    def test_notices(self):
        result = rewrite_result(INLINE_LAUNCH)
        kinds = [n.kind for n in result.notices]
        assert NoticeKind.INSTRUMENTED in kinds
        assert NoticeKind.IMPORTED in kinds
        assert kinds.count(NoticeKind.REPLACED) == 1
        assert kinds.count(NoticeKind.RENAMED) == 1

    def test_shadowing_inside_body(self):
        src = go("""
            package main

            import "context"

            func handle(ctx context.Context) {
            	go func() {
            		if ok {
            			ctx := context.Background()
            			use(context.TODO())
            		}
            		use(ctx)
            	}()
            }
        """)
        out = rewrite(src)
        assert "\t\t\tctx := context.Background()\n\t\t\tuse(ctx)\n" in out
        assert "\t\tuse(detachedCtx)\n" in out

    def test_pointer_source(self):
        src = go("""
            package main

            import "context"

            func handle(ctx *context.Context) {
            	go func() {
            		use(context.TODO())
            		use(*ctx)
            		store(ctx)
            	}()
            }
        """)
        out = rewrite(src)
        assert prefix("*ctx") in out
        assert "\t\tuse(detachedCtx)\n\t\tuse(detachedCtx)\n" in out
        assert "\t\tstore(&detachedCtx)\n" in out

    def test_accessor_source(self):
        src = go("""
            package main

            import (
            	"context"
            	"net/http"
            )

            func handler(w http.ResponseWriter, r *http.Request) {
            	go func() {
            		use(context.TODO())
            	}()
            }
        """)
        out = rewrite(src)
        assert prefix("r.Context()") in out
        assert "\t\tuse(detachedCtx)\n" in out
        assert '\t"go.opentelemetry.io/otel"\n)' in out

    def test_no_source_leaves_launch_unchanged(self):
        src = go("""
            package main

            import "context"

            func handle() {
            	go func() {
            		use(context.TODO())
            	}()
            }
        """)
        assert rewrite(src) == src

    def test_body_without_references_is_not_instrumented(self):
        src = go("""
            package main

            import "context"

            func handle(ctx context.Context) {
            	go func() {
            		tick()
            	}()
            }
        """)
        assert rewrite(src) == src

    def test_literal_with_ctx_parameter_is_reported(self):
        src = go("""
            package main

            import "context"

            func handle(ctx context.Context) {
            	go func(ctx context.Context) {
            		use(context.TODO())
            	}(ctx)
            }
        """)
        result = rewrite_result(src)
        assert "detachedCtx" not in result.text
        assert "\t\tuse(ctx)\n" in result.text
        assert any(n.severity == NoticeSeverity.WARNING for n in result.notices)

    def test_keyed_field_not_renamed(self):
        src = go("""
            package main

            import "context"

            func handle(ctx context.Context) {
            	go func() {
            		run(Job{ctx: ctx})
            	}()
            }
        """)
        assert "\t\trun(Job{ctx: detachedCtx})\n" in rewrite(src)

    def test_nested_launch_derives_from_derived(self):
        src = go("""
            package main

            import "context"

            func handle(ctx context.Context) {
            	go func() {
            		go func() {
            			use(ctx)
            		}()
            	}()
            }
        """)
        out = rewrite(src)
        assert "\t\tdetachedCtx := context.WithoutCancel(ctx)\n" in out
        assert "\t\t\tdetachedCtx := context.WithoutCancel(detachedCtx)\n" in out
        assert "\t\t\tuse(detachedCtx)\n" in out

    def test_suppressed_launch(self):
        src = go("""
            package main

            import "context"

            func handle(ctx context.Context) {
            	// goctx:ignore
            	go func() {
            		use(ctx)
            	}()
            }
        """)
        assert rewrite(src) == src

    def test_body_declaring_span_is_left_unchanged(self):
        src = go("""
            package main

            import "context"

            func handle(ctx context.Context) {
            	go func() {
            		span := 1
            		use(ctx, span)
            	}()
            }
        """)
        result = rewrite_result(src)
        assert result.text == src
        skipped = [n for n in result.notices if n.kind is NoticeKind.SKIPPED]
        assert len(skipped) == 1
        assert "already uses span" in skipped[0].message

    def test_body_using_outer_derived_name_is_left_unchanged(self):
        src = go("""
            package main

            import "context"

            func handle(ctx context.Context, detachedCtx context.Context) {
            	go func() {
            		use(ctx, detachedCtx)
            	}()
            }
        """)
        result = rewrite_result(src)
        assert result.text == src
        assert result.notices[0].severity is NoticeSeverity.WARNING


class TestNamedLaunch:

    def test_promoted_to_wrapper(self):
        assert rewrite(NAMED_LAUNCH) == NAMED_LAUNCH_REWRITTEN

    def test_notices(self):
        result = rewrite_result(NAMED_LAUNCH)
        promoted = [n for n in result.notices if n.kind is NoticeKind.PROMOTED]
        assert len(promoted) == 1
        assert promoted[0].original == "worker(ctx, 1)"
        assert promoted[0].replacement == "worker(detachedCtx, 1)"

    def test_sync_and_launch_use(self):
        src = go("""
            package main

            import "context"

            func worker(ctx context.Context) {
            	use(context.TODO())
            }

            func handle(ctx context.Context) {
            	worker(ctx)
            	go worker(ctx)
            }
        """)
        out = rewrite(src)
        # worker also runs synchronously, so its own body is rewritten
        assert "\tuse(ctx)\n" in out
        assert "\tworker(ctx)\n" in out
        assert "\t\tworker(detachedCtx)\n\t}()\n" in out

    def test_launch_without_context_arguments(self):
        src = go("""
            package main

            import "context"

            func tick(n int) {}

            func handle(ctx context.Context) {
            	tick(1)
            	go tick(2)
            }
        """)
        assert rewrite(src) == src

    def test_placeholder_argument_is_forwarded(self):
        src = go("""
            package main

            import "context"

            func worker(ctx context.Context) {}

            func handle(ctx context.Context) {
            	go worker(context.TODO())
            }
        """)
        assert "\t\tworker(detachedCtx)\n" in rewrite(src)

    def test_pointer_argument_is_forwarded(self):
        src = go("""
            package main

            import "context"

            func worker(ctx *context.Context, c context.Context) {}

            func handle(ctx *context.Context) {
            	go worker(ctx, *ctx)
            }
        """)
        out = rewrite(src)
        assert "\t\tdetachedCtx := context.WithoutCancel(*ctx)\n" in out
        assert "\t\tworker(&detachedCtx, detachedCtx)\n" in out

    def test_method_launch(self):
        src = go("""
            package main

            import "context"

            type S struct{}

            func (s *S) loop(ctx context.Context) {}

            func handle(ctx context.Context, s *S) {
            	go s.loop(ctx)
            }
        """)
        assert "\t\ts.loop(detachedCtx)\n" in rewrite(src)

    def test_unknown_launch_shape(self):
        src = go("""
            package main

            import "context"

            func handle(ctx context.Context) {
            	go fns[0](ctx)
            }
        """)
        result = rewrite_result(src)
        assert result.text == src
        skipped = [n for n in result.notices if n.kind is NoticeKind.SKIPPED]
        assert len(skipped) == 1
        assert skipped[0].location.line == 6


    @pytest.mark.parametrize("arg", ["<-ch", "next()", "n + 1", "items[i]"])
    def test_argument_with_effects_is_not_promoted(self, arg):
        src = go("""
            package main

            import "context"

            func worker(ctx context.Context, v int) {}

            func handle(ctx context.Context) {
            	go worker(ctx, ARG)
            }
        """).replace("ARG", arg)
        result = rewrite_result(src)
        assert result.text == src
        skipped = [n for n in result.notices if n.kind is NoticeKind.SKIPPED]
        assert len(skipped) == 1
        assert skipped[0].location.line == 8

    def test_deferrable_arguments_are_promoted(self):
        src = go("""
            package main

            import "context"

            func worker(ctx context.Context, a int, b *int, c string) {}

            func handle(ctx context.Context, job Job) {
            	go worker(ctx, job.ID, &n, "x")
            }
        """)
        assert "\t\tworker(detachedCtx, job.ID, &n, \"x\")\n\t}()\n" in rewrite(src)

    def test_argument_using_span_name_is_not_promoted(self):
        src = go("""
            package main

            import "context"

            func worker(ctx context.Context, s Span) {}

            func handle(ctx context.Context, span Span) {
            	go worker(ctx, span)
            }
        """)
        result = rewrite_result(src)
        assert result.text == src
        assert "already use span" in result.notices[0].message

    def test_closure_argument_redeclaring_ctx(self):
        src = go("""
            package main

            import "context"

            func worker(ctx context.Context, f func()) {}

            func handle(ctx context.Context) {
            	go worker(ctx, func() { ctx := other(); use(ctx) })
            }
        """)
        out = rewrite(src)
        assert "\t\tworker(detachedCtx, func() { ctx := other(); use(ctx) })\n" in out

    def test_closure_argument_without_redeclaration_is_forwarded(self):
        src = go("""
            package main

            import "context"

            func worker(ctx context.Context, f func()) {}

            func handle(ctx context.Context) {
            	go worker(ctx, func() { use(ctx) })
            }
        """)
        out = rewrite(src)
        assert "\t\tworker(detachedCtx, func() { use(detachedCtx) })\n" in out

    def test_imported_method_name_does_not_skip_local_method(self):
        src = go("""
            package main

            import (
            	"context"

            	srv "example.com/server"
            )

            type S struct{}

            func (s *S) Serve(ctx context.Context) {
            	use(context.TODO())
            }

            func handle(ctx context.Context) {
            	go srv.Serve(ctx)
            }
        """)
        out = rewrite(src)
        assert "\tuse(ctx)\n" in out
        assert "\t\tsrv.Serve(detachedCtx)\n" in out


class TestIdempotence:

    @pytest.mark.parametrize("src", [INLINE_LAUNCH, NAMED_LAUNCH])
    def test_second_run_changes_nothing(self, src):
        once = rewrite(src)
        assert rewrite(once) == once

    def test_existing_imports_are_reused(self):
        src = go("""
            package main

            import (
            	"context"

            	"go.opentelemetry.io/otel"
            )

            func handle(ctx context.Context) {
            	go func() {
            		use(ctx)
            	}()
            }
        """)
        result = rewrite_result(src)
        assert not any(n.kind is NoticeKind.IMPORTED for n in result.notices)
        assert result.text.count('"go.opentelemetry.io/otel"') == 1


class TestLaunchOptions:

    def test_instrumentation_disabled(self):
        out = rewrite(INLINE_LAUNCH, instrument_launches=False)
        assert "detachedCtx" not in out
        assert "\t\twork(ctx)\n" in out
        assert "otel" not in out

    def test_launch_bodies_skipped(self):
        src = go("""
            package main

            import "context"

            func worker(ctx context.Context) {
            	use(context.TODO())
            }

            func handle(ctx context.Context) {
            	go worker(context.TODO())
            	go func() {
            		use(context.TODO())
            	}()
            }
        """)
        out = rewrite(src, skip_launch_bodies=True)
        assert "\tgo worker(ctx)\n" in out
        assert "\tuse(context.TODO())\n" in out
        assert "\t\tuse(context.TODO())\n" in out
        assert "detachedCtx" not in out
