# tests/conftest.py
"""
Shared fixtures for goctx-rewrite tests.

Go sources are kept as module constants so individual test modules can
import them (``from tests.conftest import ...``) and as fixtures where a
parsed tree is more convenient.
"""

import textwrap

import pytest

from goctx_rewrite.config import RewriteConfig
from goctx_rewrite.driver import rewrite_source
from goctx_rewrite.go_ast import parse_go


def go(src: str) -> str:
    """Dedent a triple-quoted Go source and drop the leading newline."""
    return textwrap.dedent(src).lstrip("\n")


def rewrite(src: str, **overrides) -> str:
    """Rewrite *src* and return the resulting text."""
    config = RewriteConfig().replace(**overrides) if overrides else RewriteConfig()
    result = rewrite_source(src, "test.go", config)
    assert result.error is None, result.error
    return result.text


def rewrite_result(src: str, **overrides):
    config = RewriteConfig().replace(**overrides) if overrides else RewriteConfig()
    return rewrite_source(src, "test.go", config)


def parse_root(src: str):
    return parse_go(src.encode("utf-8"), "test.go").root_node


# ---------------------------------------------------------------------------
# Go sources
# ---------------------------------------------------------------------------

HANDLER_WITH_PARAM = go("""
    package main

    import "context"

    func handle(ctx context.Context) {
    	call(context.TODO())
    }
""")

HTTP_HANDLER = go("""
    package main

    import (
    	"context"
    	"net/http"
    )

    func handler(w http.ResponseWriter, r *http.Request) {
    	call(context.TODO())
    }
""")

INLINE_LAUNCH = go("""
    package main

    import "context"

    func handle(ctx context.Context) {
    	go func() {
    		work(context.TODO())
    		log(ctx)
    	}()
    }
""")

INLINE_LAUNCH_REWRITTEN = go("""
    package main

    import "context"
    import "go.opentelemetry.io/otel"

    func handle(ctx context.Context) {
    	go func() {
    		detachedCtx := context.WithoutCancel(ctx)
    		detachedCtx, span := otel.Tracer("goctx-rewrite").Start(detachedCtx, "detached work")
    		defer span.End()
    		work(detachedCtx)
    		log(detachedCtx)
    	}()
    }
""")

NAMED_LAUNCH = go("""
    package main

    import (
    	"context"
    )

    func worker(ctx context.Context, n int) {
    	use(context.TODO())
    }

    func handle(ctx context.Context) {
    	go worker(ctx, 1)
    }
""")

NAMED_LAUNCH_REWRITTEN = go("""
    package main

    import (
    	"context"
    	"go.opentelemetry.io/otel"
    )

    func worker(ctx context.Context, n int) {
    	use(context.TODO())
    }

    func handle(ctx context.Context) {
    	go func() {
    		detachedCtx := context.WithoutCancel(ctx)
    		detachedCtx, span := otel.Tracer("goctx-rewrite").Start(detachedCtx, "detached work")
    		defer span.End()
    		worker(detachedCtx, 1)
    	}()
    }
""")


@pytest.fixture
def default_config():
    return RewriteConfig()


@pytest.fixture
def go_file(tmp_path):
    """Write a Go source into a temporary directory and return its path."""
    def _write(src: str, name: str = "main.go"):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(src, encoding="utf-8")
        return path
    return _write
