"""goctx_rewrite — scope-aware context placeholder rewriting for Go.

Replaces ``context.TODO()`` placeholders with the context actually in scope
and gives goroutines a context detached from the caller's cancellation.

Submodules
----------
go_ast
    tree-sitter front end: parsing, node helpers, imports, declarations.

bindings, scope
    Resource bindings and the lexical scope stack.

type_oracle
    Syntactic answer to "is this name a context, a pointer to one, or a
    request?".

callgraph
    Launch sites and the skip set of functions that only run detached.

resolver, walker, launch
    Placeholder replacement policy, the scope walk, and ``go`` statement
    instrumentation.

mutator
    Node-anchored edits, conflict detection and re-parse validation.

driver, main
    Per-file pipeline, multi-file runs, and the ``goctx-rewrite`` CLI.

Usage
-----
Command-line::

    goctx-rewrite rewrite ./service
    python -m goctx_rewrite rewrite --dry-run main.go

Programmatic::

    from goctx_rewrite import RewriteConfig, rewrite_source

    result = rewrite_source(src, config=RewriteConfig(placeholders=("TODO",)))
    print(result.text)
"""

from __future__ import annotations

__version__: str = "0.1.0"

from goctx_rewrite.config import RewriteConfig  # noqa: E402
from goctx_rewrite.driver import (  # noqa: E402
    RewriteResult,
    RunSummary,
    list_calls,
    rewrite_file,
    rewrite_paths,
    rewrite_source,
)

__all__: list[str] = [
    "__version__",
    "RewriteConfig",
    "RewriteResult",
    "RunSummary",
    "list_calls",
    "rewrite_file",
    "rewrite_paths",
    "rewrite_source",
]
