"""
goctx_rewrite.driver
====================

Per-file pipeline and the multi-file run.

    read → parse → walk (scope, resolve, launch) → splice → re-parse → write

A file whose edits cannot be applied safely is left byte-for-byte as it
was read; the failure becomes an error notice and the run moves on to the
next file.  Files are written atomically (temporary file in the same
directory, then :func:`os.replace`).
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Union

from goctx_rewrite.config import RewriteConfig
from goctx_rewrite.diagnostics import Notice, NoticeReporter, SourceLocation
from goctx_rewrite.errors import InternalError, RewriteError, UnparsableInputError
from goctx_rewrite.go_ast import expr_to_string, find_function, iter_calls, parse_go
from goctx_rewrite.mutator import TreeMutator
from goctx_rewrite.walker import ScopeWalker

_log = logging.getLogger(__name__)


@dataclass
class RewriteResult:
    """Outcome of rewriting one source unit."""
    path: str
    source: bytes
    output: bytes
    notices: List[Notice] = field(default_factory=list)
    error: Optional[RewriteError] = None

    @property
    def changed(self) -> bool:
        return self.output != self.source

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def text(self) -> str:
        return self.output.decode("utf-8")


@dataclass
class RunSummary:
    """Totals over a multi-file run."""
    results: List[RewriteResult] = field(default_factory=list)

    @property
    def files(self) -> int:
        return len(self.results)

    @property
    def changed(self) -> int:
        return sum(1 for r in self.results if r.changed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def notices(self) -> List[Notice]:
        return [n for r in self.results for n in r.notices]


def _as_bytes(source: Union[str, bytes]) -> bytes:
    return source.encode("utf-8") if isinstance(source, str) else source


def rewrite_source(
    source: Union[str, bytes],
    path: str = "<memory>",
    config: Optional[RewriteConfig] = None,
) -> RewriteResult:
    """Rewrite one Go source unit in memory."""
    config = config or RewriteConfig()
    data = _as_bytes(source)
    reporter = NoticeReporter(path)

    try:
        tree = parse_go(data, path)
    except UnparsableInputError as exc:
        _log.warning("%s", exc)
        reporter.error(exc.location.line, exc.message)
        return RewriteResult(path, data, data, reporter.notices, exc)

    mutator = TreeMutator(data, path)
    try:
        ScopeWalker(tree, data, config, reporter, mutator, path).run()
        output = mutator.apply()
        if output != data:
            mutator.validate(output)
    except RewriteError as exc:
        _log.warning("%s", exc)
        reporter.discard_changes()
        reporter.error(exc.location.line, exc.message)
        return RewriteResult(path, data, data, reporter.notices, exc)

    _log.debug("%s: %d edit(s)", path, len(mutator))
    return RewriteResult(path, data, output, reporter.notices)


def write_atomic(path: Path, data: bytes) -> None:
    """Replace *path* with *data* without a window of partial content."""
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        shutil.copymode(str(path), tmp)
        os.replace(tmp, str(path))
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def rewrite_file(path: Union[str, Path],
                 config: Optional[RewriteConfig] = None) -> RewriteResult:
    """Rewrite one file in place (unless ``config.dry_run``)."""
    config = config or RewriteConfig()
    path = Path(path)
    result = rewrite_source(path.read_bytes(), str(path), config)
    if result.changed and not config.dry_run:
        write_atomic(path, result.output)
        _log.info("rewrote %s", path)
    return result


def iter_go_files(paths: Iterable[Union[str, Path]],
                  skip_dirs: Sequence[str] = ("vendor", "testdata")) -> Iterator[Path]:
    """Expand files and directories to the ``.go`` files beneath them."""
    for raw in paths:
        root = Path(raw)
        if root.is_file():
            yield root
            continue
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(
                d for d in dirnames if d not in skip_dirs and not d.startswith(".")
            )
            for name in sorted(filenames):
                if name.endswith(".go"):
                    yield Path(dirpath) / name


def _failed_result(path: Path, error: RewriteError) -> RewriteResult:
    reporter = NoticeReporter(str(path))
    reporter.error(error.location.line, error.message)
    return RewriteResult(str(path), b"", b"", reporter.notices, error)


def rewrite_paths(paths: Iterable[Union[str, Path]],
                  config: Optional[RewriteConfig] = None) -> RunSummary:
    """Rewrite every ``.go`` file under *paths*.

    A failure in one file is recorded in its result and never stops the
    run; the remaining files are still processed.
    """
    config = config or RewriteConfig()
    summary = RunSummary()
    for path in iter_go_files(paths, config.skip_dirs):
        try:
            summary.results.append(rewrite_file(path, config))
        except OSError as exc:
            _log.error("%s: %s", path, exc)
            error = RewriteError(str(exc), SourceLocation(file=str(path)), cause=exc)
            summary.results.append(_failed_result(path, error))
        except Exception as exc:
            _log.error("%s: unexpected failure: %s", path, exc, exc_info=True)
            error = InternalError(f"unexpected failure: {exc}",
                                  SourceLocation(file=str(path)), cause=exc)
            summary.results.append(_failed_result(path, error))
    return summary


def list_calls(source: Union[str, bytes], func_name: str) -> List[str]:
    """Callee names of every call inside function *func_name*.

    Raises :class:`UnparsableInputError` for unparsable input and
    :class:`KeyError` when the function is not declared.
    """
    tree = parse_go(_as_bytes(source))
    decl = find_function(tree.root_node, func_name)
    if decl is None:
        raise KeyError(func_name)
    names = []
    for call in iter_calls(decl.child_by_field_name("body")):
        name = expr_to_string(call.child_by_field_name("function"))
        if name:
            names.append(name)
    return names
