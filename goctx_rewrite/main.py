#!/usr/bin/env python3
"""goctx_rewrite/main.py — CLI entry-point for goctx-rewrite.

Usage examples
--------------
    # Replace context.TODO() placeholders and detach goroutines, in place
    goctx-rewrite rewrite ./service

    # Also replace context.Background(); show what would change
    goctx-rewrite rewrite --background --dry-run main.go

    # Placeholders only, leave go statements alone
    goctx-rewrite rewrite --no-instrument ./...

    # List the calls made inside one function
    goctx-rewrite calls handler.go ServeHTTP

Exit codes
----------
    0   Success (including runs that changed nothing).
    1   One or more files could not be parsed or rewritten.
    2   Infrastructure failure (missing path, bad config file).

The module doubles as ``python -m goctx_rewrite`` via the companion
``goctx_rewrite/__main__.py`` which simply calls :func:`main`.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

from goctx_rewrite import __version__
from goctx_rewrite.config import RewriteConfig
from goctx_rewrite.diagnostics import Notice
from goctx_rewrite.driver import list_calls, rewrite_paths
from goctx_rewrite.errors import UnparsableInputError

_log = logging.getLogger("goctx_rewrite")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the root ``goctx_rewrite`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("goctx_rewrite")
    root.setLevel(level)
    root.handlers[:] = [handler]


def _resolve_path(raw: str, label: str = "file") -> Path:
    """Resolve *raw* to an absolute ``Path``, raising on missing files."""
    p = Path(raw).expanduser().resolve()
    if not p.exists():
        _log.error("%s not found: %s", label, p)
        raise SystemExit(EXIT_INFRA)
    return p


def _emit_notices(notices: List[Notice], fmt: str, stream: TextIO) -> int:
    """Write *notices* to *stream* in the chosen format.

    Returns the count of ERROR-severity notices.
    """
    error_count = 0
    for notice in notices:
        if notice.is_error:
            error_count += 1
        if fmt == "json":
            stream.write(notice.to_json_str() + "\n")
        elif fmt == "gcc":
            stream.write(notice.to_gcc_format() + "\n")
        else:
            stream.write(str(notice) + "\n")
    return error_count


def _load_config(args: argparse.Namespace) -> RewriteConfig:
    if args.config:
        path = _resolve_path(args.config, "config file")
        try:
            config = RewriteConfig.from_file(path)
        except (OSError, ValueError) as exc:
            _log.error("cannot load %s: %s", path, exc)
            raise SystemExit(EXIT_INFRA)
    else:
        config = RewriteConfig()

    placeholders = list(config.placeholders)
    if args.background and "Background" not in placeholders:
        placeholders.append("Background")
    overrides = {"placeholders": tuple(placeholders)}
    if args.no_instrument:
        overrides["instrument_launches"] = False
    if args.no_launch_bodies:
        overrides["skip_launch_bodies"] = True
    if args.dry_run:
        overrides["dry_run"] = True
    config = config.replace(**overrides)

    problems = config.validate()
    if problems:
        for problem in problems:
            _log.error("config: %s", problem)
        raise SystemExit(EXIT_INFRA)
    return config


# ===========================================================================
# Sub-command implementations
# ===========================================================================

def cmd_rewrite(args: argparse.Namespace) -> int:
    """Rewrite every ``.go`` file under the given paths."""
    for raw in args.paths:
        _resolve_path(raw, "path")
    config = _load_config(args)

    summary = rewrite_paths(args.paths, config)
    _emit_notices(summary.notices, args.format, sys.stdout)
    if args.format != "json":
        verb = "would change" if config.dry_run else "changed"
        sys.stdout.write(
            f"--- {summary.files} file(s), {summary.changed} {verb}, "
            f"{summary.failed} failed ---\n"
        )
    return EXIT_ERROR if summary.failed else EXIT_OK


def cmd_calls(args: argparse.Namespace) -> int:
    """Print the callees of one function, one per line."""
    path = _resolve_path(args.file)
    try:
        calls = list_calls(path.read_bytes(), args.function)
    except UnparsableInputError as exc:
        _log.error("%s: %s", path, exc.message)
        return EXIT_ERROR
    except KeyError:
        _log.error("%s: no function named %s", path, args.function)
        return EXIT_ERROR
    for name in calls:
        sys.stdout.write(name + "\n")
    return EXIT_OK


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="goctx-rewrite",
        description="Replace context placeholders in Go code with the "
                    "context in scope, and detach goroutine contexts.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              goctx-rewrite rewrite ./service
              goctx-rewrite rewrite --background --dry-run main.go
              goctx-rewrite calls handler.go ServeHTTP
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    # --- rewrite -----------------------------------------------------------
    p_rewrite = subparsers.add_parser(
        "rewrite",
        help="Rewrite Go files in place.",
        description="Replace placeholders and instrument detached launches "
                    "in every .go file under PATH (vendor/, testdata/ and "
                    "hidden directories are skipped).",
    )
    p_rewrite.add_argument("paths", nargs="+", metavar="PATH")
    g = p_rewrite.add_argument_group("placeholders")
    g.add_argument(
        "--todo",
        action="store_true",
        help="Replace context.TODO() (default).",
    )
    g.add_argument(
        "--background",
        action="store_true",
        help="Also replace context.Background().",
    )
    g = p_rewrite.add_argument_group("launches")
    g.add_argument(
        "--no-instrument",
        action="store_true",
        help="Do not instrument go statements.",
    )
    g.add_argument(
        "--no-launch-bodies",
        action="store_true",
        help="Leave the bodies of launched functions untouched.",
    )
    p_rewrite.add_argument(
        "--dry-run",
        action="store_true",
        help="Report changes without writing files.",
    )
    p_rewrite.add_argument(
        "--config",
        default=None,
        metavar="FILE",
        help="JSON file with RewriteConfig fields.",
    )
    p_rewrite.add_argument(
        "-f", "--format",
        choices=["text", "gcc", "json"],
        default="text",
        help="Notice format (default: text).",
    )
    p_rewrite.set_defaults(func=cmd_rewrite)

    # --- calls -------------------------------------------------------------
    p_calls = subparsers.add_parser(
        "calls",
        help="List the calls made in a function.",
    )
    p_calls.add_argument("file", metavar="FILE")
    p_calls.add_argument("function", metavar="FUNC")
    p_calls.set_defaults(func=cmd_calls)

    return parser


# ===========================================================================
# main
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the goctx-rewrite CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
