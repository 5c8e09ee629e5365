"""
goctx_rewrite.config
====================

Tuning knobs for the rewriter.  Every name the rewriter looks for or emits
lives here, so the engine itself never hard-codes ``ctx`` or ``context``.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

_log = logging.getLogger(__name__)

# Functions of the context package that return a fresh context.Context.
CONTEXT_CONSTRUCTORS: Tuple[str, ...] = (
    "Background",
    "TODO",
    "WithCancel",
    "WithCancelCause",
    "WithDeadline",
    "WithDeadlineCause",
    "WithTimeout",
    "WithTimeoutCause",
    "WithValue",
    "WithoutCancel",
)


@dataclass
class RewriteConfig:
    """Names and switches used by the rewrite engine."""
    # Placeholder calls, as members of the context package.
    placeholders: Tuple[str, ...] = ("TODO",)
    context_package: str = "context"
    http_package: str = "net/http"
    request_type: str = "Request"
    # Primary / secondary resources.
    primary_name: str = "ctx"
    primary_type: str = "Context"
    secondary_accessor: str = "Context"
    # Detached launch instrumentation.
    instrument_launches: bool = True
    skip_launch_bodies: bool = False
    derived_name: str = "detachedCtx"
    decouple_func: str = "WithoutCancel"
    span_name: str = "span"
    span_label: str = "detached work"
    span_end: str = "End"
    tracer_expr: str = 'otel.Tracer("goctx-rewrite")'
    tracer_import: str = "go.opentelemetry.io/otel"
    # Output.
    dry_run: bool = False
    indent: str = "\t"
    suppress_marker: str = "goctx:ignore"
    skip_dirs: Tuple[str, ...] = ("vendor", "testdata")

    def validate(self) -> List[str]:
        """Return a list of validation warnings (empty if valid)."""
        warnings: List[str] = []
        if not self.placeholders:
            warnings.append("no placeholder functions configured")
        if not self.primary_name.isidentifier():
            warnings.append(f"primary_name {self.primary_name!r} is not an identifier")
        if not self.derived_name.isidentifier():
            warnings.append(f"derived_name {self.derived_name!r} is not an identifier")
        if self.derived_name == self.primary_name:
            warnings.append("derived_name must differ from primary_name")
        if self.span_name in (self.primary_name, self.derived_name):
            warnings.append("span_name collides with a resource name")
        return warnings

    @property
    def tracer_package(self) -> str:
        """Local package name referenced by :attr:`tracer_expr`."""
        return self.tracer_expr.split(".", 1)[0]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RewriteConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                _log.warning("RewriteConfig: ignoring unknown key %r", key)
                continue
            if isinstance(value, list):
                value = tuple(value)
            kwargs[key] = value
        return cls(**kwargs)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RewriteConfig":
        """Load a JSON object whose keys are field names."""
        text = Path(path).read_text(encoding="utf-8")
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"{path}: configuration must be a JSON object")
        return cls.from_dict(data)

    def replace(self, **changes: Any) -> "RewriteConfig":
        return dataclasses.replace(self, **changes)
