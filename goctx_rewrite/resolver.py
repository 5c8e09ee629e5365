"""
goctx_rewrite.resolver
======================

Replacement policy for placeholder sites.

For a placeholder at position *pos*, with the current scope frame:

  1. a ``VALUE`` binding of the primary name   → ``ctx``
  2. a ``POINTER`` binding of the primary name → ``*ctx``
  3. an ``ACCESSOR`` binding                   → ``r.Context()``
  4. otherwise the placeholder stays as written.

Inside a detached launch body the primary name is bound to the derived
resource, so rule 1 yields the derived name there.
"""

from __future__ import annotations

from typing import Optional

from goctx_rewrite.bindings import Binding, BindingKind
from goctx_rewrite.config import RewriteConfig
from goctx_rewrite.scope import ScopeStack


class PlaceholderResolver:
    """Picks the binding that replaces a placeholder, if any."""

    def __init__(self, config: RewriteConfig) -> None:
        self.config = config

    def resolve(self, scopes: ScopeStack, pos: Optional[int] = None) -> Optional[Binding]:
        primary = scopes.resolve(self.config.primary_name, at=pos)
        if primary is not None and primary.kind is BindingKind.VALUE:
            return primary
        if primary is not None and primary.kind is BindingKind.POINTER:
            return primary
        return scopes.resolve_kind(BindingKind.ACCESSOR, at=pos)

