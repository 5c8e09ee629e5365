"""Entry point for ``python -m goctx_rewrite``."""

from goctx_rewrite.main import main

if __name__ == "__main__":
    raise SystemExit(main())
