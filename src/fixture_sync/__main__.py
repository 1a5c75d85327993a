"""Module entrypoint for ``python -m fixture_sync``."""

from __future__ import annotations

from fixture_sync.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
