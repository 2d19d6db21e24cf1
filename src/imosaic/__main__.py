"""Module entrypoint for `python -m imosaic`."""

from __future__ import annotations

from imosaic.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
