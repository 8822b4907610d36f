"""Module entry point: python -m crossed_paths ..."""

from __future__ import annotations

from crossed_paths.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
