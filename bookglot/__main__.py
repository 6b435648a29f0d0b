"""Module entrypoint for running bookglot as ``python -m bookglot``."""

from __future__ import annotations

from bookglot.cli import main


if __name__ == "__main__":
    main()
