"""Command line interface (`completion-import`, `python -m completion_import.cli`)."""

from __future__ import annotations


def main(argv: list[str] | None = None) -> int:
    from .__main__ import main as _main

    return _main(argv)


__all__ = ["main"]
