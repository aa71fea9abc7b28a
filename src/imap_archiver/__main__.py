"""Console entrypoint for `imap-archiver`."""

from __future__ import annotations

from imap_archiver.cli.app import app


def main() -> int:
    """Run the Typer CLI application.

    Returns:
        Process exit code.
    """
    app(prog_name="imap-archiver")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
