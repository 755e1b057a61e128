"""Console entrypoint for `jmap-mail-import`."""

from __future__ import annotations

from jmap_mail_import.cli.app import app


def main() -> int:
    """Run the Typer CLI application.

    Returns:
        Process exit code.
    """
    app()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
