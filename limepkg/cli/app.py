"""Main Typer application — imports and registers all CLI commands.

Entry point: ``limepkg`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer

from limepkg.cli.commands.archive import inspect_cmd, pack_cmd, verify_cmd
from limepkg.cli.commands.codec import decode_cmd, encode_cmd
from limepkg.config import config

app = typer.Typer(
    name="limepkg",
    help="limepkg: build, inspect and verify Lime package archives.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="inspect", help="Show an archive's manifest and file index.")(inspect_cmd)
app.command(name="verify", help="Check every file hash in an archive.")(verify_cmd)
app.command(name="pack", help="Build an archive from a manifest and a directory.")(pack_cmd)
app.command(name="encode", help="Radix-85 encode a file for embedding.")(encode_cmd)
app.command(name="decode", help="Decode radix-85 text back to bytes.")(decode_cmd)


def main() -> None:
    """CLI entry point."""
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app()


if __name__ == "__main__":
    main()
