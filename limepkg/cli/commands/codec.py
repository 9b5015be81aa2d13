"""``limepkg encode | decode`` — radix-85 text for embedded manifest files."""

from __future__ import annotations

import sys
from pathlib import Path

import typer
from rich.console import Console

from limepkg.core import embedded
from limepkg.errors import EncodingError

console = Console(stderr=True)


def encode_cmd(
    source: Path = typer.Argument(..., help="Binary file to encode."),
) -> None:
    """Print the radix-85 encoding of a file."""
    try:
        data = source.read_bytes()
    except OSError as exc:
        console.print(f"[bold red]Cannot read {source}:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(embedded.encode(data))


def decode_cmd(
    source: Path = typer.Argument(..., help="File holding radix-85 text."),
    output: Path = typer.Option(
        None, "--output", "-o", help="Write decoded bytes here instead of stdout."
    ),
) -> None:
    """Decode radix-85 text back to bytes."""
    try:
        data = embedded.decode(source.read_text(encoding="ascii").strip())
    except (OSError, UnicodeDecodeError) as exc:
        console.print(f"[bold red]Cannot read {source}:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    except EncodingError as exc:
        console.print(f"[bold red]Invalid radix-85 text:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    if output is None:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
    else:
        output.write_bytes(data)
