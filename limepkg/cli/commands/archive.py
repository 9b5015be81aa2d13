"""``limepkg inspect | verify | pack`` — work with package archives."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from limepkg.core.archive import PackageArchive, write_archive
from limepkg.core.hasher import sha256_hex
from limepkg.core.serialization import manifest_from_yaml
from limepkg.errors import LimePackageError

console = Console()


def _open(path: Path) -> PackageArchive:
    if not path.exists():
        console.print(f"[bold red]Archive not found:[/bold red] {path}")
        raise typer.Exit(code=1)
    try:
        return PackageArchive.from_path(path)
    except LimePackageError as exc:
        console.print(f"[bold red]Invalid archive:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc


def inspect_cmd(
    archive: Path = typer.Argument(..., help="Path to a .lime package archive."),
) -> None:
    """Show the manifest and file index of an archive."""
    with _open(archive) as pkg:
        manifest = pkg.manifest
        console.print(f"[bold cyan]{manifest.name}[/bold cyan] {manifest.version}")
        if manifest.metadata.description:
            console.print(manifest.metadata.description)
        if manifest.metadata.architectures:
            console.print(
                "Architectures: "
                + ", ".join(a.value for a in manifest.metadata.architectures)
            )

        if manifest.dependencies:
            deps = Table(title="Dependencies")
            deps.add_column("Relation")
            deps.add_column("Package", style="cyan")
            deps.add_column("Constraint", style="green")
            for dep in manifest.dependencies:
                deps.add_row(dep.relationship.value, dep.name, dep.constraint)
            console.print(deps)

        files = Table(title=f"Files ({pkg.compression.value})")
        files.add_column("Path", style="cyan")
        files.add_column("Type")
        files.add_column("Size", justify="right")
        files.add_column("Stored", justify="right")
        files.add_column("Common", justify="center")
        for entry, f in zip(pkg.index.files, manifest.files):
            files.add_row(
                f.path,
                f.type.value,
                str(entry.size),
                str(entry.compressed_size),
                "[green]Yes[/green]" if f.is_common else "No",
            )
        console.print(files)

        if manifest.plugins:
            console.print("Plugins: " + ", ".join(manifest.plugin_names))


def verify_cmd(
    archive: Path = typer.Argument(..., help="Path to a .lime package archive."),
) -> None:
    """Read every file of an archive and check sizes and SHA-256 hashes."""
    with _open(archive) as pkg:
        try:
            pkg.verify()
        except LimePackageError as exc:
            console.print(f"[bold red]Verification failed:[/bold red] {exc}")
            raise typer.Exit(code=1) from exc
        console.print(
            f"[green]OK[/green] {pkg.manifest.identity}: {len(pkg.paths)} file(s) verified"
        )


def pack_cmd(
    manifest_path: Path = typer.Argument(..., help="Manifest YAML file."),
    source_dir: Path = typer.Argument(..., help="Directory holding the package files."),
    output: Path = typer.Option(..., "--output", "-o", help="Archive to write."),
    compress: bool = typer.Option(
        True, "--compress/--no-compress", help="zlib-compress file payloads."
    ),
) -> None:
    """Build an archive from a manifest and a directory of files.

    Each manifest path ``/etc/app.conf`` is read from ``SOURCE_DIR/etc/app.conf``.
    Files without a ``hash`` get one computed from their contents.
    """
    try:
        manifest = manifest_from_yaml(manifest_path.read_bytes())
    except OSError as exc:
        console.print(f"[bold red]Cannot read manifest:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    except LimePackageError as exc:
        console.print(f"[bold red]Invalid manifest:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    payloads: dict[str, bytes] = {}
    files = []
    for f in manifest.files:
        source = source_dir / f.path.lstrip("/")
        try:
            data = source.read_bytes()
        except OSError as exc:
            console.print(f"[bold red]Missing file for {f.path}:[/bold red] {exc}")
            raise typer.Exit(code=1) from exc
        payloads[f.path] = data
        files.append(f if f.sha256 else f.model_copy(update={"sha256": sha256_hex(data)}))
    manifest = manifest.model_copy(update={"files": files})

    try:
        written = write_archive(output, manifest, payloads, compress=compress)
    except LimePackageError as exc:
        console.print(f"[bold red]Cannot build archive:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    console.print(
        f"[green]Packed[/green] {manifest.identity} -> {written} "
        f"({written.stat().st_size} bytes)"
    )
