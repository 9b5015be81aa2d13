"""CLI subcommands, registered on the Typer app in ``limepkg.cli.app``."""
