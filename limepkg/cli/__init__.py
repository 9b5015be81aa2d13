"""limepkg command-line interface (Typer).

Provides the ``limepkg`` command with subcommands for packing, inspecting
and verifying archives, and for radix-85 encoding of embedded files.

All output uses Rich for formatted terminal display.
"""
