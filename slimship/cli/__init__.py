"""slimship CLI — Typer-based command-line interface.

Provides the ``slimship`` command with subcommands for building and
publishing images, rendering the Containerfile, verifying images,
resolving process configuration, and inspecting recorded runs.

All output uses Rich for formatted terminal display.
"""
