"""CLI error handling."""

from __future__ import annotations

from pathlib import Path

import typer

from riglm.config import ConfigError, RiglmConfig, load_config


def handle_error(msg: str) -> None:
    """Print an error message and exit."""
    typer.echo(f"Error: {msg}", err=True)
    raise typer.Exit(1)


def load_config_or_exit(path: Path) -> RiglmConfig:
    """load_config() with config problems reported as a CLI error."""
    try:
        return load_config(path)
    except ConfigError as e:
        handle_error(str(e))
        raise  # unreachable: handle_error always exits
