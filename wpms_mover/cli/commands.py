#!/usr/bin/env python3
"""
Main execution module for the multisite tenant mover.

Importing the subcommand modules registers them on the click group.
"""

from pathlib import Path
from typing import NoReturn

import click

import wpms_mover.cli.coordinate_cmd  # noqa: F401
import wpms_mover.cli.files_cmd  # noqa: F401
import wpms_mover.cli.move_cmd  # noqa: F401
from wpms_mover.cli.common import cli, handle_exception
from wpms_mover.core.config import create_default_config

__all__ = ["cli", "handle_exception", "main"]


@cli.command("init-config")
@click.argument("path", default="wpms-mover.yaml")
def init_config(path: str) -> None:
    """Write a default config file to PATH (never overwrites)."""
    if not create_default_config(Path(path)):
        raise SystemExit(1)
    click.echo(f"Wrote {path}")


def main() -> NoReturn:
    """Entry point for the ``wpms-mover`` console script."""
    cli()


if __name__ == "__main__":
    main()
