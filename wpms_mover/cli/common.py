"""Shared CLI infrastructure: option decorators, parameter types, error handlers, and the CLI group."""

from __future__ import annotations

import datetime
import logging
import os
from pathlib import Path
from typing import Callable

import click

import wpms_mover
from wpms_mover.core.config import MoverConfig, load_config
from wpms_mover.core.context import MoveContext
from wpms_mover.exceptions import (
    InvalidEnvironmentError,
    MoverError,
    OperationCancelledError,
    PreconditionError,
    TransportError,
)
from wpms_mover.types import EnvironmentRef
from wpms_mover.utils.logging import log_with_context, setup_logger

# Create logger instance
logger = logging.getLogger("wpms_mover")


# ---------------------------------------------------------------------------
# Parameter types
# ---------------------------------------------------------------------------


class EnvironmentRefType(click.ParamType):
    """Click parameter accepting ``site-name.env``."""

    name = "site.env"

    def convert(self, value, param, ctx):
        if isinstance(value, EnvironmentRef):
            return value
        try:
            return EnvironmentRef.parse(value)
        except InvalidEnvironmentError as e:
            self.fail(str(e), param, ctx)


SITE_ENV = EnvironmentRefType()


# ---------------------------------------------------------------------------
# Shared option decorator
# ---------------------------------------------------------------------------


def common_options(f: Callable[..., None]) -> Callable[..., None]:
    """Decorator that adds options shared across subcommands.

    Args:
        f: The Click command function to decorate.

    Returns:
        The decorated function with common options attached.
    """
    f = click.option(
        "--config",
        default="wpms-mover.yaml",
        show_default=True,
        help="Path to config YAML",
    )(f)
    f = click.option(
        "--verbose",
        "-v",
        is_flag=True,
        default=False,
        help="Enable verbose console logging (shows DEBUG level messages)",
    )(f)
    f = click.option(
        "--log_dir",
        default=None,
        help="Write move.log and per-tenant logs under a timestamped run directory here",
    )(f)
    return f


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(version=wpms_mover.__version__, prog_name="wpms-mover")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Move WordPress multisite tenants between Pantheon environments.

    Args:
        ctx: The Click context (injected by ``@click.pass_context``).
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ---------------------------------------------------------------------------
# Run setup
# ---------------------------------------------------------------------------


def create_output_directory(log_dir: str, command: str) -> str:
    """Create a timestamped run directory for log files.

    Returns:
        The path to the newly created output directory.
    """
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    output_dir = os.path.join(log_dir, f"{command}_{timestamp}")
    os.makedirs(os.path.join(output_dir, "tenant_logs"), exist_ok=True)
    return output_dir


def prepare_run(
    config: str, verbose: bool, log_dir: str | None, command: str
) -> tuple[MoverConfig, str | None]:
    """Set up logging and load configuration for a subcommand.

    Returns:
        The loaded configuration and the run's output directory (if any).
    """
    output_dir = create_output_directory(log_dir, command) if log_dir else None
    setup_logger(verbose, output_dir)
    if output_dir:
        log_with_context(logging.INFO, f"Output directory: {output_dir}")
    return load_config(Path(config)), output_dir


def build_context(cfg: MoverConfig) -> MoveContext:
    return MoveContext.create(cfg)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


def handle_exception(e: BaseException) -> None:
    """Handle different types of exceptions.

    Args:
        e: The exception to handle.
    """
    if isinstance(e, TransportError):
        log_with_context(logging.ERROR, str(e), tool=e.tool, stderr=e.stderr)
        log_with_context(
            logging.INFO,
            "Re-running the command is safe: tables are replaced and files are checksummed.",
        )
    elif isinstance(e, PreconditionError):
        log_with_context(logging.ERROR, f"Cannot move tenant: {e}")
    elif isinstance(e, OperationCancelledError):
        log_with_context(logging.ERROR, str(e))
        log_with_context(
            logging.INFO, "Partially transferred files are kept; re-run to resume."
        )
    elif isinstance(e, MoverError):
        log_with_context(logging.ERROR, str(e))
    elif isinstance(e, FileNotFoundError):
        log_with_context(logging.ERROR, f"File not found: {e}")
    elif isinstance(e, KeyboardInterrupt):
        log_with_context(logging.WARNING, "Interrupted by user.")
        log_with_context(
            logging.INFO, "Child processes were stopped; re-run the command to resume."
        )
    else:
        log_with_context(logging.ERROR, f"Move failed: {e}", exc_info=True)
