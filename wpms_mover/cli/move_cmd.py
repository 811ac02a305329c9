"""CLI command handler for moving tenants."""

from __future__ import annotations

import logging
import sys

import click

from wpms_mover.cli.common import (
    SITE_ENV,
    build_context,
    cli,
    common_options,
    handle_exception,
    prepare_run,
)
from wpms_mover.core.mover import MoveResult, TenantMover
from wpms_mover.types import EnvironmentRef
from wpms_mover.utils.logging import log_with_context

# ---------------------------------------------------------------------------
# move subcommand
# ---------------------------------------------------------------------------


@cli.command()
@common_options
@click.argument("source", type=SITE_ENV)
@click.argument("target", type=SITE_ENV)
@click.argument("tenant_ids", nargs=-1, required=True)
@click.option(
    "--max_workers",
    type=click.IntRange(min=1),
    default=None,
    help="Tenants moved in parallel when several ids are given (default from config)",
)
def move(
    source: EnvironmentRef,
    target: EnvironmentRef,
    tenant_ids: tuple[str, ...],
    config: str,
    verbose: bool,
    log_dir: str | None,
    max_workers: int | None,
) -> None:
    """Move multisite tenants (blog ids) from SOURCE to TARGET.

    SOURCE and TARGET are ``site-name.env``. Copies the tenant's tables, its
    wp_blogs row, and its files/sites/<id> directory.
    """
    cfg, output_dir = prepare_run(config, verbose, log_dir, "move")
    log_startup_info(source, target, tenant_ids)

    context = build_context(cfg)
    mover = TenantMover(context, output_dir=output_dir)
    try:
        if len(tenant_ids) == 1:
            mover.move(source, target, tenant_ids[0])
            log_with_context(logging.INFO, "Move completed successfully!")
            return

        results = mover.move_many(source, target, list(tenant_ids), max_workers=max_workers)
        print_move_summary(results)
        if any(not r.succeeded for r in results):
            sys.exit(1)
    except (Exception, KeyboardInterrupt) as e:
        handle_exception(e)
        sys.exit(1)
    finally:
        context.close()


def log_startup_info(
    source: EnvironmentRef, target: EnvironmentRef, tenant_ids: tuple[str, ...]
) -> None:
    log_with_context(logging.INFO, "Starting move with the following parameters:")
    log_with_context(logging.INFO, f"- Source: {source}")
    log_with_context(logging.INFO, f"- Target: {target}")
    log_with_context(logging.INFO, f"- Tenants: {', '.join(tenant_ids)}")


def print_move_summary(results: list[MoveResult]) -> None:
    """Print one line per tenant of a batch move."""
    click.echo("")
    click.echo("Move summary:")
    for result in results:
        if result.succeeded:
            click.echo(f"  {result.tenant}: moved ({len(result.tables)} tables)")
        else:
            phase = f" during {result.failed_phase}" if result.failed_phase else ""
            click.echo(f"  {result.tenant}: FAILED{phase}: {result.error}")
