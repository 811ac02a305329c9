"""CLI command handler for ID coordination across an upstream's sites."""

from __future__ import annotations

import sys

import click

from wpms_mover.cli.common import (
    build_context,
    cli,
    common_options,
    handle_exception,
    prepare_run,
)
from wpms_mover.core.context import MoveContext
from wpms_mover.core.coordination import CoordinationPlanner, CoordinationReport
from wpms_mover.services.terminus import TerminusClient
from wpms_mover.types import TenantInventory


def build_inventory(context: MoveContext) -> TenantInventory:
    return TerminusClient(
        executable=context.config.terminus_path,
        token=context.token,
        lookup_timeout=context.config.timeouts.lookup,
    )


# ---------------------------------------------------------------------------
# coordinate subcommand
# ---------------------------------------------------------------------------


@cli.command()
@common_options
@click.argument("upstream")
@click.option("--env", "stage", default="dev", show_default=True, help="Environment of every site to coordinate")
@click.option("--table", default="blogs", show_default=True, help="Table (without prefix) whose ids are coordinated")
@click.option(
    "--apply",
    is_flag=True,
    default=False,
    help="Raise each site's AUTO_INCREMENT into its block (blocks are recorded either way)",
)
def coordinate(
    upstream: str,
    stage: str,
    table: str,
    apply: bool,
    config: str,
    verbose: bool,
    log_dir: str | None,
) -> None:
    """Assign disjoint id blocks to every site built from UPSTREAM."""
    cfg, _ = prepare_run(config, verbose, log_dir, "coordinate")
    context = build_context(cfg)
    try:
        planner = CoordinationPlanner(context, build_inventory(context))
        report = planner.plan(upstream, stage=stage, table=table, apply=apply)
        print_coordination_report(report)
        if report.failed:
            sys.exit(1)
    except (Exception, KeyboardInterrupt) as e:
        handle_exception(e)
        sys.exit(1)
    finally:
        context.close()


def print_coordination_report(report: CoordinationReport) -> None:
    click.echo("")
    click.echo(
        f"ID coordination for {report.upstream} ({report.stage}, {report.table}), ledger {report.ledger}"
    )
    for probe in report.probes:
        if probe.error:
            click.echo(f"  {probe.env}: ERROR {probe.error}")
            continue
        block = probe.allocation
        status = "exhausted" if probe.exhausted else ("applied" if probe.applied else "planned")
        click.echo(
            f"  {probe.env}: max id {probe.max_id}, block [{block.start}, {block.end}), "
            f"next id {probe.auto_increment} ({status})"
        )
