"""CLI command handlers for tenant file transfer and removal."""

from __future__ import annotations

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
from wpms_mover.core.context import MoveContext
from wpms_mover.services.file_sync import ManifestFileSync
from wpms_mover.types import EnvironmentRef


def _file_sync(context: MoveContext) -> ManifestFileSync:
    return ManifestFileSync(
        context.config,
        context.lookup.connection_info,
        wake=context.wake_cache.ensure_awake,
        token=context.token,
    )


# ---------------------------------------------------------------------------
# sync-files subcommand
# ---------------------------------------------------------------------------


@cli.command("sync-files")
@common_options
@click.argument("source", type=SITE_ENV)
@click.argument("target", type=SITE_ENV)
@click.argument("tenant_id")
def sync_files(
    source: EnvironmentRef,
    target: EnvironmentRef,
    tenant_id: str,
    config: str,
    verbose: bool,
    log_dir: str | None,
) -> None:
    """Copy a tenant's files from SOURCE to TARGET (get, then put)."""
    cfg, _ = prepare_run(config, verbose, log_dir, "sync_files")
    context = build_context(cfg)
    try:
        _file_sync(context).sync(source, target, tenant_id)
    except (Exception, KeyboardInterrupt) as e:
        handle_exception(e)
        sys.exit(1)
    finally:
        context.close()


# ---------------------------------------------------------------------------
# get-files subcommand
# ---------------------------------------------------------------------------


@cli.command("get-files")
@common_options
@click.argument("source", type=SITE_ENV)
@click.argument("tenant_id")
def get_files(
    source: EnvironmentRef,
    tenant_id: str,
    config: str,
    verbose: bool,
    log_dir: str | None,
) -> None:
    """Download a tenant's files from SOURCE into the local staging area."""
    cfg, _ = prepare_run(config, verbose, log_dir, "get_files")
    context = build_context(cfg)
    try:
        result = _file_sync(context).get(source, tenant_id)
        click.echo(f"Manifest: {result.manifest}")
    except (Exception, KeyboardInterrupt) as e:
        handle_exception(e)
        sys.exit(1)
    finally:
        context.close()


# ---------------------------------------------------------------------------
# put-files subcommand
# ---------------------------------------------------------------------------


@cli.command("put-files")
@common_options
@click.argument("target", type=SITE_ENV)
@click.argument("tenant_id")
def put_files(
    target: EnvironmentRef,
    tenant_id: str,
    config: str,
    verbose: bool,
    log_dir: str | None,
) -> None:
    """Upload a tenant's staged files to TARGET."""
    cfg, _ = prepare_run(config, verbose, log_dir, "put_files")
    context = build_context(cfg)
    try:
        result = _file_sync(context).put(target, tenant_id)
        click.echo(f"Manifest: {result.manifest}")
    except (Exception, KeyboardInterrupt) as e:
        handle_exception(e)
        sys.exit(1)
    finally:
        context.close()


# ---------------------------------------------------------------------------
# delete-files subcommand
# ---------------------------------------------------------------------------


@cli.command("delete-files")
@common_options
@click.argument("env", type=SITE_ENV)
@click.argument("tenant_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
def delete_files(
    env: EnvironmentRef,
    tenant_id: str,
    config: str,
    verbose: bool,
    log_dir: str | None,
    yes: bool,
) -> None:
    """Delete every file of a tenant on ENV. This cannot be undone."""
    cfg, _ = prepare_run(config, verbose, log_dir, "delete_files")

    if not yes:
        if not click.confirm(
            f"This will permanently delete {cfg.remote_files_root}/{tenant_id} on {env}. Continue?"
        ):
            click.echo("Delete cancelled.")
            sys.exit(0)

    context = build_context(cfg)
    try:
        _file_sync(context).delete(env, tenant_id)
    except (Exception, KeyboardInterrupt) as e:
        handle_exception(e)
        sys.exit(1)
    finally:
        context.close()
