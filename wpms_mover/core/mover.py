"""
Tenant move orchestration.

A move runs strictly in order: wake both environments, discover the tenant's
tables, copy them, copy the routing row, then get and put the tenant's files.
Each phase must finish before the next begins. A failure stops the move and
leaves earlier phases in place; re-running is safe because the table copy
replaces and the file copy is checksummed.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Sequence

from wpms_mover.core.context import MoveContext
from wpms_mover.exceptions import MoverError, PreconditionError
from wpms_mover.services.file_sync import ManifestFileSync, SyncResult
from wpms_mover.services.tables import TableTransferEngine
from wpms_mover.types import EnvironmentRef, RoutingRow, TenantId, normalize_tenant_id
from wpms_mover.utils.logging import (
    log_with_context,
    remove_handler,
    setup_tenant_logger,
)


@dataclass
class MoveResult:
    """What one tenant move accomplished."""

    tenant: str
    source: str
    dest: str
    tables: list[str] = field(default_factory=list)
    routing_row: RoutingRow | None = None
    files: list[SyncResult] = field(default_factory=list)
    failed_phase: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class TenantMover:
    """Moves tenants between environments using one MoveContext."""

    def __init__(self, context: MoveContext, output_dir: str | None = None) -> None:
        self.context = context
        self.output_dir = output_dir
        self.tables = TableTransferEngine(
            context.config, context.connections, context.lookup.connection_info
        )
        self.files = ManifestFileSync(
            context.config,
            context.lookup.connection_info,
            wake=context.wake_cache.ensure_awake,
            token=context.token,
        )

    @contextmanager
    def _phase(self, result: MoveResult, name: str) -> Iterator[None]:
        log_with_context(logging.DEBUG, f"Starting phase: {name}", tenant=result.tenant, phase=name)
        try:
            yield
        except BaseException:
            result.failed_phase = name
            log_with_context(
                logging.ERROR, f"Phase '{name}' failed", tenant=result.tenant, phase=name
            )
            raise

    def move(
        self, source: EnvironmentRef, dest: EnvironmentRef, tenant_id: TenantId
    ) -> MoveResult:
        """
        Move one tenant from ``source`` to ``dest``.

        Raises:
            PreconditionError: If the tenant has no tables or no routing row at
                the source; raised before anything is written at ``dest``
            TransportError: If a dump, import, or rsync step fails
        """
        tenant = normalize_tenant_id(tenant_id)
        if source == dest:
            raise PreconditionError(f"Source and destination are both {source}")

        result = MoveResult(tenant=tenant, source=str(source), dest=str(dest))
        self._run_phases(result, source, dest)
        return result

    def _run_phases(
        self, result: MoveResult, source: EnvironmentRef, dest: EnvironmentRef
    ) -> None:
        tenant = result.tenant
        handler = setup_tenant_logger(self.output_dir, tenant) if self.output_dir else None
        config = self.context.config
        try:
            log_with_context(
                logging.INFO, f"Moving tenant {tenant} from {source} to {dest}", tenant=tenant
            )
            with self._phase(result, "wake"):
                self.context.wake_cache.ensure_awake(source)
                self.context.wake_cache.ensure_awake(dest)

            with self._phase(result, "discover"):
                result.tables = self.tables.discover_tables(source, tenant)
                if not result.tables:
                    raise PreconditionError(
                        f"Tenant {tenant} has no tables on {source}"
                    )
                if self.tables.fetch_routing_row(source, tenant) is None:
                    raise PreconditionError(
                        f"Tenant {tenant} has no row in {config.directory_table_name} on {source}"
                    )

            with self._phase(result, "tables"):
                self.tables.transfer_tables(
                    source,
                    dest,
                    result.tables,
                    token=self.context.token.with_timeout(config.timeouts.table_transfer),
                    tenant=tenant,
                )

            with self._phase(result, "routing row"):
                result.routing_row = self.tables.transfer_routing_row(source, dest, tenant)

            with self._phase(result, "files get"):
                result.files.append(self.files.get(source, tenant))
            with self._phase(result, "files put"):
                result.files.append(self.files.put(dest, tenant))

            log_with_context(logging.INFO, f"Tenant {tenant} moved to {dest}", tenant=tenant)
        finally:
            if handler is not None:
                remove_handler(handler)

    def _move_recording_errors(
        self, source: EnvironmentRef, dest: EnvironmentRef, tenant_id: TenantId
    ) -> MoveResult:
        result = MoveResult(tenant=str(tenant_id), source=str(source), dest=str(dest))
        try:
            result.tenant = normalize_tenant_id(tenant_id)
            if source == dest:
                raise PreconditionError(f"Source and destination are both {source}")
            self._run_phases(result, source, dest)
        except MoverError as e:
            log_with_context(
                logging.ERROR, f"Move of tenant {tenant_id} failed: {e}", tenant=result.tenant
            )
            result.error = str(e)
        return result

    def move_many(
        self,
        source: EnvironmentRef,
        dest: EnvironmentRef,
        tenant_ids: Sequence[TenantId],
        max_workers: int | None = None,
    ) -> list[MoveResult]:
        """
        Move several tenants, up to ``max_workers`` at a time.

        A failed tenant is recorded in its MoveResult and does not stop the
        others. Results are returned in input order.
        """
        workers = max_workers or self.context.config.max_workers
        if workers <= 1 or len(tenant_ids) <= 1:
            return [self._move_recording_errors(source, dest, t) for t in tenant_ids]

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tenant")
        try:
            futures = [
                executor.submit(self._move_recording_errors, source, dest, t)
                for t in tenant_ids
            ]
            return [future.result() for future in futures]
        except KeyboardInterrupt:
            self.context.token.cancel()
            raise
        finally:
            executor.shutdown(wait=True)
