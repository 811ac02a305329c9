"""
ID-space coordination across the sites of one upstream.

Every site built from an upstream runs its own multisite with its own
``wp_blogs`` auto-increment, so two sites will hand out the same blog_id and
a moved tenant would collide with a local one. The planner probes each
site's current maximum id and gives every site a disjoint block of ids to
allocate new tenants from.

Allocation policy:

* blocks are ``block_size`` wide and handed out in inventory order;
* the first block starts on the first block boundary at or above both
  ``first_block_start`` and every id already in use across the upstream;
* allocations are persisted in a ledger, with or without ``apply``, and never
  reassigned, so re-running only allocates for sites that have none yet;
* with ``apply``, the site's AUTO_INCREMENT is raised to
  ``max(block start, current max + 1)``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from wpms_mover.constants import LEDGER_SCHEMA_VERSION
from wpms_mover.core.context import MoveContext
from wpms_mover.exceptions import CoordinationError, MoverError
from wpms_mover.services.tables import quote_identifier
from wpms_mover.types import EnvironmentRef, TenantInventory
from wpms_mover.utils.logging import log_with_context


@dataclass(frozen=True)
class IdRange:
    """Half-open id block ``[start, end)``."""

    start: int
    end: int

    def __contains__(self, value: int) -> bool:
        return self.start <= value < self.end


@dataclass
class AllocationLedger:
    """Persisted id blocks for one (upstream, stage, table)."""

    upstream: str
    stage: str
    table: str
    block_size: int
    schema_version: int = LEDGER_SCHEMA_VERSION
    allocations: dict[str, IdRange] = field(default_factory=dict)
    created_at: str | None = None
    last_updated: str | None = None

    def next_start(self, floor: int) -> int:
        highest_end = max((r.end for r in self.allocations.values()), default=floor)
        return max(floor, highest_end)

    def allocate(self, site: str, floor: int) -> IdRange:
        """Return the site's block, allocating the next free one if it has none."""
        existing = self.allocations.get(site)
        if existing is not None:
            return existing
        start = self.next_start(floor)
        block = IdRange(start, start + self.block_size)
        self.allocations[site] = block
        return block


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def ledger_path(ledger_dir: Path, upstream: str, stage: str, table: str) -> Path:
    return ledger_dir / f"{upstream}.{stage}.{table}.json"


def load_ledger(path: Path) -> AllocationLedger | None:
    """
    Load an allocation ledger, returning None if none exists yet.

    Raises:
        CoordinationError: If the ledger exists but cannot be read. A
            damaged ledger is never silently replaced, since that would
            hand out ranges that are already in use.
    """
    if not path.exists():
        return None
    try:
        raw = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        raise CoordinationError(f"Failed to read coordination ledger {path}: {e}") from e

    if not isinstance(raw, dict):
        raise CoordinationError(f"Coordination ledger {path} has invalid format")
    version = raw.get("schema_version", 0)
    if version != LEDGER_SCHEMA_VERSION:
        raise CoordinationError(
            f"Coordination ledger schema version {version} != {LEDGER_SCHEMA_VERSION}"
        )
    try:
        return AllocationLedger(
            upstream=raw["upstream"],
            stage=raw["stage"],
            table=raw["table"],
            block_size=int(raw["block_size"]),
            allocations={
                site: IdRange(int(r["start"]), int(r["end"]))
                for site, r in raw.get("allocations", {}).items()
            },
            created_at=raw.get("created_at"),
            last_updated=raw.get("last_updated"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise CoordinationError(f"Coordination ledger {path} is incomplete: {e}") from e


def save_ledger(path: Path, ledger: AllocationLedger) -> None:
    """Atomically save the ledger to disk (write .tmp + rename)."""
    ledger.last_updated = _now_iso()
    if ledger.created_at is None:
        ledger.created_at = ledger.last_updated
    tmp = path.with_suffix(".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(json.dumps(asdict(ledger), indent=2) + "\n")
        tmp.replace(path)
    except OSError as e:
        raise CoordinationError(f"Failed to write coordination ledger {path}: {e}") from e


def _align_up(value: int, block_size: int) -> int:
    return -(-value // block_size) * block_size


@dataclass
class TenantProbe:
    """Probe and allocation outcome for one site."""

    site: str
    env: str
    max_id: int | None = None
    allocation: IdRange | None = None
    auto_increment: int | None = None
    exhausted: bool = False
    applied: bool = False
    error: str | None = None


@dataclass
class CoordinationReport:
    upstream: str
    stage: str
    table: str
    ledger: Path
    probes: list[TenantProbe] = field(default_factory=list)

    @property
    def failed(self) -> list[TenantProbe]:
        return [p for p in self.probes if p.error]


class CoordinationPlanner:
    """Probes an upstream's sites and assigns each a disjoint id block."""

    def __init__(self, context: MoveContext, inventory: TenantInventory) -> None:
        self.context = context
        self.inventory = inventory
        self.settings = context.config.coordination

    def _table_name(self, table: str) -> str:
        return f"{self.context.config.table_prefix}{table}"

    def probe_max_id(self, env: EnvironmentRef, table: str) -> int:
        self.context.wake_cache.ensure_awake(env)
        sql = "SELECT MAX({}) AS max_id FROM {}".format(
            quote_identifier(self.settings.id_column),
            quote_identifier(self._table_name(table)),
        )
        row = self.context.connections.get_connection(env).fetch_one(sql)
        if not row or row.get("max_id") is None:
            return 0
        return int(row["max_id"])

    def _apply(self, env: EnvironmentRef, table: str, value: int) -> None:
        sql = "ALTER TABLE {} AUTO_INCREMENT = {}".format(
            quote_identifier(self._table_name(table)), int(value)
        )
        self.context.connections.get_connection(env).execute(sql)

    def plan(
        self,
        upstream: str,
        stage: str = "dev",
        table: str = "blogs",
        apply: bool = False,
    ) -> CoordinationReport:
        """
        Probe every site of ``upstream`` and allocate id blocks.

        A site whose probe fails is reported with its error and gets no block;
        the remaining sites are still processed.

        Raises:
            CoordinationError: If the ledger cannot be read or written
        """
        path = ledger_path(Path(self.settings.ledger_dir), upstream, stage, table)
        ledger = load_ledger(path) or AllocationLedger(
            upstream=upstream,
            stage=stage,
            table=table,
            block_size=self.settings.block_size,
        )
        if ledger.block_size != self.settings.block_size:
            log_with_context(
                logging.WARNING,
                f"Ledger {path} uses block size {ledger.block_size}, "
                f"keeping it over configured {self.settings.block_size}",
            )

        report = CoordinationReport(upstream=upstream, stage=stage, table=table, ledger=path)
        for site in self.inventory.list_sites(upstream):
            env = EnvironmentRef(site, stage)
            probe = TenantProbe(site=site, env=str(env))
            log_with_context(logging.INFO, f"processing: {site}", env=str(env))
            try:
                probe.max_id = self.probe_max_id(env, table)
            except MoverError as e:
                probe.error = str(e)
                log_with_context(logging.WARNING, f"Skipping {env}: {e}", env=str(env))
            report.probes.append(probe)

        highest = max((p.max_id for p in report.probes if p.max_id is not None), default=0)
        floor = max(
            self.settings.first_block_start,
            _align_up(highest + 1, ledger.block_size),
        )

        for probe in report.probes:
            if probe.error:
                continue
            probe.allocation = ledger.allocate(probe.site, floor)
            probe.auto_increment = max(probe.allocation.start, probe.max_id + 1)
            probe.exhausted = probe.auto_increment >= probe.allocation.end
        save_ledger(path, ledger)

        for probe in report.probes:
            if probe.allocation is None:
                continue
            if probe.exhausted:
                log_with_context(
                    logging.WARNING,
                    f"{probe.env} has used up its block "
                    f"[{probe.allocation.start}, {probe.allocation.end}), max id {probe.max_id}",
                    env=probe.env,
                )
                continue
            if apply:
                try:
                    self._apply(EnvironmentRef(probe.site, stage), table, probe.auto_increment)
                    probe.applied = True
                    log_with_context(
                        logging.INFO,
                        f"Set {self._table_name(table)} AUTO_INCREMENT={probe.auto_increment} on {probe.env}",
                        env=probe.env,
                    )
                except MoverError as e:
                    probe.error = str(e)

        return report
