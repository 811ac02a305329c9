"""
Table transfer for one multisite tenant.

A tenant's tables share the ``{prefix}{blog_id}_`` name prefix. They are
discovered at the source, streamed with ``mysqldump | mysql`` into the
destination, and then the tenant's row in the directory table (``wp_blogs``)
is copied with REPLACE semantics so that a re-run overwrites rather than
duplicates it.
"""

from __future__ import annotations

import logging
import os
from typing import Callable

from wpms_mover.core.config import MoverConfig
from wpms_mover.core.connections import ConnectionRegistry
from wpms_mover.exceptions import PreconditionError, TransportError
from wpms_mover.types import (
    ConnectionInfo,
    EnvironmentRef,
    RoutingRow,
    TenantId,
    normalize_tenant_id,
)
from wpms_mover.utils.logging import log_with_context
from wpms_mover.utils.process import CancelToken, run_pipeline


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value only matches itself."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def table_pattern(prefix: str, tenant_id: str) -> str:
    """LIKE pattern matching exactly the tables of one tenant (``wp\\_5\\_%``)."""
    return f"{escape_like(prefix)}{escape_like(tenant_id)}\\_%"


def belongs_to_tenant(table: str, prefix: str, tenant_id: str) -> bool:
    """True if ``table`` is one of the tenant's tables, e.g. ``wp_5_posts`` for tenant 5."""
    marker = f"{prefix}{tenant_id}_"
    return table.startswith(marker) and len(table) > len(marker)


def quote_identifier(name: str) -> str:
    """Backtick-quote a MySQL identifier."""
    return "`" + name.replace("`", "``") + "`"


def _connection_args(info: ConnectionInfo) -> list[str]:
    return [
        f"--host={info.mysql_host}",
        f"--port={info.mysql_port}",
        f"--user={info.mysql_username}",
    ]


def _child_env(info: ConnectionInfo) -> dict[str, str]:
    # Keeps the password out of the process table
    env = dict(os.environ)
    env["MYSQL_PWD"] = info.mysql_password
    return env


class TableTransferEngine:
    """Discovers and copies one tenant's tables and routing row."""

    def __init__(
        self,
        config: MoverConfig,
        connections: ConnectionRegistry,
        connection_info: Callable[[EnvironmentRef], ConnectionInfo],
    ) -> None:
        self.config = config
        self.connections = connections
        self.connection_info = connection_info

    def discover_tables(self, source: EnvironmentRef, tenant_id: TenantId) -> list[str]:
        """
        List the tenant's tables at the source, in catalog order.

        Returns:
            The table names; an empty list means the tenant has no tables at source
        """
        tenant = normalize_tenant_id(tenant_id)
        pattern = table_pattern(self.config.table_prefix, tenant)
        rows = self.connections.get_connection(source).fetch_all(
            "SHOW TABLES LIKE %s", (pattern,)
        )

        tables = []
        for row in rows:
            name = next(iter(row.values()))
            if belongs_to_tenant(name, self.config.table_prefix, tenant):
                tables.append(name)

        if tables:
            log_with_context(
                logging.INFO,
                f"Found {len(tables)} tables for tenant {tenant} on {source}",
                tenant=tenant,
            )
        else:
            log_with_context(
                logging.WARNING,
                f"No tables matching {pattern} on {source}",
                tenant=tenant,
            )
        return tables

    def build_dump_command(self, info: ConnectionInfo, tables: list[str]) -> list[str]:
        """mysqldump argv scoped to exactly ``tables``."""
        if not tables:
            # mysqldump with no table names dumps the whole database
            raise PreconditionError("Refusing to dump an empty table set")
        return [
            self.config.mysqldump_path,
            "--column-statistics=0",
            "--single-transaction",
            *_connection_args(info),
            info.mysql_database,
            *tables,
        ]

    def build_import_command(self, info: ConnectionInfo) -> list[str]:
        return [
            self.config.mysql_path,
            "--no-auto-rehash",
            *_connection_args(info),
            info.mysql_database,
        ]

    def transfer_tables(
        self,
        source: EnvironmentRef,
        dest: EnvironmentRef,
        tables: list[str],
        token: CancelToken | None = None,
        tenant: str | None = None,
    ) -> None:
        """
        Stream the tables from ``source`` into ``dest`` with one dump | import pipe.

        Raises:
            PreconditionError: If ``tables`` is empty
            TransportError: If either tool exits non-zero
        """
        source_info = self.connection_info(source)
        dest_info = self.connection_info(dest)
        dump = self.build_dump_command(source_info, tables)
        load = self.build_import_command(dest_info)

        log_with_context(
            logging.INFO,
            f"Copying {len(tables)} database tables from {source} to {dest}",
            tenant=tenant,
        )
        result = run_pipeline(
            dump,
            load,
            token=token,
            producer_env=_child_env(source_info),
            consumer_env=_child_env(dest_info),
        )

        failed = result.failure()
        if failed is not None:
            log_with_context(
                logging.ERROR,
                f"{failed.tool} exited with status {failed.returncode}",
                tenant=tenant,
                tool=failed.tool,
                stderr=failed.stderr,
            )
            raise TransportError(failed.tool, failed.returncode, failed.stderr)

        log_with_context(logging.INFO, "Database tables copied", tenant=tenant)

    def fetch_routing_row(
        self, source: EnvironmentRef, tenant_id: TenantId
    ) -> RoutingRow | None:
        tenant = normalize_tenant_id(tenant_id)
        sql = "SELECT * FROM {} WHERE {} = %s".format(
            quote_identifier(self.config.directory_table_name),
            quote_identifier(self.config.directory_key),
        )
        return self.connections.get_connection(source).fetch_one(sql, (tenant,))

    def transfer_routing_row(
        self, source: EnvironmentRef, dest: EnvironmentRef, tenant_id: TenantId
    ) -> RoutingRow:
        """
        Copy the tenant's directory row, replacing any row with the same key.

        Raises:
            PreconditionError: If the tenant has no directory row at the source
        """
        tenant = normalize_tenant_id(tenant_id)
        row = self.fetch_routing_row(source, tenant)
        if not row:
            raise PreconditionError(
                f"Tenant {tenant} has no row in {self.config.directory_table_name} on {source}"
            )

        columns = list(row.keys())
        sql = "REPLACE INTO {} ({}) VALUES ({})".format(
            quote_identifier(self.config.directory_table_name),
            ", ".join(quote_identifier(c) for c in columns),
            ", ".join(["%s"] * len(columns)),
        )
        self.connections.get_connection(dest).execute(
            sql, tuple(row[c] for c in columns)
        )
        log_with_context(
            logging.INFO,
            f"Registered tenant {tenant} in {self.config.directory_table_name} on {dest}",
            tenant=tenant,
        )
        return row
