"""Process-wide registry of database handles, one per environment."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

import pymysql
import pymysql.cursors

from wpms_mover.exceptions import QueryError
from wpms_mover.types import ConnectionInfo, EnvironmentLookup, EnvironmentRef
from wpms_mover.utils.logging import log_with_context


class DatabaseHandle:
    """A pymysql connection that reports failed statements instead of crashing.

    Failures are logged as warnings and raised as QueryError, which batch
    callers catch per tenant and move on. Statements are serialized with a
    lock because pymysql connections are not thread-safe.
    """

    def __init__(self, env: str, connection: Any) -> None:
        self.env = env
        self._conn = connection
        self._lock = threading.RLock()

    def _run(self, sql: str, params: Any, fetch: str | None) -> Any:
        with self._lock:
            try:
                with self._conn.cursor() as cursor:
                    cursor.execute(sql, params)
                    if fetch == "all":
                        return list(cursor.fetchall())
                    if fetch == "one":
                        return cursor.fetchone()
                    return cursor.rowcount
            except pymysql.Error as e:
                log_with_context(
                    logging.WARNING,
                    f"Query failed on {self.env}: {e}",
                    env=self.env,
                    stderr=sql,
                )
                raise QueryError(f"Query failed on {self.env}: {e}") from e

    def fetch_all(self, sql: str, params: Any = None) -> list[dict[str, Any]]:
        return self._run(sql, params, "all")

    def fetch_one(self, sql: str, params: Any = None) -> dict[str, Any] | None:
        return self._run(sql, params, "one")

    def execute(self, sql: str, params: Any = None) -> int:
        """Run a statement and return the affected row count."""
        return self._run(sql, params, None)

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except pymysql.Error as e:
                log_with_context(
                    logging.DEBUG, f"Error closing connection to {self.env}: {e}"
                )


def open_mysql_connection(info: ConnectionInfo) -> Any:
    """Open a pymysql connection from Terminus connection info."""
    return pymysql.connect(
        host=info.mysql_host,
        port=info.mysql_port,
        user=info.mysql_username,
        password=info.mysql_password,
        database=info.mysql_database,
        charset="utf8mb4",
        cursorclass=pymysql.cursors.DictCursor,
        autocommit=True,
    )


class ConnectionRegistry:
    """Lazily opens and caches one DatabaseHandle per environment."""

    def __init__(
        self,
        lookup: EnvironmentLookup,
        connector: Callable[[ConnectionInfo], Any] = open_mysql_connection,
    ) -> None:
        self._lookup = lookup
        self._connector = connector
        self._handles: dict[str, DatabaseHandle] = {}
        self._lock = threading.Lock()

    def get_connection(self, env: EnvironmentRef) -> DatabaseHandle:
        """
        Return the cached handle for ``env``, opening it on first use.

        Raises:
            QueryError: If the connection cannot be opened
        """
        key = str(env)
        with self._lock:
            handle = self._handles.get(key)
            if handle is not None:
                return handle

            info = self._lookup.connection_info(env)
            try:
                connection = self._connector(info)
            except pymysql.Error as e:
                log_with_context(
                    logging.WARNING, f"Could not connect to {key}: {e}", env=key
                )
                raise QueryError(f"Could not connect to {key}: {e}") from e

            handle = DatabaseHandle(key, connection)
            self._handles[key] = handle
            log_with_context(logging.DEBUG, f"Opened database connection to {key}", env=key)
            return handle

    def close_all(self) -> None:
        with self._lock:
            for handle in self._handles.values():
                handle.close()
            self._handles.clear()
