"""
Terminus adapter: environment lookup, wake, and upstream inventory.

Wraps the ``terminus`` CLI. Site metadata is fetched per call and never cached
here; the only caches live on the move context.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from wpms_mover.exceptions import MoverError
from wpms_mover.types import ConnectionInfo, EnvironmentRef, TerminusConnectionInfo
from wpms_mover.utils.logging import log_with_context
from wpms_mover.utils.process import CancelToken, ProcessResult, run_command


class TerminusClient:
    """Environment lookup and tenant inventory backed by the terminus CLI."""

    def __init__(
        self,
        executable: str = "terminus",
        token: CancelToken | None = None,
        wake_timeout: float | None = None,
        lookup_timeout: float | None = None,
    ) -> None:
        self.executable = executable
        self.token = token or CancelToken()
        self.wake_timeout = wake_timeout
        self.lookup_timeout = lookup_timeout

    def _run(self, *args: str, timeout: float | None = None) -> ProcessResult:
        return run_command(
            [self.executable, *args], token=self.token.with_timeout(timeout)
        ).check()

    def _run_json(self, *args: str) -> Any:
        result = self._run(*args, timeout=self.lookup_timeout)
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise MoverError(
                f"Could not parse terminus {args[0]} output as JSON: {e}"
            ) from e

    def wake(self, env: EnvironmentRef) -> None:
        """Wake a (possibly idle) environment. Output is discarded."""
        self._run("env:wake", str(env), timeout=self.wake_timeout)

    def site_uuid(self, site: str) -> str:
        result = self._run("site:info", site, "--field=id", timeout=self.lookup_timeout)
        uuid = result.stdout.strip()
        if not uuid:
            raise MoverError(f"terminus returned no id for site '{site}'")
        return uuid

    def connection_info(self, env: EnvironmentRef) -> ConnectionInfo:
        """Fetch database and sftp connection details for an environment."""
        data: TerminusConnectionInfo = self._run_json(
            "connection:info", str(env), "--format=json"
        )
        if not isinstance(data, dict) or "mysql_host" not in data:
            raise MoverError(f"terminus returned no database connection info for {env}")
        log_with_context(
            logging.DEBUG,
            f"Resolved {env} database at {data['mysql_host']}:{data.get('mysql_port')}",
            env=str(env),
        )
        return ConnectionInfo.from_terminus(data, self.site_uuid(env.site))

    def list_sites(self, upstream: str) -> list[str]:
        """Return the names of every site using an upstream, in listing order."""
        data = self._run_json(
            "site:list", f"--upstream={upstream}", "--fields=name", "--format=json"
        )
        # terminus keys the listing by site id; older releases return a plain list
        rows = data.values() if isinstance(data, dict) else data
        names = []
        for row in rows:
            if isinstance(row, dict):
                name = row.get("name") or row.get("Name")
            else:
                name = row
            if name:
                names.append(str(name))
        return names
