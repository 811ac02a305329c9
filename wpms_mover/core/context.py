"""Move context.

MoveContext is a frozen dataclass that owns the state shared by every
operation of one CLI invocation: the loaded configuration, the environment
lookup, the wake memo, the database handles, and the cancellation token.
It is created once and passed to each component instead of living in
module-level globals.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from wpms_mover.core.config import MoverConfig
from wpms_mover.core.connections import ConnectionRegistry, open_mysql_connection
from wpms_mover.core.wake import EnvironmentWakeCache
from wpms_mover.services.terminus import TerminusClient
from wpms_mover.types import ConnectionInfo, EnvironmentLookup
from wpms_mover.utils.process import CancelToken


@dataclass(frozen=True)
class MoveContext:
    """Shared state for one run. Created once, passed everywhere."""

    config: MoverConfig
    lookup: EnvironmentLookup
    wake_cache: EnvironmentWakeCache
    connections: ConnectionRegistry
    token: CancelToken

    @classmethod
    def create(
        cls,
        config: MoverConfig,
        lookup: EnvironmentLookup | None = None,
        token: CancelToken | None = None,
        connector: Callable[[ConnectionInfo], Any] = open_mysql_connection,
    ) -> MoveContext:
        """Build a context, defaulting the lookup to the terminus CLI."""
        token = token or CancelToken()
        if lookup is None:
            lookup = TerminusClient(
                executable=config.terminus_path,
                token=token,
                wake_timeout=config.timeouts.wake,
                lookup_timeout=config.timeouts.lookup,
            )
        return cls(
            config=config,
            lookup=lookup,
            wake_cache=EnvironmentWakeCache(lookup.wake, ttl=config.wake_ttl),
            connections=ConnectionRegistry(lookup, connector=connector),
            token=token,
        )

    def close(self) -> None:
        """Release database handles."""
        self.connections.close_all()
