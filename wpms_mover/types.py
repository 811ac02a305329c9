"""Shared type definitions for the multisite tenant mover.

Provides the value types passed between the orchestrator and its services:
environment references, connection metadata from Terminus, and the
collaborator protocols the core depends on.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Protocol, TypedDict, Union

from wpms_mover.exceptions import InvalidEnvironmentError, InvalidTenantError

_TENANT_ID_RE = re.compile(r"^[A-Za-z0-9]+$")

TenantId = Union[str, int]

# One row of the multisite directory table (wp_blogs), column -> value
RoutingRow = dict[str, Any]


# ---------------------------------------------------------------------------
# Terminus JSON shapes
# ---------------------------------------------------------------------------


class TerminusConnectionInfo(TypedDict, total=False):
    """Subset of ``terminus connection:info --format=json`` output."""

    mysql_host: str
    mysql_port: int
    mysql_database: str
    mysql_username: str
    mysql_password: str
    mysql_command: str
    sftp_command: str
    sftp_host: str
    sftp_username: str


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnvironmentRef:
    """A (site, stage) pair such as ``mysite.live``."""

    site: str
    stage: str

    @classmethod
    def parse(cls, value: str) -> EnvironmentRef:
        """Parse ``site.env`` into an EnvironmentRef.

        Raises:
            InvalidEnvironmentError: If the value is not exactly two
                non-empty dot-separated parts.
        """
        parts = value.strip().split(".")
        if len(parts) != 2 or not all(parts):
            raise InvalidEnvironmentError(
                f"Environment must be in the form 'site-name.env', got '{value}'"
            )
        return cls(site=parts[0], stage=parts[1])

    def __str__(self) -> str:
        return f"{self.site}.{self.stage}"


@dataclass(frozen=True)
class ConnectionInfo:
    """How to reach one environment's database and file endpoints."""

    mysql_host: str
    mysql_port: int
    mysql_database: str
    mysql_username: str
    mysql_password: str = field(repr=False)
    site_uuid: str
    sftp_command: str = ""

    @classmethod
    def from_terminus(
        cls, data: TerminusConnectionInfo, site_uuid: str
    ) -> ConnectionInfo:
        return cls(
            mysql_host=data.get("mysql_host", ""),
            mysql_port=int(data.get("mysql_port", 3306)),
            mysql_database=data.get("mysql_database", "pantheon"),
            mysql_username=data.get("mysql_username", "pantheon"),
            mysql_password=data.get("mysql_password", ""),
            site_uuid=site_uuid,
            sftp_command=data.get("sftp_command", ""),
        )


def normalize_tenant_id(tenant_id: TenantId) -> str:
    """Return the tenant id as a string safe for table patterns and paths.

    Raises:
        InvalidTenantError: If the id contains anything but letters and digits.
    """
    value = str(tenant_id).strip()
    if not _TENANT_ID_RE.match(value):
        raise InvalidTenantError(
            f"Tenant id must be alphanumeric, got '{tenant_id}'"
        )
    return value


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------


class EnvironmentLookup(Protocol):
    """Resolves environments to connection metadata and wakes them."""

    def connection_info(self, env: EnvironmentRef) -> ConnectionInfo: ...

    def wake(self, env: EnvironmentRef) -> None: ...


class TenantInventory(Protocol):
    """Lists the sites provisioned from an upstream."""

    def list_sites(self, upstream: str) -> list[str]: ...
