"""
Configuration module for the multisite tenant mover.

This module provides functions for loading configuration settings from YAML
files and creating a default configuration. Settings cover the multisite
table layout, the Pantheon file endpoints, external tool paths, per-operation
timeouts, and the ID coordination policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from wpms_mover.constants import (
    DEFAULT_BLOCK_SIZE,
    DEFAULT_DIRECTORY_KEY,
    DEFAULT_DIRECTORY_TABLE,
    DEFAULT_HOST_TEMPLATE,
    DEFAULT_REMOTE_FILES_ROOT,
    DEFAULT_SSH_PORT,
    DEFAULT_STAGING_ROOT,
    DEFAULT_TABLE_PREFIX,
    DEFAULT_USER_TEMPLATE,
    DEFAULT_WAKE_TTL_SECONDS,
)
from wpms_mover.exceptions import ConfigError
from wpms_mover.utils.logging import log_with_context


def _optional_seconds(value: Any) -> float | None:
    if value is None:
        return None
    seconds = float(value)
    if seconds <= 0:
        return None
    return seconds


@dataclass
class TimeoutConfig:
    """Per-operation deadlines in seconds. ``None`` means no deadline."""

    wake: float | None = 300.0
    lookup: float | None = 120.0
    table_transfer: float | None = None
    file_transfer: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TimeoutConfig:
        if not data:
            return cls()
        defaults = cls()
        return cls(
            wake=_optional_seconds(data.get("wake", defaults.wake)),
            lookup=_optional_seconds(data.get("lookup", defaults.lookup)),
            table_transfer=_optional_seconds(data.get("table_transfer")),
            file_transfer=_optional_seconds(data.get("file_transfer")),
        )


@dataclass
class CoordinationConfig:
    """Policy for allocating disjoint ID ranges across an upstream's sites."""

    block_size: int = DEFAULT_BLOCK_SIZE
    first_block_start: int = DEFAULT_BLOCK_SIZE
    id_column: str = DEFAULT_DIRECTORY_KEY
    ledger_dir: str = ".wpms_coordination"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CoordinationConfig:
        if not data:
            return cls()
        block_size = int(data.get("block_size", DEFAULT_BLOCK_SIZE))
        if block_size <= 0:
            raise ConfigError(f"coordination.block_size must be positive, got {block_size}")
        return cls(
            block_size=block_size,
            first_block_start=int(data.get("first_block_start", block_size)),
            id_column=data.get("id_column", DEFAULT_DIRECTORY_KEY),
            ledger_dir=data.get("ledger_dir", ".wpms_coordination"),
        )


@dataclass
class MoverConfig:
    """Typed configuration for the tenant mover.

    All fields default to the layout of a stock WordPress multisite on Pantheon.
    """

    # Multisite table layout
    table_prefix: str = DEFAULT_TABLE_PREFIX
    directory_table: str = DEFAULT_DIRECTORY_TABLE
    directory_key: str = DEFAULT_DIRECTORY_KEY

    # File endpoints
    staging_root: str = DEFAULT_STAGING_ROOT
    remote_files_root: str = DEFAULT_REMOTE_FILES_ROOT
    ssh_port: int = DEFAULT_SSH_PORT
    host_template: str = DEFAULT_HOST_TEMPLATE
    user_template: str = DEFAULT_USER_TEMPLATE

    # External tools
    terminus_path: str = "terminus"
    mysqldump_path: str = "mysqldump"
    mysql_path: str = "mysql"
    rsync_path: str = "rsync"
    sftp_path: str = "sftp"

    # Wake records older than this are re-woken; None keeps them for the process lifetime
    wake_ttl: float | None = DEFAULT_WAKE_TTL_SECONDS

    max_workers: int = 1
    show_progress: bool = True

    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    coordination: CoordinationConfig = field(default_factory=CoordinationConfig)

    @property
    def directory_table_name(self) -> str:
        """Full name of the multisite directory table, e.g. ``wp_blogs``."""
        return f"{self.table_prefix}{self.directory_table}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MoverConfig:
        """Create a MoverConfig from a raw config dictionary."""
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a mapping")
        defaults = cls()
        max_workers = int(data.get("max_workers", 1))
        if max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {max_workers}")
        return cls(
            table_prefix=data.get("table_prefix", defaults.table_prefix),
            directory_table=data.get("directory_table", defaults.directory_table),
            directory_key=data.get("directory_key", defaults.directory_key),
            staging_root=data.get("staging_root", defaults.staging_root),
            remote_files_root=data.get(
                "remote_files_root", defaults.remote_files_root
            ).strip("/"),
            ssh_port=int(data.get("ssh_port", defaults.ssh_port)),
            host_template=data.get("host_template", defaults.host_template),
            user_template=data.get("user_template", defaults.user_template),
            terminus_path=data.get("terminus_path", defaults.terminus_path),
            mysqldump_path=data.get("mysqldump_path", defaults.mysqldump_path),
            mysql_path=data.get("mysql_path", defaults.mysql_path),
            rsync_path=data.get("rsync_path", defaults.rsync_path),
            sftp_path=data.get("sftp_path", defaults.sftp_path),
            wake_ttl=_optional_seconds(data.get("wake_ttl", defaults.wake_ttl)),
            max_workers=max_workers,
            show_progress=bool(data.get("show_progress", True)),
            timeouts=TimeoutConfig.from_dict(data.get("timeouts")),
            coordination=CoordinationConfig.from_dict(data.get("coordination")),
        )


def load_config(config_path: Path) -> MoverConfig:
    """
    Load configuration from YAML file and apply default values.

    If the file doesn't exist or cannot be parsed, a warning is logged and
    default settings are used. Values that parse but are out of range raise
    ConfigError.

    Args:
        config_path: Path to the config YAML file

    Returns:
        MoverConfig with all necessary defaults applied
    """
    raw: dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                loaded_config = yaml.safe_load(f)
                # Handle None result from empty file
                if loaded_config is not None:
                    raw = loaded_config
            log_with_context(logging.INFO, f"Loaded configuration from {config_path}")
        except (yaml.YAMLError, OSError) as e:
            log_with_context(
                logging.WARNING, f"Failed to load config file {config_path}: {e}"
            )
    else:
        log_with_context(
            logging.DEBUG,
            f"Config file {config_path} not found, using default settings",
        )

    try:
        return MoverConfig.from_dict(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e


def create_default_config(output_path: Path) -> bool:
    """
    Create a default configuration file with the stock multisite layout.

    The function will not overwrite an existing configuration file.

    Args:
        output_path: Path where the default config should be saved

    Returns:
        True if the config file was created successfully, False otherwise
    """
    if output_path.exists():
        log_with_context(
            logging.WARNING,
            f"Config file {output_path} already exists, not overwriting",
        )
        return False

    default_config = {
        "table_prefix": DEFAULT_TABLE_PREFIX,
        "directory_table": DEFAULT_DIRECTORY_TABLE,
        "directory_key": DEFAULT_DIRECTORY_KEY,
        "staging_root": DEFAULT_STAGING_ROOT,
        "remote_files_root": DEFAULT_REMOTE_FILES_ROOT,
        "ssh_port": DEFAULT_SSH_PORT,
        "wake_ttl": DEFAULT_WAKE_TTL_SECONDS,
        "max_workers": 1,
        "show_progress": True,
        # Seconds; 0 or null disables the deadline
        "timeouts": {
            "wake": 300,
            "lookup": 120,
            "table_transfer": 0,
            "file_transfer": 0,
        },
        "coordination": {
            "block_size": DEFAULT_BLOCK_SIZE,
            "first_block_start": DEFAULT_BLOCK_SIZE,
            "id_column": DEFAULT_DIRECTORY_KEY,
            "ledger_dir": ".wpms_coordination",
        },
    }

    try:
        with open(output_path, "w") as f:
            yaml.safe_dump(default_config, f, default_flow_style=False, sort_keys=False)
        log_with_context(logging.INFO, f"Created default config file at {output_path}")
        return True
    except OSError as e:
        log_with_context(logging.ERROR, f"Failed to create default config file: {e}")
        return False
