#!/usr/bin/env python3
"""
WordPress multisite tenant mover for Pantheon-hosted environments
"""

__version__ = "0.1.0"

from wpms_mover.core.config import MoverConfig, load_config
from wpms_mover.core.coordination import CoordinationPlanner
from wpms_mover.core.mover import TenantMover
from wpms_mover.services.file_sync import ManifestFileSync, lines_completed
from wpms_mover.services.tables import TableTransferEngine
from wpms_mover.types import ConnectionInfo, EnvironmentRef
