"""Service integrations for Terminus, MySQL table transfer, and rsync file sync."""

__all__ = [
    "file_sync",
    "tables",
    "terminus",
]
