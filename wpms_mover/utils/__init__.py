"""Shared utilities for logging and external process handling."""

__all__ = [
    "logging",
    "process",
]
