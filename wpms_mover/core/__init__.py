"""Core move logic including configuration, caches, and orchestration."""

__all__ = [
    "config",
    "connections",
    "context",
    "coordination",
    "mover",
    "wake",
]
