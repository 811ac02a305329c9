"""Memo of environments that have already been woken.

Pantheon environments idle after a period without traffic, and a sleeping
environment rejects database and rsync connections. Waking is slow, so each
environment is woken once and the wake is remembered for ``ttl`` seconds.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from wpms_mover.exceptions import TransportError
from wpms_mover.types import EnvironmentRef
from wpms_mover.utils.logging import log_with_context


class EnvironmentWakeCache:
    """Issues at most one wake per environment until its record expires."""

    def __init__(
        self,
        waker: Callable[[EnvironmentRef], None],
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._waker = waker
        self._ttl = ttl
        self._clock = clock
        self._records: dict[str, float] = {}
        self._lock = threading.Lock()
        self._env_locks: dict[str, threading.Lock] = {}

    def _is_fresh(self, key: str, now: float) -> bool:
        woken_at = self._records.get(key)
        if woken_at is None:
            return False
        return self._ttl is None or now - woken_at < self._ttl

    def ensure_awake(self, env: EnvironmentRef) -> bool:
        """
        Wake ``env`` unless a fresh wake record exists.

        A failed wake is logged and still recorded; it is not retried. If the
        environment really is asleep, the database or file operation that
        follows fails with its own error.

        Returns:
            True if a wake was issued, False if it was skipped
        """
        key = str(env)
        with self._lock:
            env_lock = self._env_locks.setdefault(key, threading.Lock())

        # Held across the wake so concurrent callers for one env wait instead of re-waking
        with env_lock:
            now = self._clock()
            with self._lock:
                if self._is_fresh(key, now):
                    return False
                self._records[key] = now

            log_with_context(logging.INFO, f"Initializing {key}", env=key)
            try:
                self._waker(env)
            except (TransportError, OSError) as e:
                stderr = getattr(e, "stderr", None)
                log_with_context(
                    logging.ERROR,
                    f"Failed to wake {key}: {e}",
                    env=key,
                    stderr=stderr,
                )
            return True

    def woken_at(self, env: EnvironmentRef) -> float | None:
        with self._lock:
            return self._records.get(str(env))

    def forget(self, env: EnvironmentRef) -> None:
        with self._lock:
            self._records.pop(str(env), None)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
