"""Per-tree-type write serialization.

Structural writes read a bound and then shift on a threshold derived from
it, so two writers on the same tree type must never interleave. Each tree
type gets its own re-entrant lock; readers never take one.

Locks are process-local. Cross-process writers are serialized by SQLite's
BEGIN IMMEDIATE (see database.py).
"""

from __future__ import annotations

import threading
from collections.abc import Generator
from contextlib import contextmanager

import structlog

from forestindex.core.errors import InternalError

logger = structlog.get_logger()


class TreeTypeLocks:
    """Registry of one RLock per tree type.

    Usage::

        locks = TreeTypeLocks()
        with locks.hold("default"):
            ...  # single writer for "default"
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def get(self, tree_type: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(tree_type)
            if lock is None:
                lock = threading.RLock()
                self._locks[tree_type] = lock
            return lock

    @contextmanager
    def hold(self, tree_type: str, timeout: float | None = None) -> Generator[None, None, None]:
        """Hold the tree type's write lock for the duration of the block.

        Raises:
            InternalError: LOCK_TIMEOUT when ``timeout`` elapses first.
        """
        lock = self.get(tree_type)
        acquired = lock.acquire() if timeout is None else lock.acquire(timeout=timeout)
        if not acquired:
            logger.warning("tree_type_lock_timeout", tree_type=tree_type, timeout_sec=timeout)
            raise InternalError.lock_timeout(tree_type, timeout or 0.0)
        try:
            yield
        finally:
            lock.release()

    def known_tree_types(self) -> list[str]:
        with self._registry_lock:
            return sorted(self._locks)


__all__ = ["TreeTypeLocks"]
